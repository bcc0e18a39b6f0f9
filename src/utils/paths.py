"""Path utility helpers."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable


def normalise_path(path: Path) -> Path:
    """Return a normalised path handling Windows drive casing."""

    return Path(str(path).replace("\\", "/")).expanduser().resolve()


def root_name(root: str) -> str:
    """Base name recorded for a scan root; falls back to the path itself for ``/``."""

    stripped = root.rstrip("/\\")
    return os.path.basename(stripped) or root


def join_relative(parts: Iterable[str]) -> str:
    """Join names below a scan root into a POSIX relative path."""

    return "/".join(parts)


def printable(text: str) -> str:
    """Render a filesystem name for output, replacing bytes that are not UTF-8."""

    return text.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def resolve_in_root(root: str, rel_path: str) -> Path:
    """Locate a catalogued relative path on disk under the scan's ``root``."""

    base = normalise_path(Path(root))
    return base.joinpath(*rel_path.split("/")) if rel_path else base
