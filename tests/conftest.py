from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Sequence

import pytest

from digestcat import CatalogStore, Entry, ScanSession, StoreMode


@pytest.fixture(autouse=True)
def _configure_test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.setenv("NO_COLOR", "1")


class ListSink:
    """In-memory stand-in for ``CatalogStore.append_entries``."""

    def __init__(self) -> None:
        self.entries: List[Entry] = []
        self.batches: List[List[Entry]] = []

    def __call__(self, entries: Sequence[Entry]) -> int:
        batch = list(entries)
        for entry in batch:
            entry.id = len(self.entries) + 1
            self.entries.append(entry)
        self.batches.append(batch)
        return batch[-1].id if batch else 0

    def by_name(self) -> Dict[str, Entry]:
        return {entry.name: entry for entry in self.entries}


@pytest.fixture
def sink() -> ListSink:
    return ListSink()


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    """Root ``R`` holding a.txt and b.txt (same content) and c.txt."""

    root = tmp_path / "R"
    root.mkdir()
    (root / "a.txt").write_text("x")
    (root / "b.txt").write_text("x")
    (root / "c.txt").write_text("y")
    return root


@pytest.fixture
def nested_tree(tmp_path: Path) -> Path:
    root = tmp_path / "nested"
    for branch in ("one", "two", "three"):
        directory = root / branch / "inner"
        directory.mkdir(parents=True)
        (root / branch / f"{branch}.txt").write_text(branch)
        for index in range(3):
            (directory / f"file{index}.bin").write_bytes(bytes([index]) * (index + 1))
    (root / "top.txt").write_text("top")
    return root


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "catalog.db"


@pytest.fixture
def scan_roots(db_path: Path):
    """Scan each root in its own session and return the committed scan ids."""

    def _scan(*roots: Path, hashing: bool = True) -> List[int]:
        with CatalogStore(db_path, mode=StoreMode.WRITE) as store:
            report = ScanSession(store, hashing=hashing).run([str(root) for root in roots])
        return [outcome.scan_id for outcome in report.outcomes]

    return _scan
