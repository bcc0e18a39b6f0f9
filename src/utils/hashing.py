"""Single-pass dual digest helpers for large files."""
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import BinaryIO, NamedTuple, Sequence

DEFAULT_ALGORITHMS = ("md5", "sha1")
DEFAULT_CHUNK_SIZE = 2**20


class DigestPair(NamedTuple):
    """Two digests computed from the same pass over a byte stream."""

    a: bytes
    b: bytes

    def hex(self) -> tuple[str, str]:
        return self.a.hex(), self.b.hex()


def check_algorithms(algorithms: Sequence[str]) -> tuple[str, str]:
    """Validate and normalise a pair of :mod:`hashlib` algorithm names."""

    names = tuple(name.strip().lower() for name in algorithms)
    if len(names) != 2 or names[0] == names[1]:
        raise ValueError(f"exactly two distinct digest algorithms are required; got {list(algorithms)!r}")
    for name in names:
        try:
            hashlib.new(name)
        except ValueError as exc:
            raise ValueError(f"unsupported digest algorithm {name!r}") from exc
    return names[0], names[1]


def digest_stream(
    stream: BinaryIO,
    algorithms: Sequence[str] = DEFAULT_ALGORITHMS,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> DigestPair:
    """Feed ``stream`` through both digests chunk by chunk, without seeking."""

    first, second = (hashlib.new(name) for name in algorithms)
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        first.update(chunk)
        second.update(chunk)
    return DigestPair(first.digest(), second.digest())


def digest_file(
    path: Path,
    algorithms: Sequence[str] = DEFAULT_ALGORITHMS,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> DigestPair:
    """Compute the digest pair of ``path``.

    Any :class:`OSError` raised while opening or reading propagates; callers
    never receive digests for a partially read file.
    """

    with Path(path).open("rb") as handle:
        return digest_stream(handle, algorithms, chunk_size)
