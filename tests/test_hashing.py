from __future__ import annotations

import hashlib
import io
from pathlib import Path

import pytest

from utils.hashing import check_algorithms, digest_file, digest_stream


class ForwardOnlyStream(io.RawIOBase):
    """Readable stream that refuses to seek."""

    def __init__(self, payload: bytes) -> None:
        self._inner = io.BytesIO(payload)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def read(self, size: int = -1) -> bytes:
        return self._inner.read(size)

    def seek(self, *args, **kwargs):  # pragma: no cover - must never be called
        raise AssertionError("digest pipeline must not seek")


def test_digest_file_is_deterministic(tmp_path: Path) -> None:
    path = tmp_path / "blob.bin"
    path.write_bytes(b"abc" * 100_000)
    assert digest_file(path) == digest_file(path)
    assert digest_file(path).hex() == (
        hashlib.md5(b"abc" * 100_000).hexdigest(),
        hashlib.sha1(b"abc" * 100_000).hexdigest(),
    )


def test_digest_stream_reads_forward_only() -> None:
    pair = digest_stream(ForwardOnlyStream(b"payload"), chunk_size=3)
    assert pair.b == hashlib.sha1(b"payload").digest()


def test_digest_file_missing_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        digest_file(tmp_path / "missing.bin")


def test_check_algorithms_normalises_and_rejects() -> None:
    assert check_algorithms([" MD5", "sha1"]) == ("md5", "sha1")
    with pytest.raises(ValueError):
        check_algorithms(["sha1", "sha1"])
    with pytest.raises(ValueError):
        check_algorithms(["md5"])
    with pytest.raises(ValueError):
        check_algorithms(["md5", "not-a-digest"])
