"""Filesystem traversal producing catalog entries for one scan."""
from __future__ import annotations

import logging
import os
import stat
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from utils.hashing import DEFAULT_ALGORITHMS, DEFAULT_CHUNK_SIZE, DigestPair, check_algorithms, digest_file
from utils.logging import get_logger
from utils.paths import root_name

from .schema import Entry, EntryStatus


LOGGER = get_logger(__name__)

EntrySink = Callable[[Sequence[Entry]], int]


@dataclass(slots=True)
class WalkConfig:
    """Configuration parameters controlling traversal behaviour."""

    algorithms: Tuple[str, str] = DEFAULT_ALGORITHMS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    workers: int = 1

    def __post_init__(self) -> None:
        self.algorithms = check_algorithms(self.algorithms)
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")


@dataclass(slots=True)
class ScanStats:
    """Running counters of one or more traversals."""

    dirs: int = 0
    files: int = 0
    bytes: int = 0
    started: float = field(default_factory=time.monotonic)
    finished: Optional[float] = None

    @property
    def elapsed(self) -> float:
        end = self.finished if self.finished is not None else time.monotonic()
        return max(end - self.started, 0.0)

    @property
    def throughput_kb(self) -> int:
        seconds = self.elapsed
        if seconds <= 0:
            return 0
        return int(self.bytes / seconds) // 1024

    def stop(self) -> None:
        self.finished = time.monotonic()

    def merge(self, other: "ScanStats") -> None:
        self.dirs += other.dirs
        self.files += other.files
        self.bytes += other.bytes

    def summary(self) -> str:
        return (
            f"{self.dirs} dir(s) {self.files} file(s) {self.bytes} byte(s) "
            f"in {self.elapsed:.02f} sec(s) {self.throughput_kb} KB/sec"
        )


def _modified(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)


class TreeWalker:
    """Walk a directory tree depth-first and hand entries to ``sink``.

    ``sink`` persists a batch of entries in order and returns the identifier
    of the last one stored (``0`` when nothing was stored). Each directory is
    emitted on its own so that its identifier is known before any of its
    children are built; the non-directory children of a directory are then
    emitted as one batch. Symbolic links are neither recorded nor followed.
    """

    def __init__(self, sink: EntrySink, scan_id: int, hashing: bool = True, config: Optional[WalkConfig] = None) -> None:
        self.sink = sink
        self.scan_id = scan_id
        self.hashing = hashing
        self.config = config or WalkConfig()
        self.stats = ScanStats()
        self._emitted = 0

    def walk(self, root: str) -> ScanStats:
        """Catalogue ``root`` and everything below it, returning the counters."""

        executor: Optional[ThreadPoolExecutor] = None
        if self.hashing and self.config.workers > 1:
            executor = ThreadPoolExecutor(max_workers=self.config.workers)
        try:
            self._walk(root, executor)
        finally:
            self.stats.stop()
            if executor is not None:
                executor.shutdown(cancel_futures=True)
        return self.stats

    def _walk(self, root: str, executor: Optional[ThreadPoolExecutor]) -> None:
        try:
            root_stat = os.lstat(root)
        except OSError as exc:
            LOGGER.warning("Unable to stat %s: %s", root, exc)
            self._emit([self._error_entry(root_name(root), 0)])
            return
        if stat.S_ISLNK(root_stat.st_mode):
            LOGGER.warning("Scan root %s is a symbolic link; nothing recorded", root)
            return
        if not stat.S_ISDIR(root_stat.st_mode):
            self._emit(self._file_entries([(Path(root), root_name(root), root_stat)], 0, executor))
            return

        stack: List[Tuple[Path, str, os.stat_result, int]] = [(Path(root), root_name(root), root_stat, 0)]
        while stack:
            path, name, dir_stat, parent_id = stack.pop()
            children, listing_error = self._list_dir(path)
            status = EntryStatus.ERROR if listing_error is not None else EntryStatus.OK
            entry = self._stat_entry(name, parent_id, dir_stat, status)
            self.stats.dirs += 1
            dir_id = self._emit([entry])
            if listing_error is not None:
                continue
            if not dir_id:
                LOGGER.warning("Directory %s was not stored; skipping its subtree", path)
                continue

            files: List[Tuple[Path, str, os.stat_result]] = []
            failed: List[Entry] = []
            subdirs: List[Tuple[Path, str, os.stat_result, int]] = []
            for child in children:
                try:
                    if child.is_symlink():
                        LOGGER.debug("Skipping symbolic link %s", child.path)
                        continue
                    child_stat = child.stat(follow_symlinks=False)
                except OSError as exc:
                    LOGGER.warning("Unable to stat %s: %s", child.path, exc)
                    failed.append(self._error_entry(child.name, dir_id))
                    continue
                if stat.S_ISLNK(child_stat.st_mode):
                    continue
                if stat.S_ISDIR(child_stat.st_mode):
                    subdirs.append((Path(child.path), child.name, child_stat, dir_id))
                else:
                    files.append((Path(child.path), child.name, child_stat))

            batch = failed + self._file_entries(files, dir_id, executor)
            if batch:
                self._emit(batch)
            # reversed so that subdirectories are visited in listing order
            stack.extend(reversed(subdirs))

    def _list_dir(self, path: Path) -> Tuple[List[os.DirEntry], Optional[OSError]]:
        try:
            with os.scandir(path) as iterator:
                return list(iterator), None
        except OSError as exc:
            LOGGER.warning("Unable to list %s: %s", path, exc)
            return [], exc

    def _stat_entry(
        self,
        name: str,
        parent_id: int,
        st: os.stat_result,
        status: EntryStatus = EntryStatus.OK,
        digests: Optional[DigestPair] = None,
    ) -> Entry:
        return Entry(
            scan_id=self.scan_id,
            parent_id=parent_id,
            name=name,
            status=status,
            size=st.st_size,
            mode=st.st_mode,
            modified_utc=_modified(st),
            digest_a=digests.a if digests else None,
            digest_b=digests.b if digests else None,
        )

    def _error_entry(self, name: str, parent_id: int) -> Entry:
        return Entry(scan_id=self.scan_id, parent_id=parent_id, name=name, status=EntryStatus.ERROR)

    def _digest(self, path: Path) -> Optional[DigestPair]:
        try:
            return digest_file(path, self.config.algorithms, self.config.chunk_size)
        except OSError as exc:
            LOGGER.warning("Unable to hash %s: %s", path, exc)
            return None

    def _file_entries(
        self,
        files: List[Tuple[Path, str, os.stat_result]],
        parent_id: int,
        executor: Optional[ThreadPoolExecutor],
    ) -> List[Entry]:
        regular = [path for path, _, st in files if stat.S_ISREG(st.st_mode)]
        digests: dict[Path, Optional[DigestPair]] = {}
        if self.hashing and regular:
            results = executor.map(self._digest, regular) if executor else map(self._digest, regular)
            digests = dict(zip(regular, results))

        entries = []
        for path, name, st in files:
            pair = digests.get(path)
            if not stat.S_ISREG(st.st_mode) or not self.hashing:
                status = EntryStatus.NO_HASH
            elif pair is None:
                status = EntryStatus.ERROR
            else:
                status = EntryStatus.OK
            entries.append(self._stat_entry(name, parent_id, st, status, pair))
            self.stats.files += 1
            self.stats.bytes += st.st_size
        return entries

    def _emit(self, entries: List[Entry]) -> int:
        last_id = self.sink(entries)
        if LOGGER.isEnabledFor(logging.DEBUG):
            for entry in entries:
                self._emitted += 1
                LOGGER.debug(
                    "%d %s %s %s %s",
                    self._emitted,
                    format(int(entry.status), "b"),
                    entry.name,
                    entry.digest_a.hex() if entry.digest_a else "-",
                    entry.digest_b.hex() if entry.digest_b else "-",
                )
        return last_id
