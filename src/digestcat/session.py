"""Orchestration of scan runs against the catalog store."""
from __future__ import annotations

import signal
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from utils.logging import get_logger

from .errors import ConfigurationError, ScanInterrupted, StoreError
from .scanner import ScanStats, TreeWalker, WalkConfig
from .store import CatalogStore


LOGGER = get_logger(__name__)


@dataclass(slots=True)
class ScanOutcome:
    """Result of scanning a single root."""

    root: str
    scan_id: Optional[int] = None
    stats: ScanStats = field(default_factory=ScanStats)
    error: Optional[str] = None
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.truncated


@dataclass(slots=True)
class ScanReport:
    """Aggregate statistics across every root of one invocation."""

    outcomes: List[ScanOutcome] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)

    @property
    def failed(self) -> List[ScanOutcome]:
        return [outcome for outcome in self.outcomes if outcome.error is not None]

    def summary(self) -> str:
        return self.stats.summary()


def _raise_interrupted(signum: int, frame: object) -> None:
    raise ScanInterrupted(signum)


@contextmanager
def termination_as_interrupt() -> Iterator[None]:
    """Translate SIGTERM into :class:`ScanInterrupted` for the duration of the block."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGTERM, _raise_interrupted)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


class ScanSession:
    """Drive one traversal per root, each under its own store transaction.

    An interrupt (SIGINT or SIGTERM) commits whatever was appended so far and
    re-raises: a scan that looks complete after an interrupted run may be
    truncated.
    """

    def __init__(self, store: CatalogStore, hashing: bool = True, walk_config: Optional[WalkConfig] = None) -> None:
        self.store = store
        self.hashing = hashing
        self.walk_config = walk_config or WalkConfig(algorithms=store.algorithms)
        if tuple(self.walk_config.algorithms) != tuple(store.algorithms):
            raise ConfigurationError(
                f"Walk digests {self.walk_config.algorithms} do not match store digests {store.algorithms}"
            )

    def run(self, roots: Sequence[str]) -> ScanReport:
        missing = [root for root in roots if not Path(root).exists() and not Path(root).is_symlink()]
        if missing:
            raise ConfigurationError(f"Scan root(s) do not exist: {', '.join(missing)}")
        if not roots:
            raise ConfigurationError("At least one scan root is required")

        report = ScanReport()
        try:
            with termination_as_interrupt():
                for root in roots:
                    outcome = self.scan_root(root)
                    report.outcomes.append(outcome)
                    report.stats.merge(outcome.stats)
        finally:
            report.stats.stop()
        LOGGER.info(report.summary())
        return report

    def scan_root(self, root: str) -> ScanOutcome:
        outcome = ScanOutcome(root=root)
        LOGGER.info("Scanning %s", root)
        try:
            outcome.scan_id = self.store.begin_scan(root)
        except StoreError as exc:
            LOGGER.error("%s", exc)
            outcome.error = str(exc)
            return outcome

        walker = TreeWalker(self.store.append_entries, outcome.scan_id, self.hashing, self.walk_config)
        outcome.stats = walker.stats
        try:
            walker.walk(root)
        except KeyboardInterrupt:
            outcome.truncated = True
            LOGGER.warning("Scan %d of %s interrupted; committing partial results", outcome.scan_id, root)
            self.store.commit()
            raise
        except (StoreError, sqlite3.Error) as exc:
            LOGGER.error("Scan of %s failed: %s", root, exc)
            outcome.error = str(exc)
            if self.store.in_transaction:
                self.store.abort()
            return outcome

        try:
            self.store.commit()
        except StoreError as exc:
            LOGGER.error("%s", exc)
            outcome.error = str(exc)
            if self.store.in_transaction:
                self.store.abort()
            return outcome
        LOGGER.info("Scan %d: %s", outcome.scan_id, outcome.stats.summary())
        return outcome
