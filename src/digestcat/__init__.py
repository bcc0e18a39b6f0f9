"""Catalog package providing scanning, persistence and query utilities."""

from .errors import CatalogError, ConfigurationError, ScanInterrupted, ScanNotFoundError, StoreError
from .query import QueryEngine
from .scanner import ScanStats, TreeWalker, WalkConfig
from .schema import CatalogedEntry, DuplicateGroup, Entry, EntryStatus, Scan, ScanDiff
from .session import ScanReport, ScanSession
from .store import CatalogStore, StoreMode

__all__ = [
    "CatalogError",
    "ConfigurationError",
    "ScanInterrupted",
    "ScanNotFoundError",
    "StoreError",
    "QueryEngine",
    "ScanStats",
    "TreeWalker",
    "WalkConfig",
    "CatalogedEntry",
    "DuplicateGroup",
    "Entry",
    "EntryStatus",
    "Scan",
    "ScanDiff",
    "ScanReport",
    "ScanSession",
    "CatalogStore",
    "StoreMode",
]
