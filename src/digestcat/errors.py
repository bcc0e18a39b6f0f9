"""Exception types raised by the catalog engine."""
from __future__ import annotations


class CatalogError(Exception):
    """Base class for digestcat failures."""


class ConfigurationError(CatalogError):
    """Raised for missing roots, unopenable stores or invalid settings."""


class StoreError(CatalogError):
    """Raised when the catalog store cannot begin, write or commit."""


class ScanNotFoundError(StoreError, LookupError):
    """Raised when a scan reference does not resolve to a committed scan."""


class ScanInterrupted(KeyboardInterrupt):
    """Raised inside a scan session when a termination signal arrives."""

    def __init__(self, signum: int) -> None:
        super().__init__(f"interrupted by signal {signum}")
        self.signum = signum
