"""Utility helpers shared across the digestcat codebase."""

from .config import AppConfig, ConfigError, load_config
from .hashing import DigestPair, digest_file, digest_stream
from .logging import configure_logging, get_logger
from .paths import normalise_path, printable

__all__ = [
    "AppConfig",
    "ConfigError",
    "load_config",
    "DigestPair",
    "digest_file",
    "digest_stream",
    "configure_logging",
    "get_logger",
    "normalise_path",
    "printable",
]
