"""Pydantic models describing scans, catalogued entries and query results."""
from __future__ import annotations

import enum
import stat
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EntryStatus(enum.IntFlag):
    """Independent conditions recorded on an entry; values are the on-disk encoding."""

    OK = 0
    ERROR = 1
    NO_HASH = 2


class Scan(BaseModel):
    """One committed traversal run.

    ``root`` is the path as the caller gave it; ``location`` is its absolute
    form resolved when the scan started (``None`` for scans recorded without one).
    """

    model_config = ConfigDict(frozen=True)

    id: int
    root: str
    created_utc: datetime
    location: Optional[str] = None


class Entry(BaseModel):
    """One filesystem object observed during a scan."""

    model_config = ConfigDict(validate_assignment=True)

    scan_id: int
    id: Optional[int] = None
    parent_id: int = 0
    name: str
    status: EntryStatus = EntryStatus.OK
    size: int = Field(default=0, ge=0)
    mode: int = 0
    modified_utc: Optional[datetime] = None
    digest_a: Optional[bytes] = None
    digest_b: Optional[bytes] = None

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value: Any) -> EntryStatus:
        return EntryStatus(int(value or 0))

    @model_validator(mode="after")
    def check_digests(self) -> "Entry":
        if (self.digest_a is None) != (self.digest_b is None):
            raise ValueError("digests must be both present or both absent")
        return self

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    @property
    def has_error(self) -> bool:
        return bool(self.status & EntryStatus.ERROR)

    @property
    def digests(self) -> Optional[tuple[bytes, bytes]]:
        if self.digest_a is None or self.digest_b is None:
            return None
        return self.digest_a, self.digest_b

    def as_record(self) -> Dict[str, Any]:
        """Return a JSON-serialisable mapping representing this entry."""

        data = self.model_dump()
        data["status"] = int(self.status)
        data["modified_utc"] = (
            self.modified_utc.astimezone(timezone.utc).isoformat() if self.modified_utc else None
        )
        data["digest_a"] = self.digest_a.hex() if self.digest_a is not None else None
        data["digest_b"] = self.digest_b.hex() if self.digest_b is not None else None
        return data


class CatalogedEntry(BaseModel):
    """An entry read back from the store, together with its path inside the scan."""

    entry: Entry
    rel_path: str

    def as_record(self) -> Dict[str, Any]:
        return {**self.entry.as_record(), "rel_path": self.rel_path}


class DuplicateGroup(BaseModel):
    """Entries of one scan sharing an identical digest pair."""

    digest_a: bytes
    digest_b: bytes
    size: int
    entries: List[CatalogedEntry]

    @property
    def wasted_bytes(self) -> int:
        return self.size * (len(self.entries) - 1)


class ScanDiff(BaseModel):
    """Classification of two scans' entries matched by relative path."""

    scan_a: int
    scan_b: int
    added: List[CatalogedEntry] = Field(default_factory=list)
    removed: List[CatalogedEntry] = Field(default_factory=list)
    changed: List[CatalogedEntry] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)
