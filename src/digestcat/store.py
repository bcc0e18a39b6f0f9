"""SQLite persistence for scans and their catalogued entries."""
from __future__ import annotations

import enum
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from utils.hashing import DEFAULT_ALGORITHMS, check_algorithms
from utils.logging import get_logger
from utils.paths import join_relative

from .errors import ConfigurationError, ScanNotFoundError, StoreError
from .schema import CatalogedEntry, Entry, Scan, ScanDiff


LOGGER = get_logger(__name__)

SCHEMA = (
    "PRAGMA page_size = 4096",
    """
    CREATE TABLE IF NOT EXISTS scan (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        dir TEXT,
        time TEXT NOT NULL,
        location TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS file (
        scan_id INTEGER NOT NULL,
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        parent_id INTEGER,
        name TEXT NOT NULL,
        status INTEGER,
        size INTEGER,
        mode INTEGER,
        modtime TEXT,
        digest_a BLOB,
        digest_b BLOB
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS store_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
)

READ_INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS file_id ON file (scan_id, id)",
    "CREATE INDEX IF NOT EXISTS file_digest_a ON file (scan_id, digest_a)",
    "CREATE INDEX IF NOT EXISTS file_digest_b ON file (scan_id, digest_b)",
)
WRITE_DROPS = (
    "DROP INDEX IF EXISTS file_id",
    "DROP INDEX IF EXISTS file_digest_a",
    "DROP INDEX IF EXISTS file_digest_b",
)

INSERT_FILE = """
INSERT INTO file (scan_id, parent_id, name, status, size, mode, modtime, digest_a, digest_b)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""
FILE_COLUMNS = "scan_id, id, parent_id, name, status, size, mode, modtime, digest_a, digest_b"
SCAN_COLUMNS = "id, dir, time, location"
DUPLICATES_QUERY = f"""
SELECT {', '.join('f.' + column.strip() for column in FILE_COLUMNS.split(','))}
FROM file AS f
JOIN (
    SELECT digest_a, digest_b FROM file
    WHERE scan_id = ? AND digest_a IS NOT NULL AND digest_b IS NOT NULL
    GROUP BY digest_a, digest_b
    HAVING COUNT(*) > 1
) AS d ON f.digest_a = d.digest_a AND f.digest_b = d.digest_b
WHERE f.scan_id = ?
ORDER BY f.digest_a, f.digest_b, f.id
"""


class StoreMode(enum.Enum):
    """Index policy applied when the store is opened."""

    READ = "read"
    WRITE = "write"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value is not None else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _encode_name(name: Optional[str]) -> Union[str, bytes, None]:
    """Names that are not valid UTF-8 are kept as their raw filesystem bytes."""

    if name is None:
        return None
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return os.fsencode(name)
    return name


def _decode_name(value: Union[str, bytes, None]) -> Optional[str]:
    if isinstance(value, bytes):
        return os.fsdecode(value)
    return value


def _row_scan(row: sqlite3.Row) -> Scan:
    return Scan(
        id=row["id"],
        root=_decode_name(row["dir"]) or "",
        created_utc=_parse_time(row["time"]),
        location=_decode_name(row["location"]),
    )


def _entry_row(entry: Entry) -> Tuple[object, ...]:
    return (
        entry.scan_id,
        entry.parent_id,
        _encode_name(entry.name),
        int(entry.status),
        entry.size,
        entry.mode,
        _isoformat(entry.modified_utc),
        entry.digest_a,
        entry.digest_b,
    )


def _row_entry(row: sqlite3.Row) -> Entry:
    return Entry(
        scan_id=row["scan_id"],
        id=row["id"],
        parent_id=row["parent_id"] or 0,
        name=_decode_name(row["name"]),
        status=row["status"] or 0,
        size=row["size"] or 0,
        mode=row["mode"] or 0,
        modified_utc=_parse_time(row["modtime"]),
        digest_a=row["digest_a"],
        digest_b=row["digest_b"],
    )


def _is_changed(old: Entry, new: Entry) -> bool:
    if old.is_dir != new.is_dir:
        return True
    if old.is_dir:
        return False
    if old.digests is not None and new.digests is not None:
        return old.digests != new.digests
    return old.size != new.size


class CatalogStore:
    """Durable, scan-scoped catalog backed by a single SQLite file.

    Writes happen inside one explicit transaction per scan, opened by
    :meth:`begin_scan` and closed by :meth:`commit` or :meth:`abort`; other
    connections never observe a scan before it is committed.
    """

    def __init__(
        self,
        path: Path,
        mode: StoreMode = StoreMode.READ,
        algorithms: Optional[Sequence[str]] = None,
    ) -> None:
        self.path = Path(path)
        self.mode = mode
        try:
            self._conn = sqlite3.connect(str(self.path), isolation_level=None)
        except sqlite3.Error as exc:
            raise ConfigurationError(f"Unable to open catalog store {self.path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        try:
            for statement in SCHEMA:
                self._conn.execute(statement)
            scan_columns = {row["name"] for row in self._conn.execute("PRAGMA table_info(scan)")}
            if "location" not in scan_columns:
                self._conn.execute("ALTER TABLE scan ADD COLUMN location TEXT")
            for statement in READ_INDEXES if mode is StoreMode.READ else WRITE_DROPS:
                self._conn.execute(statement)
            self.algorithms = self._check_algorithms(algorithms)
        except (sqlite3.Error, ValueError) as exc:
            self._conn.close()
            raise ConfigurationError(f"Unable to open catalog store {self.path}: {exc}") from exc
        LOGGER.debug("Using catalog store %s (%s mode)", self.path, mode.value)

    def __enter__(self) -> "CatalogStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.in_transaction:
            # leaving the block without commit/abort discards the scan
            self.abort()
        self.close()

    def _check_algorithms(self, requested: Optional[Sequence[str]]) -> Tuple[str, str]:
        rows = {row["key"]: row["value"] for row in self._conn.execute("SELECT key, value FROM store_meta")}
        recorded = (rows.get("digest_a_algorithm"), rows.get("digest_b_algorithm"))
        if recorded[0] is None or recorded[1] is None:
            algorithms = check_algorithms(requested or DEFAULT_ALGORITHMS)
            if self.mode is not StoreMode.WRITE:
                # nothing catalogued yet; the first writer records its pair
                return algorithms
            self._conn.executemany(
                "INSERT OR REPLACE INTO store_meta (key, value) VALUES (?, ?)",
                [("digest_a_algorithm", algorithms[0]), ("digest_b_algorithm", algorithms[1])],
            )
            return algorithms
        if requested is not None and check_algorithms(requested) != recorded:
            raise ValueError(
                f"Catalog store {self.path} uses digests {recorded[0]}/{recorded[1]}; "
                f"refusing to mix in {'/'.join(requested)}"
            )
        return recorded[0], recorded[1]

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    def begin_scan(self, root: str) -> int:
        """Open the scan transaction and insert the scan row, returning its id.

        ``root`` is recorded as given; its absolute form at scan time is kept
        alongside so that later lookups on disk do not depend on the current
        working directory.
        """

        if self.in_transaction:
            raise StoreError("A scan transaction is already open")
        try:
            self._conn.execute("BEGIN")
            cursor = self._conn.execute(
                "INSERT INTO scan (dir, time, location) VALUES (?, ?, ?)",
                (
                    _encode_name(root),
                    _isoformat(datetime.now(timezone.utc)),
                    _encode_name(os.path.abspath(root)),
                ),
            )
        except sqlite3.Error as exc:
            if self.in_transaction:
                self._conn.execute("ROLLBACK")
            raise StoreError(f"Could not get new scan id for {root}: {exc}") from exc
        return int(cursor.lastrowid)

    def append_entries(self, entries: Iterable[Entry]) -> int:
        """Insert ``entries`` in order, assigning ids; returns the last id stored or ``0``.

        A row that fails to insert is logged and skipped; the transaction
        stays usable for the remaining rows. If SQLite rolled the transaction
        back on that failure, :class:`StoreError` is raised instead.
        """

        if not self.in_transaction:
            raise StoreError("append_entries requires an open scan transaction")
        last_id = 0
        for entry in entries:
            try:
                cursor = self._conn.execute(INSERT_FILE, _entry_row(entry))
            except (sqlite3.Error, UnicodeError) as exc:
                LOGGER.warning("Failed to store entry %r: %s", entry.name, exc)
                if not self.in_transaction:
                    raise StoreError(f"Scan transaction lost while storing {entry.name!r}: {exc}") from exc
                continue
            entry.id = int(cursor.lastrowid)
            last_id = entry.id
        return last_id

    def commit(self) -> None:
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise StoreError(f"Commit failed: {exc}") from exc

    def abort(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            raise StoreError(f"Rollback failed: {exc}") from exc

    def close(self) -> None:
        self._conn.close()

    def list_scans(self) -> List[Scan]:
        rows = self._conn.execute(f"SELECT {SCAN_COLUMNS} FROM scan ORDER BY id").fetchall()
        return [_row_scan(row) for row in rows]

    def get_scan(self, scan_id: int) -> Scan:
        row = self._conn.execute(f"SELECT {SCAN_COLUMNS} FROM scan WHERE id = ?", (scan_id,)).fetchone()
        if row is None:
            raise ScanNotFoundError(f"No scan with id {scan_id}")
        return _row_scan(row)

    def latest_scan(self) -> Scan:
        row = self._conn.execute("SELECT MAX(id) AS id FROM scan").fetchone()
        if row is None or row["id"] is None:
            raise ScanNotFoundError(f"Catalog store {self.path} contains no scans")
        return self.get_scan(row["id"])

    def list_entries(self, scan_id: int, duplicates_only: bool = False) -> List[Entry]:
        """Entries of one scan in insertion order, or only those sharing a digest pair."""

        self.get_scan(scan_id)
        if duplicates_only:
            rows = self._conn.execute(DUPLICATES_QUERY, (scan_id, scan_id)).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {FILE_COLUMNS} FROM file WHERE scan_id = ? ORDER BY id", (scan_id,)
            ).fetchall()
        return [_row_entry(row) for row in rows]

    def relative_paths(self, scan_id: int) -> Dict[int, str]:
        """Rebuild each entry's path below the scan root from parent links."""

        paths: Dict[int, str] = {}
        rows = self._conn.execute(
            "SELECT id, parent_id, name FROM file WHERE scan_id = ? ORDER BY id", (scan_id,)
        )
        for row in rows:
            parent = row["parent_id"] or 0
            name = _decode_name(row["name"])
            if parent == 0:
                paths[row["id"]] = ""
            elif parent in paths:
                parent_path = paths[parent]
                paths[row["id"]] = join_relative([parent_path, name]) if parent_path else name
            else:
                LOGGER.warning("Entry %s in scan %s has no stored parent", row["id"], scan_id)
                paths[row["id"]] = name
        return paths

    def cataloged_entries(self, scan_id: int, duplicates_only: bool = False) -> List[CatalogedEntry]:
        entries = self.list_entries(scan_id, duplicates_only)
        paths = self.relative_paths(scan_id)
        return [CatalogedEntry(entry=entry, rel_path=paths.get(entry.id, entry.name)) for entry in entries]

    def diff_scans(self, scan_a: int, scan_b: int) -> ScanDiff:
        """Match two scans' entries by relative path and classify the differences."""

        old = {item.rel_path: item for item in self.cataloged_entries(scan_a)}
        new = {item.rel_path: item for item in self.cataloged_entries(scan_b)}
        diff = ScanDiff(scan_a=scan_a, scan_b=scan_b)
        for rel_path, item in new.items():
            previous = old.get(rel_path)
            if previous is None:
                diff.added.append(item)
            elif _is_changed(previous.entry, item.entry):
                diff.changed.append(item)
        diff.removed = [item for rel_path, item in old.items() if rel_path not in new]
        return diff
