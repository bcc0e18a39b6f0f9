"""Read-side operations over committed scans: listing, duplicates and comparison."""
from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from itertools import groupby
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from utils.hashing import digest_file
from utils.logging import get_logger
from utils.paths import resolve_in_root

from .errors import ScanNotFoundError
from .schema import CatalogedEntry, DuplicateGroup, Scan, ScanDiff
from .store import CatalogStore


LOGGER = get_logger(__name__)

ScanRef = Union[int, str, None]


def _scan_location(scan: Scan) -> Optional[str]:
    """Absolute root of ``scan`` on disk, independent of the current directory."""

    if scan.location is not None:
        return scan.location
    if os.path.isabs(scan.root):
        return scan.root
    return None


@dataclass(slots=True)
class RemovalResult:
    """Files deleted by a forced compare, and the candidates that were kept."""

    removed: List[Path] = field(default_factory=list)
    skipped: List[Tuple[Path, str]] = field(default_factory=list)


class QueryEngine:
    """Stateless queries layered over :class:`CatalogStore`."""

    def __init__(self, store: CatalogStore) -> None:
        self.store = store

    def resolve_scan(self, ref: ScanRef = None) -> Scan:
        """Resolve ``None`` to the latest scan, otherwise an id (int or numeric string)."""

        if ref is None:
            return self.store.latest_scan()
        try:
            scan_id = int(ref)
        except (TypeError, ValueError) as exc:
            raise ScanNotFoundError(f"Invalid scan reference {ref!r}") from exc
        return self.store.get_scan(scan_id)

    def entries(self, ref: ScanRef = None, duplicates_only: bool = False) -> List[CatalogedEntry]:
        scan = self.resolve_scan(ref)
        return self.store.cataloged_entries(scan.id, duplicates_only)

    def duplicate_groups(self, ref: ScanRef = None) -> List[DuplicateGroup]:
        """Group content-identical files of a scan, largest reclaimable space first."""

        groups = []
        items = self.entries(ref, duplicates_only=True)
        for (digest_a, digest_b), members in groupby(items, key=lambda item: item.entry.digests):
            members = list(members)
            groups.append(
                DuplicateGroup(digest_a=digest_a, digest_b=digest_b, size=members[0].entry.size, entries=members)
            )
        groups.sort(key=lambda group: (-group.wasted_bytes, group.digest_a))
        return groups

    def compare(self, ref_a: ScanRef, ref_b: ScanRef) -> ScanDiff:
        scan_a = self.resolve_scan(ref_a)
        scan_b = self.resolve_scan(ref_b)
        return self.store.diff_scans(scan_a.id, scan_b.id)

    def extraneous(self, ref_a: ScanRef, ref_b: ScanRef) -> List[CatalogedEntry]:
        """Files of scan B whose content already exists as a file in scan A."""

        scan_a = self.resolve_scan(ref_a)
        scan_b = self.resolve_scan(ref_b)
        reference = {
            item.entry.digests
            for item in self.store.cataloged_entries(scan_a.id)
            if item.entry.digests is not None and not item.entry.is_dir
        }
        return [
            item
            for item in self.store.cataloged_entries(scan_b.id)
            if item.entry.digests is not None and not item.entry.is_dir and item.entry.digests in reference
        ]

    def remove_extraneous(self, ref_a: ScanRef, ref_b: ScanRef, force: bool = False) -> RemovalResult:
        """Delete scan B's extraneous files from disk when ``force`` is set.

        Scan A is the reference and is never touched. A candidate is only
        deleted when it is still a regular file, still has the catalogued
        digests, and a copy with those digests exists on disk under A that is
        not the same file. Both roots are located by the absolute path
        recorded at scan time; scans without one are refused. The catalog
        itself is never modified.
        """

        scan_a = self.resolve_scan(ref_a)
        scan_b = self.resolve_scan(ref_b)
        base_a = _scan_location(scan_a)
        base_b = _scan_location(scan_b)
        result = RemovalResult()
        if base_a is None or base_b is None:
            unplaced = ", ".join(str(scan.id) for scan, base in ((scan_a, base_a), (scan_b, base_b)) if base is None)
            reason = f"scan {unplaced} has no absolute root location"
            LOGGER.warning("Refusing to remove files: %s", reason)
            for item in self.extraneous(scan_a.id, scan_b.id):
                result.skipped.append((Path(scan_b.root, item.rel_path), reason))
            return result

        copies: Dict[Tuple[bytes, bytes], List[Path]] = {}
        for item in self.store.cataloged_entries(scan_a.id):
            if item.entry.digests is not None and not item.entry.is_dir:
                copies.setdefault(item.entry.digests, []).append(resolve_in_root(base_a, item.rel_path))

        for item in self.extraneous(scan_a.id, scan_b.id):
            candidate = resolve_in_root(base_b, item.rel_path)
            reason = self._removal_blocker(candidate, item, copies[item.entry.digests])
            if reason is None and not force:
                reason = "dry run (use force to remove)"
            if reason is not None:
                LOGGER.info("Keeping %s: %s", candidate, reason)
                result.skipped.append((candidate, reason))
                continue
            try:
                candidate.unlink()
            except OSError as exc:
                LOGGER.warning("Unable to remove %s: %s", candidate, exc)
                result.skipped.append((candidate, str(exc)))
                continue
            LOGGER.info("Removed %s", candidate)
            result.removed.append(candidate)
        return result

    def _removal_blocker(self, candidate: Path, item: CatalogedEntry, copies: List[Path]) -> Optional[str]:
        try:
            candidate_stat = os.lstat(candidate)
        except OSError as exc:
            return f"not accessible: {exc}"
        if not stat.S_ISREG(candidate_stat.st_mode):
            return "no longer a regular file"
        try:
            current = digest_file(candidate, self.store.algorithms)
        except OSError as exc:
            return f"unable to re-hash: {exc}"
        if tuple(current) != item.entry.digests:
            return "content changed since scan"
        if not any(self._is_other_copy(copy, candidate, item.entry.digests) for copy in copies):
            return "no separate reference copy on disk"
        return None

    def _is_other_copy(self, copy: Path, candidate: Path, digests: Tuple[bytes, bytes]) -> bool:
        try:
            if not stat.S_ISREG(os.lstat(copy).st_mode) or os.path.samefile(copy, candidate):
                return False
            return tuple(digest_file(copy, self.store.algorithms)) == digests
        except OSError:
            return False
