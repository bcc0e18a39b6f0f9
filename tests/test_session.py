from __future__ import annotations

import os
import signal
import sys
from pathlib import Path

import pytest

from digestcat import (
    CatalogStore,
    ConfigurationError,
    QueryEngine,
    ScanInterrupted,
    ScanSession,
    StoreError,
    StoreMode,
    WalkConfig,
)
from digestcat.export import CatalogExporter
from digestcat.session import termination_as_interrupt


def test_duplicate_scenario(sample_tree: Path, db_path: Path, scan_roots) -> None:
    (scan_id,) = scan_roots(sample_tree)
    with CatalogStore(db_path) as store:
        names = {entry.name for entry in store.list_entries(scan_id, duplicates_only=True)}
    assert names == {"a.txt", "b.txt"}


def test_report_summary(sample_tree: Path, db_path: Path) -> None:
    with CatalogStore(db_path, mode=StoreMode.WRITE) as store:
        report = ScanSession(store).run([str(sample_tree)])
    assert report.summary().startswith("1 dir(s) 3 file(s) 3 byte(s) in ")
    assert report.summary().endswith("KB/sec")
    assert [outcome.ok for outcome in report.outcomes] == [True]


def test_unreadable_subdirectory_still_commits(
    sample_tree: Path, db_path: Path, scan_roots, monkeypatch: pytest.MonkeyPatch
) -> None:
    locked = sample_tree / "locked"
    locked.mkdir()
    (locked / "inside.txt").write_text("z")
    real_scandir = os.scandir

    def fake_scandir(path):
        if Path(path) == locked:
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", fake_scandir)
    (scan_id,) = scan_roots(sample_tree)
    with CatalogStore(db_path) as store:
        entries = {entry.name: entry for entry in store.list_entries(scan_id)}
    assert entries["locked"].has_error
    assert set(entries) == {"R", "a.txt", "b.txt", "c.txt", "locked"}


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs unprivileged POSIX permissions")
def test_permission_denied_directory_on_disk(sample_tree: Path, db_path: Path, scan_roots) -> None:
    locked = sample_tree / "locked"
    locked.mkdir()
    (locked / "inside.txt").write_text("z")
    locked.chmod(0)
    try:
        (scan_id,) = scan_roots(sample_tree)
    finally:
        locked.chmod(0o755)
    with CatalogStore(db_path) as store:
        entries = store.list_entries(scan_id)
    locked_entry = next(entry for entry in entries if entry.name == "locked")
    assert locked_entry.has_error
    assert not [entry for entry in entries if entry.parent_id == locked_entry.id]


def test_rescan_gives_new_scan_and_empty_diff(sample_tree: Path, db_path: Path, scan_roots) -> None:
    first, second = scan_roots(sample_tree, sample_tree)
    assert second > first
    with CatalogStore(db_path) as store:
        a_ids = {entry.id for entry in store.list_entries(first)}
        b_ids = {entry.id for entry in store.list_entries(second)}
        assert not a_ids & b_ids
        assert store.diff_scans(first, second).is_empty


def test_missing_root_is_fatal_before_scanning(sample_tree: Path, db_path: Path) -> None:
    with CatalogStore(db_path, mode=StoreMode.WRITE) as store:
        with pytest.raises(ConfigurationError):
            ScanSession(store).run([str(sample_tree), str(sample_tree / "nope")])
        assert store.list_scans() == []


def test_begin_failure_only_affects_its_root(
    sample_tree: Path, nested_tree: Path, db_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    with CatalogStore(db_path, mode=StoreMode.WRITE) as store:
        real_begin = store.begin_scan

        def flaky_begin(root: str) -> int:
            if root == str(sample_tree):
                raise StoreError("store unavailable")
            return real_begin(root)

        monkeypatch.setattr(store, "begin_scan", flaky_begin)
        report = ScanSession(store).run([str(sample_tree), str(nested_tree)])
    assert report.outcomes[0].error == "store unavailable"
    assert report.outcomes[1].ok
    with CatalogStore(db_path) as store:
        assert [scan.root for scan in store.list_scans()] == [str(nested_tree)]


def test_interrupt_commits_partial_scan(nested_tree: Path, db_path: Path, scan_roots, monkeypatch) -> None:
    (full_id,) = scan_roots(nested_tree)
    with CatalogStore(db_path) as store:
        full_count = len(store.list_entries(full_id))

    with CatalogStore(db_path, mode=StoreMode.WRITE) as store:
        real_append = store.append_entries
        calls = []

        def interrupting_append(entries):
            calls.append(1)
            last_id = real_append(entries)
            if len(calls) == 4:
                raise KeyboardInterrupt
            return last_id

        monkeypatch.setattr(store, "append_entries", interrupting_append)
        with pytest.raises(KeyboardInterrupt):
            ScanSession(store).run([str(nested_tree)])

    with CatalogStore(db_path) as store:
        partial = store.latest_scan()
        assert partial.id != full_id
        entries = store.list_entries(partial.id)
    assert 0 < len(entries) <= full_count
    seen = set()
    for entry in entries:
        assert entry.parent_id == 0 or entry.parent_id in seen
        assert (entry.digest_a is None) == (entry.digest_b is None)
        seen.add(entry.id)


@pytest.mark.skipif(os.name != "posix", reason="POSIX signals only")
def test_sigterm_raises_scan_interrupted() -> None:
    previous = signal.getsignal(signal.SIGTERM)
    with termination_as_interrupt():
        with pytest.raises(ScanInterrupted) as excinfo:
            os.kill(os.getpid(), signal.SIGTERM)
            for _ in range(1000):
                pass
    assert excinfo.value.signum == signal.SIGTERM
    assert signal.getsignal(signal.SIGTERM) is previous


def test_session_rejects_mismatched_digests(db_path: Path) -> None:
    with CatalogStore(db_path, mode=StoreMode.WRITE) as store:
        with pytest.raises(ConfigurationError):
            ScanSession(store, walk_config=WalkConfig(algorithms=("sha256", "sha512")))


def test_query_engine_reads_session_output(sample_tree: Path, db_path: Path, scan_roots) -> None:
    (scan_id,) = scan_roots(sample_tree, hashing=False)
    with CatalogStore(db_path) as store:
        items = QueryEngine(store).entries()
    assert {item.rel_path for item in items} == {"", "a.txt", "b.txt", "c.txt"}
    assert all(item.entry.scan_id == scan_id for item in items)
    assert all(item.entry.digests is None for item in items)


@pytest.mark.skipif(sys.platform != "linux", reason="needs a filesystem accepting arbitrary name bytes")
def test_non_utf8_file_name_is_catalogued(
    sample_tree: Path, nested_tree: Path, tmp_path: Path, db_path: Path
) -> None:
    with open(os.path.join(os.fsencode(str(sample_tree)), b"bad\xff.txt"), "wb") as handle:
        handle.write(b"x")
    with CatalogStore(db_path, mode=StoreMode.WRITE) as store:
        report = ScanSession(store).run([str(sample_tree), str(nested_tree)])
    assert [outcome.ok for outcome in report.outcomes] == [True, True]

    odd_name = os.fsdecode(b"bad\xff.txt")
    with CatalogStore(db_path) as store:
        engine = QueryEngine(store)
        first = report.outcomes[0].scan_id
        assert {item.rel_path for item in engine.entries(first)} == {"", "a.txt", "b.txt", "c.txt", odd_name}
        groups = engine.duplicate_groups(first)
        items = engine.entries(first)
    assert {item.rel_path for item in groups[0].entries} == {"a.txt", "b.txt", odd_name}

    jsonl_path, _ = CatalogExporter(tmp_path / "out").export(items)
    assert "bad�.txt" in jsonl_path.read_text(encoding="utf-8")
