"""Typer-based command line interface for digestcat."""
from __future__ import annotations

import cProfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from digestcat import CatalogError, CatalogStore, QueryEngine, ScanSession, StoreMode, WalkConfig
from digestcat.export import CatalogExporter
from digestcat.schema import CatalogedEntry
from utils.config import DEFAULT_CONFIG_PATH, AppConfig, ConfigError, load_config
from utils.logging import configure_logging, get_logger, verbosity_level
from utils.paths import printable

app = typer.Typer(add_completion=False, help="Catalog directory trees with content digests.")
console = Console()
LOGGER = get_logger(__name__)


@dataclass
class CliState:
    config: AppConfig
    db_path: Path

    def open_store(self, mode: StoreMode) -> CatalogStore:
        algorithms = self.config.digest_algorithms if mode is StoreMode.WRITE else None
        return CatalogStore(self.db_path, mode=mode, algorithms=algorithms)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(code=1)


def _status_label(item: CatalogedEntry) -> str:
    labels = [flag.name.lower() for flag in type(item.entry.status) if flag.value and flag in item.entry.status]
    return ",".join(labels) or "-"


def _display_path(item: CatalogedEntry) -> str:
    return printable(item.rel_path) or "."


@app.callback()
def main(
    ctx: typer.Context,
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Show verbose debug information."),
    db: Optional[Path] = typer.Option(None, "--db", help="Catalog store file (overrides config)."),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="YAML configuration file."),
    cpuprofile: Optional[Path] = typer.Option(None, "--cpuprofile", "-p", help="Write a CPU profile to this file."),
) -> None:
    configure_logging(verbosity_level(verbose))
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        _fail(str(exc))
    ctx.obj = CliState(config=config, db_path=db or config.db_path)
    LOGGER.debug("using db: %s", ctx.obj.db_path)

    if cpuprofile is not None:
        profiler = cProfile.Profile()
        profiler.enable()

        def _dump_profile() -> None:
            profiler.disable()
            profiler.dump_stats(str(cpuprofile))

        ctx.call_on_close(_dump_profile)


@app.command()
def create(
    ctx: typer.Context,
    roots: Optional[List[str]] = typer.Argument(None, help="Start directory(ies); defaults to the current one."),
    nohash: bool = typer.Option(False, "--nohash", "-n", help="Don't hash files."),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Threads used for hashing."),
) -> None:
    """Scan the specified directory trees into a new scan each."""

    state: CliState = ctx.obj
    walk_config = WalkConfig(
        algorithms=tuple(state.config.digest_algorithms),
        chunk_size=state.config.chunk_size,
        workers=workers or state.config.workers,
    )
    try:
        with state.open_store(StoreMode.WRITE) as store:
            report = ScanSession(store, hashing=not nohash, walk_config=walk_config).run(roots or ["."])
    except CatalogError as exc:
        _fail(str(exc))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted; the last scan was committed and may be truncated.[/yellow]")
        raise typer.Exit(code=1)

    for outcome in report.outcomes:
        label = f"scan {outcome.scan_id}" if outcome.error is None else f"[red]failed: {outcome.error}[/red]"
        console.print(f"{escape(printable(outcome.root))}: {label}")
    console.print(report.summary())
    if report.failed:
        raise typer.Exit(code=1)


@app.command("list")
def list_(
    ctx: typer.Context,
    scan: Optional[str] = typer.Argument(None, help="Scan id; defaults to the most recent scan."),
    duplicates: bool = typer.Option(False, "--duplicates", "-u", help="List files with same contents only."),
) -> None:
    """List entries of a scan."""

    state: CliState = ctx.obj
    try:
        with state.open_store(StoreMode.READ) as store:
            engine = QueryEngine(store)
            resolved = engine.resolve_scan(scan)
            if duplicates:
                groups = engine.duplicate_groups(resolved.id)
                for group in groups:
                    table = Table(title=f"{group.digest_a.hex()} ({group.size} bytes)", show_header=False)
                    table.add_column("path", overflow="fold")
                    for item in group.entries:
                        table.add_row(_display_path(item))
                    console.print(table)
                console.print(f"{len(groups)} duplicate group(s) in scan {resolved.id}")
                return
            items = engine.entries(resolved.id)
    except CatalogError as exc:
        _fail(str(exc))

    table = Table(title=f"Scan {resolved.id}: {printable(resolved.root)}")
    table.add_column("id", justify="right")
    table.add_column("status")
    table.add_column("size", justify="right")
    table.add_column("digest_a")
    table.add_column("path", overflow="fold")
    for item in items:
        digest = item.entry.digest_a.hex() if item.entry.digest_a else ""
        table.add_row(str(item.entry.id), _status_label(item), str(item.entry.size), digest, _display_path(item))
    console.print(table)


@app.command()
def compare(
    ctx: typer.Context,
    scan_a: str = typer.Argument(..., help="Reference scan id."),
    scan_b: str = typer.Argument(..., help="Candidate scan id."),
    force: bool = typer.Option(False, "--force", "-f", help="Force removal of files."),
) -> None:
    """Compare two scans; with --force, delete B's files whose content exists in A."""

    state: CliState = ctx.obj
    try:
        with state.open_store(StoreMode.READ) as store:
            engine = QueryEngine(store)
            diff = engine.compare(scan_a, scan_b)
            extraneous = engine.extraneous(scan_a, scan_b)
            removal = engine.remove_extraneous(scan_a, scan_b, force=True) if force else None
    except CatalogError as exc:
        _fail(str(exc))

    for label, items in (("added", diff.added), ("removed", diff.removed), ("changed", diff.changed)):
        console.print(f"[bold]{label}[/bold] ({len(items)})")
        for item in items:
            console.print(f"  {_display_path(item)}", markup=False, highlight=False)
    if removal is None:
        console.print(f"{len(extraneous)} file(s) in scan {diff.scan_b} duplicate content of scan {diff.scan_a}")
        return
    for path in removal.removed:
        console.print(f"removed {printable(str(path))}", markup=False, highlight=False)
    for path, reason in removal.skipped:
        console.print(f"kept {printable(str(path))}: {printable(reason)}", markup=False, highlight=False)
    console.print(f"{len(removal.removed)} file(s) removed, {len(removal.skipped)} kept")


@app.command()
def scans(ctx: typer.Context) -> None:
    """List the scans recorded in the store."""

    state: CliState = ctx.obj
    try:
        with state.open_store(StoreMode.READ) as store:
            rows = store.list_scans()
    except CatalogError as exc:
        _fail(str(exc))
    table = Table()
    table.add_column("id", justify="right")
    table.add_column("root", overflow="fold")
    table.add_column("created (UTC)")
    for row in rows:
        table.add_row(str(row.id), printable(row.root), row.created_utc.isoformat(timespec="seconds"))
    console.print(table)


@app.command()
def export(
    ctx: typer.Context,
    scan: Optional[str] = typer.Argument(None, help="Scan id; defaults to the most recent scan."),
    out: Path = typer.Option(Path("./outputs/catalog"), "--out", help="Output directory for catalog artifacts."),
) -> None:
    """Export a scan to JSONL and Parquet."""

    state: CliState = ctx.obj
    try:
        with state.open_store(StoreMode.READ) as store:
            items = QueryEngine(store).entries(scan)
    except CatalogError as exc:
        _fail(str(exc))
    jsonl_path, parquet_path = CatalogExporter(out).export(items)
    typer.echo(f"Exported {len(items)} entries to {jsonl_path} and {parquet_path}")


if __name__ == "__main__":
    app()
