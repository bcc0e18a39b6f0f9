"""Example script showing how to run a scan and a duplicate search programmatically."""
from __future__ import annotations

from pathlib import Path

from digestcat import CatalogStore, QueryEngine, ScanSession, StoreMode
from utils.logging import configure_logging


def main() -> None:
    configure_logging("INFO")
    root = Path(__file__).resolve().parents[1]
    db_path = root / "outputs" / "example.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with CatalogStore(db_path, mode=StoreMode.WRITE) as store:
        report = ScanSession(store).run([str(root / "src")])
    print(report.summary())

    with CatalogStore(db_path) as store:
        for group in QueryEngine(store).duplicate_groups():
            print(group.digest_a.hex(), [item.rel_path for item in group.entries])


if __name__ == "__main__":
    main()
