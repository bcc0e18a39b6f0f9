"""Export committed scans to JSONL and Parquet for external analysis."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Tuple

import pyarrow as pa
import pyarrow.parquet as pq

from utils.logging import get_logger
from utils.paths import printable

from .schema import CatalogedEntry


LOGGER = get_logger(__name__)

EXPORT_SCHEMA = pa.schema(
    [
        ("scan_id", pa.int64()),
        ("id", pa.int64()),
        ("parent_id", pa.int64()),
        ("name", pa.string()),
        ("rel_path", pa.string()),
        ("status", pa.int64()),
        ("size", pa.int64()),
        ("mode", pa.int64()),
        ("modified_utc", pa.string()),
        ("digest_a", pa.string()),
        ("digest_b", pa.string()),
    ]
)


class CatalogExporter:
    """Write catalogued entries to ``catalog.jsonl`` and ``catalog.parquet``."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.jsonl_path = self.output_dir / "catalog.jsonl"
        self.parquet_path = self.output_dir / "catalog.parquet"

    def export(self, entries: Iterable[CatalogedEntry]) -> Tuple[Path, Path]:
        records = []
        for entry in entries:
            record = entry.as_record()
            record["name"] = printable(record["name"])
            record["rel_path"] = printable(record["rel_path"])
            records.append(record)
        with self.jsonl_path.open("w", encoding="utf-8") as handle:
            for record in records:
                handle.write(json.dumps(record, ensure_ascii=False) + "\n")
        table = pa.Table.from_pylist(records, schema=EXPORT_SCHEMA)
        pq.write_table(table, self.parquet_path, compression="snappy")
        LOGGER.info("Exported %d entries to %s", len(records), self.output_dir)
        return self.jsonl_path, self.parquet_path
