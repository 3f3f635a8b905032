# src/sinks/csv_sink.py — v1
"""CSV output sink (one directory per run, one file per source).

Layout under SINK_ROOT:
    {run_id}/instagram.csv
    {run_id}/x.csv
    {run_id}/tiktok.csv
    {run_id}/index.json   (written by finalize)
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any

from pulsecollect.core.models import utcnow
from pulsecollect.sinks.base_sink import BaseOutputSink, SinkInfo
from pulsecollect.sinks.columns import COLUMNS_BY_SOURCE, record_to_row

logger = logging.getLogger(__name__)


class CsvOutputSink(BaseOutputSink):
    """Write collected rows to per-source CSV files."""

    def __init__(
        self,
        root: Path | str,
        columns_by_source: dict[str, list[str]] | None = None,
    ) -> None:
        self._root = Path(root).expanduser()
        self._columns = columns_by_source or COLUMNS_BY_SOURCE

    async def create_sink(self, run_id: str) -> SinkInfo:
        sink_dir = self._root / run_id
        if sink_dir.resolve().parent != self._root.resolve():
            raise ValueError(f"Run id {run_id!r} does not name a folder under {self._root}")
        sink_dir.mkdir(parents=True, exist_ok=True)
        for source, columns in self._columns.items():
            path = sink_dir / f"{source}.csv"
            if path.exists():
                continue
            with path.open("w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(columns)
        logger.info("Sink created at %s", sink_dir)
        return SinkInfo(sink_id=run_id, location=str(sink_dir))

    async def append_rows(
        self, sink_id: str, source: str, rows: list[dict[str, Any]]
    ) -> int:
        if not rows:
            return 0
        columns = self._columns_for(source)
        path = self._root / sink_id / f"{source}.csv"
        if not path.exists():
            raise FileNotFoundError(f"Sink section missing: {path}")
        with path.open("a", newline="", encoding="utf-8") as f:
            csv.writer(f).writerows(record_to_row(r, columns) for r in rows)
        logger.debug("Appended %d %s row(s) to %s", len(rows), source, sink_id)
        return len(rows)

    async def finalize(self, sink_id: str) -> None:
        sink_dir = self._root / sink_id
        counts = {source: self.count_rows(sink_id, source) for source in self._columns}
        index = {
            "sink_id": sink_id,
            "finalized_at": utcnow().isoformat(),
            "row_counts": counts,
        }
        (sink_dir / "index.json").write_text(json.dumps(index, indent=2), encoding="utf-8")

    def read_rows(self, sink_id: str, source: str) -> list[dict[str, str]]:
        """Read back a section as dicts (header excluded)."""
        path = self._root / sink_id / f"{source}.csv"
        if not path.exists():
            return []
        with path.open(newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))

    def count_rows(self, sink_id: str, source: str) -> int:
        return len(self.read_rows(sink_id, source))

    def _columns_for(self, source: str) -> list[str]:
        try:
            return self._columns[source]
        except KeyError as e:
            raise ValueError(f"No column schema for source: {source!r}") from e
