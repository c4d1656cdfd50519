"""Newline-delimited JSON output for extraction results."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from types import TracebackType
from typing import IO, Any, Dict, Iterator, Optional, Sequence

from loguru import logger

from qakg.extraction.models import ResultRecord


class JsonlResultWriter:
    """Append result records to a JSONL file, one object per line.

    The file is opened (and its parent directory created) on ``open()`` or on
    entering the context manager, so an unwritable location fails before any
    unit is dispatched. Writes are serialized and flushed per batch.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.records_written = 0
        self._handle: Optional[IO[str]] = None
        self._lock = threading.Lock()

    def open(self) -> "JsonlResultWriter":
        if self._handle is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, "w", encoding="utf-8")
            logger.info(f"Writing results to {self.path}")
        return self

    def write_batch(self, records: Sequence[ResultRecord]) -> None:
        if self._handle is None:
            raise RuntimeError("Writer is not open. Call open() first.")
        with self._lock:
            for record in records:
                self._handle.write(json.dumps(record.to_output_dict(), ensure_ascii=False))
                self._handle.write("\n")
            self._handle.flush()
            self.records_written += len(records)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "JsonlResultWriter":
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


def read_records(path: Path | str) -> Iterator[Dict[str, Any]]:
    """Yield output records from a JSONL file, skipping blank and malformed lines."""
    with open(path, encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed result line {line_number} in {path}")
                continue
            if isinstance(record, dict):
                yield record
