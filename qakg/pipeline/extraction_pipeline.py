"""Concurrent extraction pipeline.

Units are grouped into fixed-size batches and submitted to a thread pool.
Units inside a batch run sequentially on the worker that drew the batch;
batch futures are awaited in submission order so the output file keeps the
input order regardless of completion order.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from types import TracebackType
from typing import Callable, Deque, Dict, List, Optional, Protocol, Sequence

from loguru import logger
from pydantic import BaseModel

from qakg.exceptions import TransportError
from qakg.extraction.inference_client import InferenceClient, create_inference_client
from qakg.extraction.models import ExtractionUnit, ParseFailure, ResultRecord
from qakg.extraction.prompts import PromptBuilder, load_prompt_builder
from qakg.extraction.response_repairer import ResponseRepairer
from qakg.ingestion.unit_builder import BuildStats, UnitBuilder
from qakg.normalization.consistency import ConsistencyNormalizer
from qakg.storage.jsonl_writer import JsonlResultWriter
from qakg.utils.config import Config, PipelineConfig

# Sent through the repairer when every attempt came back empty or failed.
PLACEHOLDER_CONTENT = "{}"


class ResultWriter(Protocol):
    def write_batch(self, records: Sequence[ResultRecord]) -> None:
        ...


class RunSummary(BaseModel):
    """Counters describing one orchestrator run."""

    units_submitted: int = 0
    records_written: int = 0
    degraded_records: int = 0
    placeholder_records: int = 0
    transport_failures: int = 0
    batches_written: int = 0
    stopped_early: bool = False
    elapsed_seconds: float = 0.0


class ExtractionProgress:
    """Unit-level progress tracker with heartbeat logging."""

    def __init__(self, total_units: int, heartbeat_seconds: float = 15.0) -> None:
        self.total = max(0, total_units)
        self.heartbeat_seconds = heartbeat_seconds
        self.done = 0
        self._start = time.time()
        self._last_log = 0.0
        self._lock = threading.Lock()

    def update(self, increment: int = 1) -> None:
        with self._lock:
            self.done = min(self.done + increment, self.total)
            now = time.time()
            elapsed = max(now - self._start, 1e-6)
            rate = self.done / elapsed
            remaining = max(self.total - self.done, 0)
            eta_seconds = remaining / rate if rate > 0 else float("inf")

            should_log = (
                self.done == self.total
                or self._last_log == 0
                or (now - self._last_log) >= self.heartbeat_seconds
            )
            if should_log:
                percent = (self.done / max(self.total, 1)) * 100
                logger.info(
                    "Extraction: {}/{} ({:.0f}%), {:.2f} units/s, ETA {}",
                    self.done,
                    self.total,
                    percent,
                    rate,
                    self._format_eta(eta_seconds),
                )
                self._last_log = now

    @staticmethod
    def _format_eta(seconds: float) -> str:
        if seconds == float("inf"):
            return "unknown"
        minutes, secs = divmod(int(seconds), 60)
        hours, minutes = divmod(minutes, 60)
        if hours:
            return f"{hours}h{minutes:02d}m"
        if minutes:
            return f"{minutes}m{secs:02d}s"
        return f"{secs}s"


def chunked(units: Sequence[ExtractionUnit], size: int) -> List[List[ExtractionUnit]]:
    return [list(units[i : i + size]) for i in range(0, len(units), size)]


class ExtractionOrchestrator:
    """Dispatch units through prompt -> inference -> repair -> normalize.

    Every accepted unit yields exactly one ``ResultRecord``: transport
    failures are retried with linear backoff and then degraded to an empty
    placeholder response, and unparseable output becomes a record carrying the
    raw text. Any other error raised while processing a unit is logged and
    degrades that unit only.
    """

    def __init__(
        self,
        client: InferenceClient,
        prompt_builder: Optional[PromptBuilder] = None,
        repairer: Optional[ResponseRepairer] = None,
        normalizer: Optional[ConsistencyNormalizer] = None,
        config: Optional[PipelineConfig] = None,
        *,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.client = client
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.repairer = repairer or ResponseRepairer()
        self.normalizer = normalizer or ConsistencyNormalizer()
        self.config = config or PipelineConfig()
        self._sleep = sleep_fn or time.sleep
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()
        self.stats: Dict[str, int] = self._empty_stats()
        self._progress: Optional[ExtractionProgress] = None

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {"degraded_records": 0, "placeholder_records": 0, "transport_failures": 0}

    def _bump(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self.stats[key] += amount

    # -----------------------
    # Stop control
    # -----------------------
    def request_stop(self) -> None:
        """Stop submitting new batches; in-flight batches still complete."""
        if not self._stop_event.is_set():
            logger.warning("Stop requested: finishing in-flight batches")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # -----------------------
    # Per-unit processing
    # -----------------------
    def fetch_content(self, unit: ExtractionUnit) -> Optional[str]:
        """Ask the endpoint for non-empty content; None once the budget is spent."""
        prompt = self.prompt_builder.build(unit)
        attempts = max(1, self.config.max_retries)

        for attempt in range(1, attempts + 1):
            try:
                content = self.client.complete(prompt.system, prompt.user)
            except TransportError as exc:
                self._bump("transport_failures")
                logger.warning(
                    f"Inference failed for chunk {unit.chunk_id} "
                    f"(attempt {attempt}/{attempts}): {exc}"
                )
            else:
                if content and content.strip():
                    return content
                logger.warning(
                    f"Empty response for chunk {unit.chunk_id} (attempt {attempt}/{attempts})"
                )
            if attempt < attempts:
                self._sleep(attempt * self.config.retry_backoff_seconds)

        logger.warning(
            f"Retry budget exhausted for chunk {unit.chunk_id}; emitting empty record"
        )
        return None

    def process_unit(self, unit: ExtractionUnit) -> ResultRecord:
        """Always return one record for ``unit``; unexpected errors degrade it."""
        content: Optional[str] = None
        try:
            content = self.fetch_content(unit)
            return self._record_for(unit, content)
        except Exception:  # noqa: BLE001
            self._bump("degraded_records")
            logger.exception(
                f"Unexpected failure for chunk {unit.chunk_id}; emitting degraded record"
            )
            return ResultRecord.from_unit(unit, ParseFailure(raw=content or ""))

    def _record_for(self, unit: ExtractionUnit, content: Optional[str]) -> ResultRecord:
        if content is None:
            self._bump("placeholder_records")
            parsed = self.repairer.parse(PLACEHOLDER_CONTENT)
            return ResultRecord.from_unit(unit, parsed)

        parsed = self.repairer.parse(content)
        if isinstance(parsed, ParseFailure):
            self._bump("degraded_records")
            logger.warning(
                f"Could not parse model output for chunk {unit.chunk_id} "
                f"({len(content)} chars); keeping raw payload"
            )
            return ResultRecord.from_unit(unit, parsed)

        return ResultRecord.from_unit(unit, self.normalizer.normalize(parsed, unit.text))

    def _process_batch(self, batch: Sequence[ExtractionUnit]) -> List[ResultRecord]:
        records = []
        for unit in batch:
            records.append(self.process_unit(unit))
            if self._progress is not None:
                self._progress.update()
        return records

    # -----------------------
    # Run loop
    # -----------------------
    def run(self, units: Sequence[ExtractionUnit], writer: ResultWriter) -> RunSummary:
        """Process all units and hand each finished batch to ``writer`` in order."""
        start = time.time()
        summary = RunSummary()
        self.stats = self._empty_stats()
        batches = chunked(units, self.config.batch_size)
        window = self.config.max_workers * self.config.prefetch_batches
        self._progress = ExtractionProgress(len(units), self.config.heartbeat_seconds)

        logger.info(
            f"Dispatching {len(units)} units in {len(batches)} batches "
            f"({self.config.max_workers} workers, batch size {self.config.batch_size})"
        )

        pending: Deque[Future[List[ResultRecord]]] = deque()
        with ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="qakg-extract"
        ) as executor:
            for batch in batches:
                while len(pending) >= window:
                    self._write_next(pending, writer, summary)
                if self.stop_requested:
                    summary.stopped_early = True
                    break
                pending.append(executor.submit(self._process_batch, batch))
                summary.units_submitted += len(batch)

            while pending:
                self._write_next(pending, writer, summary)

        self._progress = None
        with self._stats_lock:
            summary.degraded_records = self.stats["degraded_records"]
            summary.placeholder_records = self.stats["placeholder_records"]
            summary.transport_failures = self.stats["transport_failures"]
        summary.elapsed_seconds = time.time() - start

        logger.info(
            f"Extraction finished: {summary.records_written} records written, "
            f"{summary.degraded_records} unparseable, {summary.placeholder_records} empty "
            f"after retries, {summary.elapsed_seconds:.1f}s"
        )
        return summary

    @staticmethod
    def _write_next(
        pending: Deque[Future[List[ResultRecord]]],
        writer: ResultWriter,
        summary: RunSummary,
    ) -> None:
        records = pending.popleft().result()
        writer.write_batch(records)
        summary.records_written += len(records)
        summary.batches_written += 1


class ExtractionPipeline:
    """Wire configuration into a ready-to-run extraction job.

    Example:
        >>> with ExtractionPipeline.from_config(load_config("config/config.yaml")) as pipeline:
        ...     summary = pipeline.run()
    """

    def __init__(
        self,
        config: Config,
        orchestrator: ExtractionOrchestrator,
        unit_builder: Optional[UnitBuilder] = None,
    ) -> None:
        self.config = config
        self.orchestrator = orchestrator
        self.unit_builder = unit_builder or UnitBuilder(config.units)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        client: Optional[InferenceClient] = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> "ExtractionPipeline":
        prompt_builder = load_prompt_builder(
            config.prompts_path,
            config.ontology.entity_types,
            config.ontology.relation_types,
        )
        orchestrator = ExtractionOrchestrator(
            client or create_inference_client(config.llm),
            prompt_builder,
            ResponseRepairer(config.normalization.generic_entity_type),
            ConsistencyNormalizer(config.normalization),
            config.pipeline,
            sleep_fn=sleep_fn,
        )
        return cls(config, orchestrator)

    @property
    def build_stats(self) -> BuildStats:
        return self.unit_builder.stats

    def request_stop(self) -> None:
        self.orchestrator.request_stop()

    def run(
        self,
        input_path: Optional[Path] = None,
        output_path: Optional[Path] = None,
    ) -> RunSummary:
        """Build units from the input file and write results to the output file.

        Raises:
            FileNotFoundError: If the input file doesn't exist
            OSError: If the output file cannot be opened or written
        """
        input_path = Path(input_path or self.config.input_path)
        output_path = Path(output_path or self.config.output_path)

        units = self.unit_builder.build_from_path(input_path)
        with JsonlResultWriter(output_path) as writer:
            return self.orchestrator.run(units, writer)

    def close(self) -> None:
        """Release the inference client."""
        self.orchestrator.client.close()

    def __enter__(self) -> "ExtractionPipeline":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
