#!/usr/bin/env python3
"""Knowledge extraction CLI script.

Reads annotated question/answer records (JSONL), asks the configured LLM
endpoint for entities, relations and an intent per record, repairs and
normalizes the answers, and writes one JSON line per record.

Usage:
    python scripts/extract_knowledge.py --input data/nlp_output.jsonl
    python scripts/extract_knowledge.py --config config/config.yaml --workers 4
    python scripts/extract_knowledge.py --provider openai --base-url http://localhost:8000/v1

Exit status:
    0  run completed (per-record failures are reported, not fatal)
    1  input unreadable or output unwritable
    2  invalid configuration

Press Ctrl+C once to stop after the in-flight batches; twice to abort.
"""

import argparse
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from qakg.exceptions import ConfigurationError
from qakg.pipeline.extraction_pipeline import ExtractionPipeline, RunSummary
from qakg.utils.config import Config, load_config
from qakg.utils.logging import configure_logging

# argparse dest -> (config section, field)
_SECTION_FLAGS = {
    "provider": ("llm", "provider"),
    "model": ("llm", "model"),
    "base_url": ("llm", "base_url"),
    "temperature": ("llm", "temperature"),
    "workers": ("pipeline", "max_workers"),
    "batch_size": ("pipeline", "batch_size"),
    "max_retries": ("pipeline", "max_retries"),
    "max_units": ("units", "max_units"),
    "keep_qa_prefix": ("units", "keep_qa_prefix"),
    "use_ner_hints": ("units", "use_ner_hints"),
    "max_hints": ("units", "max_hints"),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Extract a knowledge graph from annotated Q/A records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to YAML configuration file")
    parser.add_argument("--input", "-i", type=Path, help="Annotated JSONL input file")
    parser.add_argument("--output", "-o", type=Path, help="JSONL output file")
    parser.add_argument("--provider", choices=["ollama", "openai"], help="Endpoint protocol")
    parser.add_argument("--model", help="Model identifier")
    parser.add_argument("--base-url", help="Endpoint base URL")
    parser.add_argument("--temperature", type=float, help="Decoding temperature")
    parser.add_argument(
        "--workers", "--threads", dest="workers", type=int, help="Worker pool size"
    )
    parser.add_argument("--batch-size", type=int, help="Units per submitted batch")
    parser.add_argument("--max-retries", type=int, help="Attempts per unit")
    parser.add_argument("--max-units", type=int, help="Stop after this many units (0 = all)")
    parser.add_argument(
        "--keep-qa-prefix",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Prefix question/answer text with 'Q:' and 'A:'",
    )
    parser.add_argument(
        "--use-ner-hints",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Send named-entity hints with each prompt",
    )
    parser.add_argument("--max-hints", type=int, help="Maximum hints per unit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    return parser


def apply_cli_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Return a copy of ``config`` with every flag that was given applied.

    Raises:
        ValidationError: If an override is out of range
    """
    section_updates: Dict[str, Dict[str, Any]] = {}
    for dest, (section, field) in _SECTION_FLAGS.items():
        value = getattr(args, dest, None)
        if value is not None:
            section_updates.setdefault(section, {})[field] = value

    update: Dict[str, Any] = {}
    for section, values in section_updates.items():
        current = getattr(config, section)
        update[section] = type(current)(**{**current.model_dump(), **values})
    if args.input is not None:
        update["input_path"] = args.input
    if args.output is not None:
        update["output_path"] = args.output
    return config.model_copy(update=update)


def render_summary(summary: RunSummary, console: Optional[Console] = None) -> None:
    table = Table(title="Extraction summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    rows: List[tuple] = [
        ("Units submitted", summary.units_submitted),
        ("Records written", summary.records_written),
        ("Unparseable (raw kept)", summary.degraded_records),
        ("Empty after retries", summary.placeholder_records),
        ("Transport failures", summary.transport_failures),
        ("Batches written", summary.batches_written),
        ("Stopped early", "yes" if summary.stopped_early else "no"),
        ("Elapsed", f"{summary.elapsed_seconds:.1f}s"),
    ]
    for label, value in rows:
        table.add_row(label, str(value))
    (console or Console()).print(table)


def _install_stop_handler(pipeline: ExtractionPipeline) -> Any:
    def handle_sigint(signum: int, frame: Any) -> None:
        pipeline.request_stop()
        # A second Ctrl+C aborts immediately.
        signal.signal(signal.SIGINT, signal.default_int_handler)

    return signal.signal(signal.SIGINT, handle_sigint)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI function."""
    args = build_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)

    try:
        config = apply_cli_overrides(load_config(args.config), args)
        config.validate_config()
    except (ConfigurationError, ValidationError, FileNotFoundError, ValueError) as exc:
        logger.error(f"Invalid configuration: {exc}")
        return 2

    configure_logging(config.logging, verbose=args.verbose)

    if not config.input_path.is_file():
        logger.error(f"Input file not found: {config.input_path}")
        return 1

    try:
        pipeline = ExtractionPipeline.from_config(config)
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"Invalid configuration: {exc}")
        return 2

    with pipeline:
        previous_handler = _install_stop_handler(pipeline)
        try:
            summary = pipeline.run(config.input_path, config.output_path)
        except OSError as exc:
            logger.error(f"Extraction aborted: {exc}")
            return 1
        finally:
            signal.signal(signal.SIGINT, previous_handler)

    stats = pipeline.build_stats
    logger.info(
        f"Input: {stats.lines_read} lines, {stats.units_built} units, "
        f"{stats.malformed_lines} malformed, {stats.empty_text_records} without text"
    )
    render_summary(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
