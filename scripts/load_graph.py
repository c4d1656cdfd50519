#!/usr/bin/env python3
"""Load extraction results into Neo4j.

Usage:
    python scripts/load_graph.py data/llm_structured.jsonl
    python scripts/load_graph.py --config config/config.yaml --create-schema

Connection settings come from NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD and
NEO4J_DATABASE (or the ``database`` section of the configuration file).
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from loguru import logger
from pydantic import ValidationError

from qakg.exceptions import ConfigurationError, GraphSinkError
from qakg.storage.graph_sink import Neo4jGraphSink
from qakg.storage.jsonl_writer import read_records
from qakg.utils.config import load_config
from qakg.utils.logging import configure_logging


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Load extraction results into Neo4j",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "results", nargs="?", type=Path, help="Extraction output (default: configured output_path)"
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to YAML configuration file")
    parser.add_argument(
        "--create-schema", action="store_true", help="Create constraints and indexes first"
    )
    parser.add_argument("--batch-size", type=int, help="Records per write transaction")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)
    try:
        config = load_config(args.config)
        if args.batch_size is not None:
            config.database = type(config.database)(
                **{**config.database.model_dump(), "write_batch_size": args.batch_size}
            )
    except (ConfigurationError, ValidationError, FileNotFoundError, ValueError) as exc:
        logger.error(f"Invalid configuration: {exc}")
        return 2

    configure_logging(config.logging, verbose=args.verbose)

    results_path = args.results or config.output_path
    if not results_path.is_file():
        logger.error(f"Results file not found: {results_path}")
        return 1

    try:
        with Neo4jGraphSink(config.database) as sink:
            if args.create_schema:
                sink.create_schema()
            stats = sink.write_records(read_records(results_path))
    except GraphSinkError as exc:
        logger.error(f"Graph load failed: {exc}")
        return 1

    logger.success(
        f"Loaded {stats.records} records from {results_path} "
        f"({stats.entities} entity mentions, {stats.relations} relations)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
