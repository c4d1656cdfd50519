"""Ingestion of annotated question/answer records."""

from qakg.ingestion.hint_collector import HintCollector
from qakg.ingestion.unit_builder import BuildStats, UnitBuilder

__all__ = ["BuildStats", "HintCollector", "UnitBuilder"]
