"""Normalization package."""

from qakg.normalization.consistency import (
    DEFAULT_PASSES,
    ConsistencyNormalizer,
    GraphState,
    NormalizationPass,
    RuleContext,
)

__all__ = [
    "ConsistencyNormalizer",
    "DEFAULT_PASSES",
    "GraphState",
    "NormalizationPass",
    "RuleContext",
]
