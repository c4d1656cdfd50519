"""Pipeline orchestrators for end-to-end workflows."""

from qakg.pipeline.extraction_pipeline import (
    ExtractionOrchestrator,
    ExtractionPipeline,
    ExtractionProgress,
    RunSummary,
)

__all__ = ["ExtractionOrchestrator", "ExtractionPipeline", "ExtractionProgress", "RunSummary"]
