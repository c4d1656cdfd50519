"""Extraction package exports."""

from qakg.extraction.inference_client import (
    InferenceClient,
    OllamaChatClient,
    OpenAIChatClient,
    create_inference_client,
)
from qakg.extraction.models import (
    Entity,
    ExtractionUnit,
    Hint,
    ParsedExtraction,
    ParseFailure,
    Relation,
    ResultRecord,
)
from qakg.extraction.prompts import Prompt, PromptBuilder
from qakg.extraction.response_repairer import ResponseRepairer

__all__ = [
    "Entity",
    "ExtractionUnit",
    "Hint",
    "InferenceClient",
    "OllamaChatClient",
    "OpenAIChatClient",
    "ParseFailure",
    "ParsedExtraction",
    "Prompt",
    "PromptBuilder",
    "Relation",
    "ResponseRepairer",
    "ResultRecord",
    "create_inference_client",
]
