"""Shared data models for the extraction pipeline."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

GENERIC_ENTITY_TYPE = "Entity"


class Hint(BaseModel):
    """Named-entity span surfaced to the model as an extraction hint."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = GENERIC_ENTITY_TYPE


class ExtractionUnit(BaseModel):
    """One normalized piece of work submitted for knowledge extraction."""

    model_config = ConfigDict(frozen=True)

    doc_id: str
    chunk_id: str
    question: Optional[str] = None
    answer: Optional[str] = None
    type: Optional[str] = None
    text: str
    hints: Tuple[Hint, ...] = ()

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Extraction unit text must not be empty")
        return v


class Entity(BaseModel):
    """Typed graph node returned by the model."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = GENERIC_ENTITY_TYPE

    @property
    def key(self) -> Tuple[str, str]:
        """Identity key used for deduplication."""
        return self.name.lower(), self.type.lower()


class Relation(BaseModel):
    """Typed, directed edge between two entity names."""

    model_config = ConfigDict(frozen=True)

    head: str = ""
    relation: str = ""
    tail: str = ""
    confidence: Optional[float] = None

    def same_edge(self, head: str, relation: str, tail: str) -> bool:
        """Case-insensitive comparison of the edge triple."""
        return (
            self.head.lower() == head.lower()
            and self.relation.lower() == relation.lower()
            and self.tail.lower() == tail.lower()
        )


class ParsedExtraction(BaseModel):
    """Structured (entities, relations, intent) triple."""

    entities: List[Entity] = Field(default_factory=list)
    relations: List[Relation] = Field(default_factory=list)
    intent: str = ""


class ParseFailure(BaseModel):
    """Model output that could not be repaired into structured data."""

    model_config = ConfigDict(frozen=True)

    raw: str


class ResultRecord(BaseModel):
    """One emitted output row."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    doc_id: str
    chunk_id: str
    question: Optional[str] = None
    answer: Optional[str] = None
    type: Optional[str] = None
    text: str
    entities: List[Entity] = Field(default_factory=list)
    relations: List[Relation] = Field(default_factory=list)
    intent: str = ""
    llm_raw: Optional[Dict[str, str]] = Field(default=None, alias="_llm_raw")

    @classmethod
    def from_unit(
        cls,
        unit: ExtractionUnit,
        extraction: ParsedExtraction | ParseFailure,
    ) -> "ResultRecord":
        """Package a unit with its normalized extraction or parse failure."""
        base: Dict[str, Any] = {
            "doc_id": unit.doc_id,
            "chunk_id": unit.chunk_id,
            "question": unit.question,
            "answer": unit.answer,
            "type": unit.type,
            "text": unit.text,
        }
        if isinstance(extraction, ParseFailure):
            return cls(**base, llm_raw={"raw": extraction.raw})
        return cls(
            **base,
            entities=list(extraction.entities),
            relations=list(extraction.relations),
            intent=extraction.intent,
        )

    @property
    def is_degraded(self) -> bool:
        return self.llm_raw is not None

    def to_output_dict(self) -> Dict[str, Any]:
        """Serialize to the JSONL output shape, omitting absent optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
