"""Best-effort repair of near-JSON model output.

Models asked for "JSON only" still wrap answers in code fences, leave trailing
commas, or use single quotes. ``ResponseRepairer.parse`` cleans the text, tries
a strict parse of the whole text and then of its outermost brace slice, and
reads fields leniently from whatever object it recovers.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Iterator, List, Optional

from qakg.extraction.models import (
    GENERIC_ENTITY_TYPE,
    Entity,
    ParsedExtraction,
    ParseFailure,
    Relation,
)

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def strip_code_fences(text: str) -> str:
    text = _LEADING_FENCE.sub("", text.strip())
    return _TRAILING_FENCE.sub("", text)


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def brace_slice(text: str) -> Optional[str]:
    """Substring from the first ``{`` to the last ``}``, if both exist in order."""
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    return text[start : end + 1]


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (str, int, float)):
        return str(value)
    return ""


def coerce_confidence(value: Any) -> Optional[float]:
    """Numeric (or numeric-string) confidence, else None."""
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        score = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    return None if math.isnan(score) else score


class ResponseRepairer:
    """Turn raw model text into a ``ParsedExtraction`` or a ``ParseFailure``."""

    def __init__(self, generic_entity_type: str = GENERIC_ENTITY_TYPE) -> None:
        self.generic_entity_type = generic_entity_type

    def parse(self, raw: str) -> ParsedExtraction | ParseFailure:
        for candidate in self._candidates(raw):
            try:
                node = json.loads(candidate)
            except (ValueError, RecursionError):
                # JSONDecodeError is a ValueError; very deep nesting recurses out.
                continue
            if isinstance(node, dict):
                return self._read_extraction(node)
        return ParseFailure(raw=raw)

    def _candidates(self, raw: str) -> Iterator[str]:
        cleaned = remove_trailing_commas(strip_code_fences(raw))
        folded = remove_trailing_commas(strip_code_fences(raw).replace("'", '"'))
        for text in (cleaned, folded):
            yield text
            fragment = brace_slice(text)
            if fragment is not None and fragment != text:
                yield fragment

    def _read_extraction(self, node: dict) -> ParsedExtraction:
        intent = node.get("intent")
        return ParsedExtraction(
            entities=self._read_entities(node.get("entities")),
            relations=self._read_relations(node.get("relations")),
            intent=intent if isinstance(intent, str) else "",
        )

    def _read_entities(self, items: Any) -> List[Entity]:
        if not isinstance(items, list):
            return []
        entities: List[Entity] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            entities.append(
                Entity(
                    name=_scalar_text(item.get("name")),
                    type=_scalar_text(item.get("type")) or self.generic_entity_type,
                )
            )
        return entities

    @staticmethod
    def _read_relations(items: Any) -> List[Relation]:
        if not isinstance(items, list):
            return []
        relations: List[Relation] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            relations.append(
                Relation(
                    head=_scalar_text(item.get("head")),
                    relation=_scalar_text(item.get("relation")),
                    tail=_scalar_text(item.get("tail")),
                    confidence=coerce_confidence(item.get("confidence")),
                )
            )
        return relations
