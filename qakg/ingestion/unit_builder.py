"""Build extraction units from annotated JSONL records.

Each input line is one linguistically annotated question/answer row:

    {"rowIndex": 1, "question": "...", "answer": "...", "type": "...",
     "sentences": [{"text": "...", "tokens": [{"word", "pos", "lemma", "ner"}]}]}

Every field is optional. Lines that cannot be parsed are counted and skipped;
records without any usable text are dropped silently.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel

from qakg.exceptions import InputParseError
from qakg.extraction.models import ExtractionUnit, Hint
from qakg.ingestion.hint_collector import HintCollector, iter_token_arrays, token_word
from qakg.utils.config import UnitConfig

ROW_INDEX_KEYS = ("rowIndex", "row_index")
DOC_ID_KEYS = ("doc_id", "document_id", "id", "source_id", "docId")


class BuildStats(BaseModel):
    """Counters reported after a build."""

    lines_read: int = 0
    blank_lines: int = 0
    malformed_lines: int = 0
    empty_text_records: int = 0
    units_built: int = 0


def chunk_id_for(doc_id: str, position: int) -> str:
    """16-hex-character content hash of a document id and its line position."""
    digest = hashlib.md5(f"{doc_id}||{position}".encode("utf-8")).hexdigest()
    return digest[:16]


def parse_record(line: str | bytes, line_number: int) -> Dict[str, Any]:
    """Parse one JSONL line into a record mapping.

    Raises:
        InputParseError: If the line is not valid UTF-8 or not a JSON object
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InputParseError(f"invalid UTF-8 ({exc.reason})", line_number=line_number) from exc
    try:
        node = json.loads(line)
    except json.JSONDecodeError as exc:
        raise InputParseError(f"invalid JSON ({exc.msg})", line_number=line_number) from exc
    except RecursionError as exc:
        raise InputParseError("JSON nested too deeply", line_number=line_number) from exc
    if not isinstance(node, dict):
        raise InputParseError(
            f"expected a JSON object, got {type(node).__name__}", line_number=line_number
        )
    return node


def _text_field(record: Dict[str, Any], key: str) -> Optional[str]:
    value = record.get(key)
    return value if isinstance(value, str) else None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class UnitBuilder:
    """Normalize annotated records into ``ExtractionUnit`` objects.

    Example:
        >>> builder = UnitBuilder(UnitConfig(max_units=100))
        >>> units = builder.build_from_path(Path("data/nlp_output.jsonl"))
        >>> print(builder.stats.malformed_lines)
    """

    def __init__(
        self,
        config: Optional[UnitConfig] = None,
        hint_collector: Optional[HintCollector] = None,
    ) -> None:
        self.config = config or UnitConfig()
        self.hint_collector = hint_collector or HintCollector(max_hints=self.config.max_hints)
        self.stats = BuildStats()

    def build_from_path(self, path: Path | str) -> List[ExtractionUnit]:
        """Read a JSONL file and build units from it.

        Raises:
            FileNotFoundError: If the input file doesn't exist
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Input file not found: {path}")

        # Lines are decoded one by one so a bad byte sequence only skips its line.
        with open(path, "rb") as handle:
            units = self.build(handle)

        logger.info(
            "Built {} units from {} ({} malformed, {} without text)",
            len(units),
            path,
            self.stats.malformed_lines,
            self.stats.empty_text_records,
        )
        return units

    def build(self, lines: Iterable[str | bytes]) -> List[ExtractionUnit]:
        """Build units from raw JSONL lines, honouring ``max_units``."""
        self.stats = BuildStats()
        units: List[ExtractionUnit] = []

        for line_number, record in self._iter_records(lines):
            unit = self.build_unit(record, line_number)
            if unit is None:
                self.stats.empty_text_records += 1
                continue
            units.append(unit)
            self.stats.units_built += 1
            if self.config.max_units and len(units) >= self.config.max_units:
                break

        return units

    def _iter_records(
        self, lines: Iterable[str | bytes]
    ) -> Iterator[Tuple[int, Dict[str, Any]]]:
        for line_number, line in enumerate(lines, start=1):
            self.stats.lines_read += 1
            line = line.strip()
            if not line:
                self.stats.blank_lines += 1
                continue
            try:
                yield line_number, parse_record(line, line_number)
            except InputParseError as exc:
                self.stats.malformed_lines += 1
                logger.debug(f"Skipping malformed input: {exc}")

    def build_unit(self, record: Dict[str, Any], position: int) -> Optional[ExtractionUnit]:
        """Build one unit; returns None when the record has no usable text."""
        question = _text_field(record, "question")
        answer = _text_field(record, "answer")

        text = (
            self._compose_qa(question, answer)
            or self._join_sentences(record)
            or self._rebuild_from_tokens(record)
        )
        if not text:
            return None

        doc_id = self._resolve_doc_id(record, position)
        hints: Tuple[Hint, ...] = ()
        if self.config.use_ner_hints:
            hints = tuple(self.hint_collector.collect(record))

        return ExtractionUnit(
            doc_id=doc_id,
            chunk_id=chunk_id_for(doc_id, position),
            question=question,
            answer=answer,
            type=_text_field(record, "type"),
            text=text,
            hints=hints,
        )

    def _resolve_doc_id(self, record: Dict[str, Any], position: int) -> str:
        for key in ROW_INDEX_KEYS:
            value = record.get(key)
            if _is_number(value):
                return f"ROW_{value}"
        for key in DOC_ID_KEYS:
            value = _text_field(record, key)
            if value and value.strip():
                return value
        return f"DOC_{position}"

    def _compose_qa(self, question: Optional[str], answer: Optional[str]) -> str:
        parts: List[str] = []
        for prefix, value in (("Q:", question), ("A:", answer)):
            if value is None or not value.strip():
                continue
            value = value.strip()
            parts.append(f"{prefix} {value}" if self.config.keep_qa_prefix else value)
        return " ".join(parts).strip()

    def _join_sentences(self, record: Dict[str, Any]) -> str:
        sentences = record.get("sentences")
        if not isinstance(sentences, list):
            return ""
        texts = []
        for sentence in sentences:
            if isinstance(sentence, dict) and isinstance(sentence.get("text"), str):
                stripped = sentence["text"].strip()
                if stripped:
                    texts.append(stripped)
        return "\n".join(texts)

    def _rebuild_from_tokens(self, record: Dict[str, Any]) -> str:
        words: List[str] = []
        for tokens in iter_token_arrays(record):
            words.extend(w for w in (token_word(t).strip() for t in tokens) if w)
        return " ".join(words)
