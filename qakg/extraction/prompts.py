"""Prompt rendering for knowledge extraction.

The built-in instructions can be replaced by a YAML file with ``system`` and
``user_template`` keys. The user template may reference ``{text}``,
``{hints_block}``, ``{type_block}``, ``{schema}``, ``{entity_types}`` and
``{relation_types}``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional, Sequence

import yaml

from qakg.extraction.models import ExtractionUnit
from qakg.ontology import ENTITY_TYPES, RELATION_TYPES

OUTPUT_SCHEMA = (
    "{\n"
    '  "entities": [{"name": "...", "type": "..."}],\n'
    '  "relations": [{"head": "...", "relation": "...", "tail": "...", "confidence": 0.0}],\n'
    '  "intent": "..."\n'
    "}"
)

DEFAULT_SYSTEM_PROMPT = """\
You are a precise information extraction system for building a knowledge graph.
From the given TEXT (may include Question/Answer) and optional HINTS (from NER),
produce ONLY a valid JSON object following the SCHEMA. No explanations, no prose, no code fences.

Requirements:
1) Extract all relevant entities (products, apps, services, features, payment methods, plans, benefits).
   Each entity must have {{name, type}}.
2) Whenever the text describes an action or capability offered by the app, plan or system
   (e.g. auto-pay, data sharing, call forwarding, roaming), treat it as an entity of type FEATURE.
   Infer feature names from actions if needed ('set up auto-pay' -> 'auto-pay').
3) Split coordinated mentions: 'X or Y' and 'X and Y' become separate entities.
4) Assign entity types from the allowed ontology: [{entity_types}]. Map loosely if needed.
5) Build relations {{head, relation, tail, confidence}} using only: [{relation_types}].
   head and tail must be exact entity names.
6) Direction follows natural semantics: APP -> FEATURE (supports), FEATURE -> PAYMENT_METHOD
   (accepts_method), PLAN -> BENEFIT/PRODUCT (includes).
7) Terms ending with 'credits', 'allowance', 'bonus' or 'benefit' are BENEFIT rather than PRODUCT.
8) Confidence is a number in [0,1]. Use 0.75 if unsure.
9) Provide a concise snake_case intent (e.g. 'auto_payment_setup', 'plan_benefits_query').
"""

DEFAULT_USER_TEMPLATE = """\
TEXT:
{text}

{hints_block}{type_block}SCHEMA (return exactly this JSON shape):
{schema}
"""


class Prompt(NamedTuple):
    system: str
    user: str


def _render(template: str, context: Dict[str, Any], label: str) -> str:
    try:
        return template.format(**context)
    except KeyError as exc:
        raise ValueError(
            f"Unknown placeholder {exc.args[0]!r} in {label} prompt template "
            "(escape literal braces as '{{' and '}}')"
        ) from exc
    except (AttributeError, IndexError, ValueError) as exc:
        raise ValueError(f"Malformed {label} prompt template: {exc}") from exc


class PromptBuilder:
    """Render extraction units into (system, user) prompt pairs.

    Rendering is a pure function of the unit and the vocabularies captured at
    construction time, so one builder is shared by every worker. Both
    templates are rendered once at construction so a broken template fails
    here rather than inside a worker.
    """

    def __init__(
        self,
        entity_types: Sequence[str] = ENTITY_TYPES,
        relation_types: Sequence[str] = RELATION_TYPES,
        *,
        system_template: str = DEFAULT_SYSTEM_PROMPT,
        user_template: str = DEFAULT_USER_TEMPLATE,
    ) -> None:
        self.entity_types = tuple(entity_types)
        self.relation_types = tuple(relation_types)
        self.user_template = user_template
        self.system_prompt = _render(system_template, self._vocabulary_context(), "system").strip()
        _render(user_template, self._user_context("text", "hints", "type"), "user")

    @classmethod
    def from_yaml(
        cls,
        path: str | Path,
        entity_types: Sequence[str] = ENTITY_TYPES,
        relation_types: Sequence[str] = RELATION_TYPES,
    ) -> "PromptBuilder":
        """Load prompt templates from YAML.

        Raises:
            FileNotFoundError: If the template file doesn't exist
            ValueError: If the YAML root is not a mapping or a template is malformed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Extraction prompt template not found: {path}")
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Prompt template root must be a mapping/dict: {path}")

        return cls(
            entity_types,
            relation_types,
            system_template=str(data.get("system") or DEFAULT_SYSTEM_PROMPT),
            user_template=str(data.get("user_template") or DEFAULT_USER_TEMPLATE),
        )

    def build(self, unit: ExtractionUnit) -> Prompt:
        context = self._user_context(
            unit.text,
            self._hints_block(unit),
            f"TYPE: {unit.type}\n" if unit.type and unit.type.strip() else "",
        )
        return Prompt(system=self.system_prompt, user=_render(self.user_template, context, "user"))

    def _vocabulary_context(self) -> Dict[str, Any]:
        return {
            "entity_types": ", ".join(self.entity_types),
            "relation_types": ", ".join(self.relation_types),
        }

    def _user_context(self, text: str, hints_block: str, type_block: str) -> Dict[str, Any]:
        context = self._vocabulary_context()
        context.update(
            text=text,
            hints_block=hints_block,
            type_block=type_block,
            schema=OUTPUT_SCHEMA,
        )
        return context

    @staticmethod
    def _hints_block(unit: ExtractionUnit) -> str:
        if not unit.hints:
            return ""
        lines = [f"- {hint.name} :: {hint.type}" for hint in unit.hints]
        return "HINTS (NER):\n" + "\n".join(lines) + "\n\n"


def load_prompt_builder(
    prompts_path: Optional[Path],
    entity_types: Sequence[str] = ENTITY_TYPES,
    relation_types: Sequence[str] = RELATION_TYPES,
) -> PromptBuilder:
    """Return a builder from ``prompts_path`` or the built-in templates."""
    if prompts_path is None:
        return PromptBuilder(entity_types, relation_types)
    return PromptBuilder.from_yaml(prompts_path, entity_types, relation_types)
