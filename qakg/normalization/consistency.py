"""Deterministic consistency rules applied to every parsed extraction.

The rules are an ordered list of named passes. Each pass is a pure function
from one ``GraphState`` to the next, so passes can be tested on their own and
the order they depend on is visible in ``DEFAULT_PASSES``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

from loguru import logger

from qakg.extraction.models import Entity, ParsedExtraction, Relation
from qakg.ontology import fold_relation_label
from qakg.utils.config import NormalizationConfig

_COORDINATION = re.compile(r"\b(?:or|and)\b", re.IGNORECASE)


class GraphState(NamedTuple):
    entities: Tuple[Entity, ...]
    relations: Tuple[Relation, ...]
    intent: str


@dataclass(frozen=True)
class RuleContext:
    config: NormalizationConfig
    source_text: str

    @property
    def lowered_text(self) -> str:
        return self.source_text.lower()


RuleFn = Callable[[GraphState, RuleContext], GraphState]


class NormalizationPass(NamedTuple):
    name: str
    apply: RuleFn


def find_entity(entities: Sequence[Entity], name: str) -> Optional[Entity]:
    """First entity whose name matches ``name`` case-insensitively."""
    target = name.lower()
    for entity in entities:
        if entity.name.lower() == target:
            return entity
    return None


def first_entity_of_type(entities: Sequence[Entity], entity_type: str) -> Optional[Entity]:
    target = entity_type.lower()
    for entity in entities:
        if entity.type.lower() == target:
            return entity
    return None


def split_coordinated(state: GraphState, ctx: RuleContext) -> GraphState:
    """Split 'X or Y' / 'X and Y' names into separate same-typed entities."""
    expanded: List[Entity] = []
    for entity in state.entities:
        name = entity.name.strip()
        if not name:
            continue
        if not _COORDINATION.search(name):
            expanded.append(entity if name == entity.name else entity.model_copy(update={"name": name}))
            continue
        for fragment in _COORDINATION.split(name):
            fragment = fragment.strip()
            if fragment:
                expanded.append(Entity(name=fragment, type=entity.type))
    return state._replace(entities=tuple(expanded))


def dedupe_entities(state: GraphState, ctx: RuleContext) -> GraphState:
    """Collapse entities sharing a case-insensitive (name, type) key; first wins."""
    seen: Set[Tuple[str, str]] = set()
    unique: List[Entity] = []
    for entity in state.entities:
        if entity.key in seen:
            continue
        seen.add(entity.key)
        unique.append(entity)
    return state._replace(entities=tuple(unique))


def retype_benefits(state: GraphState, ctx: RuleContext) -> GraphState:
    """Product-typed entities named like an allowance or credit become benefits."""
    product = ctx.config.product_type.lower()
    triggers = [t.lower() for t in ctx.config.benefit_triggers]
    retyped: List[Entity] = []
    for entity in state.entities:
        lowered = entity.name.lower()
        if entity.type.lower() == product and any(t in lowered for t in triggers):
            entity = entity.model_copy(update={"type": ctx.config.benefit_type})
        retyped.append(entity)
    # Retyping can make two entities share a key.
    return dedupe_entities(state._replace(entities=tuple(retyped)), ctx)


def synthesize_features(state: GraphState, ctx: RuleContext) -> GraphState:
    """Add a feature entity for every feature phrase mentioned in the source text."""
    entities = list(state.entities)
    for phrase in ctx.config.feature_phrases:
        if phrase.lower() in ctx.lowered_text and find_entity(entities, phrase) is None:
            entities.append(Entity(name=phrase, type=ctx.config.feature_type))
    return dedupe_entities(state._replace(entities=tuple(entities)), ctx)


def redirect_feature_relations(state: GraphState, ctx: RuleContext) -> GraphState:
    """Attach feature entities to the application and re-point legacy edges."""
    cfg = ctx.config
    features = [
        entity
        for entity in (find_entity(state.entities, phrase) for phrase in cfg.feature_phrases)
        if entity is not None
    ]
    app = first_entity_of_type(state.entities, cfg.app_type)
    if not features or app is None:
        return state

    relations = list(state.relations)
    for feature in features:
        if not any(r.same_edge(app.name, cfg.feature_relation, feature.name) for r in relations):
            relations.append(
                Relation(
                    head=app.name,
                    relation=cfg.feature_relation,
                    tail=feature.name,
                    confidence=cfg.feature_confidence,
                )
            )

    target = features[0].name
    app_name = app.name.lower()
    redirected: List[Relation] = []
    for relation in relations:
        if relation.relation == cfg.legacy_relation and relation.head.lower() == app_name:
            update: Dict[str, object] = {"head": target}
            if relation.confidence is None:
                update["confidence"] = cfg.redirect_confidence
            relation = relation.model_copy(update=update)
        redirected.append(relation)
    return state._replace(relations=tuple(redirected))


def fold_relation_labels(state: GraphState, ctx: RuleContext) -> GraphState:
    folded = []
    for relation in state.relations:
        label = fold_relation_label(relation.relation)
        if label != relation.relation:
            relation = relation.model_copy(update={"relation": label})
        folded.append(relation)
    return state._replace(relations=tuple(folded))


def clamp_confidence(state: GraphState, ctx: RuleContext) -> GraphState:
    """Missing or non-positive confidence gets the default; above 1.0 is capped."""
    default = ctx.config.default_confidence
    clamped = []
    for relation in state.relations:
        score = relation.confidence
        if score is None or math.isnan(score) or score <= 0.0:
            score = default
        elif score > 1.0:
            score = 1.0
        if score != relation.confidence:
            relation = relation.model_copy(update={"confidence": score})
        clamped.append(relation)
    return state._replace(relations=tuple(clamped))


def prune_dangling_relations(state: GraphState, ctx: RuleContext) -> GraphState:
    """Drop relations whose head or tail is not an entity name."""
    names = {entity.name.lower() for entity in state.entities}
    kept = []
    for relation in state.relations:
        if relation.head.lower() in names and relation.tail.lower() in names:
            kept.append(relation)
        else:
            logger.debug(
                f"Pruned relation with unknown endpoint: "
                f"{relation.head!r} -[{relation.relation}]-> {relation.tail!r}"
            )
    return state._replace(relations=tuple(kept))


DEFAULT_PASSES: Tuple[NormalizationPass, ...] = (
    NormalizationPass("split_coordinated", split_coordinated),
    NormalizationPass("dedupe_entities", dedupe_entities),
    NormalizationPass("retype_benefits", retype_benefits),
    NormalizationPass("synthesize_features", synthesize_features),
    NormalizationPass("redirect_feature_relations", redirect_feature_relations),
    NormalizationPass("fold_relation_labels", fold_relation_labels),
    NormalizationPass("clamp_confidence", clamp_confidence),
    NormalizationPass("prune_dangling_relations", prune_dangling_relations),
)


class ConsistencyNormalizer:
    """Run the consistency passes over a parsed extraction.

    Example:
        >>> normalizer = ConsistencyNormalizer()
        >>> cleaned = normalizer.normalize(parsed, source_text=unit.text)
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        passes: Sequence[NormalizationPass] = DEFAULT_PASSES,
    ) -> None:
        self.config = config or NormalizationConfig()
        self.passes = tuple(passes)

    def normalize(self, extraction: ParsedExtraction, source_text: str = "") -> ParsedExtraction:
        ctx = RuleContext(config=self.config, source_text=source_text or "")
        state = GraphState(
            entities=tuple(extraction.entities),
            relations=tuple(extraction.relations),
            intent=extraction.intent,
        )
        for rule in self.passes:
            state = rule.apply(state, ctx)
        return ParsedExtraction(
            entities=list(state.entities),
            relations=list(state.relations),
            intent=state.intent,
        )
