from __future__ import annotations

import json
from typing import List

import pytest

from qakg.extraction.models import Entity, ParsedExtraction, Relation
from qakg.normalization.consistency import (
    DEFAULT_PASSES,
    ConsistencyNormalizer,
    GraphState,
    RuleContext,
    split_coordinated,
)
from qakg.utils.config import NormalizationConfig

AUTO_PAY_TEXT = "Q: How do I set up auto-pay? A: Open the app and enable auto-pay from Settings."


def _parsed(entities: List[Entity], relations: List[Relation] | None = None, intent: str = "") -> ParsedExtraction:
    return ParsedExtraction(entities=entities, relations=relations or [], intent=intent)


@pytest.fixture
def normalizer() -> ConsistencyNormalizer:
    return ConsistencyNormalizer(NormalizationConfig())


def test_feature_relation_is_synthesized(normalizer: ConsistencyNormalizer) -> None:
    parsed = _parsed([Entity(name="App", type="APP"), Entity(name="auto-pay", type="FEATURE")])

    result = normalizer.normalize(parsed, AUTO_PAY_TEXT)

    assert result.relations == [Relation(head="App", relation="supports", tail="auto-pay", confidence=0.9)]


def test_feature_entity_is_synthesized_from_text(normalizer: ConsistencyNormalizer) -> None:
    parsed = _parsed([Entity(name="App", type="APP")])

    result = normalizer.normalize(parsed, AUTO_PAY_TEXT)

    assert Entity(name="auto-pay", type="FEATURE") in result.entities
    assert result.relations[0].tail == "auto-pay"


def test_existing_supports_edge_is_not_duplicated(normalizer: ConsistencyNormalizer) -> None:
    parsed = _parsed(
        [Entity(name="App", type="APP"), Entity(name="Auto-Pay", type="FEATURE")],
        [Relation(head="app", relation="Supports", tail="auto-pay", confidence=0.6)],
    )

    result = normalizer.normalize(parsed, AUTO_PAY_TEXT)

    assert len(result.relations) == 1
    assert result.relations[0].confidence == 0.6


def test_legacy_relation_is_redirected_to_feature(normalizer: ConsistencyNormalizer) -> None:
    parsed = _parsed(
        [
            Entity(name="App", type="APP"),
            Entity(name="auto-pay", type="FEATURE"),
            Entity(name="credit card", type="PAYMENT_METHOD"),
        ],
        [Relation(head="App", relation="accepts_method", tail="credit card")],
    )

    result = normalizer.normalize(parsed, AUTO_PAY_TEXT)

    assert Relation(head="auto-pay", relation="accepts_method", tail="credit card", confidence=0.85) in result.relations
    assert not any(r.head == "App" and r.relation == "accepts_method" for r in result.relations)


def test_coordinated_names_are_split(normalizer: ConsistencyNormalizer) -> None:
    parsed = _parsed([Entity(name="bank account or credit card", type="PAYMENT_METHOD")])

    result = normalizer.normalize(parsed, "Pay with a bank account or credit card.")

    assert result.entities == [
        Entity(name="bank account", type="PAYMENT_METHOD"),
        Entity(name="credit card", type="PAYMENT_METHOD"),
    ]


def test_split_handles_and_case_insensitively_on_whole_words() -> None:
    state = GraphState(
        entities=(
            Entity(name="Voice AND Data", type="PLAN"),
            Entity(name="Android", type="APP"),
            Entity(name="Orange", type="ORG"),
            Entity(name="  ", type="ORG"),
        ),
        relations=(),
        intent="",
    )

    result = split_coordinated(state, RuleContext(NormalizationConfig(), ""))

    assert [e.name for e in result.entities] == ["Voice", "Data", "Android", "Orange"]


def test_duplicates_collapse_first_wins(normalizer: ConsistencyNormalizer) -> None:
    parsed = _parsed(
        [
            Entity(name="Netflix", type="BENEFIT"),
            Entity(name="netflix", type="benefit"),
            Entity(name="Netflix", type="ORG"),
        ]
    )

    result = normalizer.normalize(parsed, "")

    assert result.entities == [Entity(name="Netflix", type="BENEFIT"), Entity(name="Netflix", type="ORG")]


def test_product_with_benefit_trigger_is_retyped(normalizer: ConsistencyNormalizer) -> None:
    parsed = _parsed(
        [
            Entity(name="Streaming Credit", type="PRODUCT"),
            Entity(name="Data Allowance", type="product"),
            Entity(name="SIM card", type="PRODUCT"),
            Entity(name="Credit Union", type="ORG"),
        ]
    )

    result = normalizer.normalize(parsed, "")

    assert [e.type for e in result.entities] == ["BENEFIT", "BENEFIT", "PRODUCT", "ORG"]


def test_relation_labels_are_folded(normalizer: ConsistencyNormalizer) -> None:
    entities = [Entity(name="Plan", type="PLAN"), Entity(name="Netflix", type="BENEFIT")]
    relations = [
        Relation(head="Plan", relation=label, tail="Netflix", confidence=0.8)
        for label in ("contains", "Include", "enable", "use", "offers")
    ]

    result = normalizer.normalize(_parsed(entities, relations), "")

    assert [r.relation for r in result.relations] == ["includes", "includes", "enables", "uses", "offers"]


@pytest.mark.parametrize(
    ("confidence", "expected"),
    [(None, 0.75), (0.0, 0.75), (-0.3, 0.75), (1.7, 1.0), (0.42, 0.42), (1.0, 1.0)],
)
def test_confidence_is_clamped(normalizer: ConsistencyNormalizer, confidence, expected) -> None:
    entities = [Entity(name="A", type="APP"), Entity(name="B", type="FEATURE")]
    relations = [Relation(head="A", relation="supports", tail="B", confidence=confidence)]

    result = normalizer.normalize(_parsed(entities, relations), "")

    assert result.relations[0].confidence == pytest.approx(expected)


def test_dangling_relations_are_pruned(normalizer: ConsistencyNormalizer) -> None:
    entities = [Entity(name="Plan", type="PLAN"), Entity(name="Disney+", type="BENEFIT")]
    relations = [
        Relation(head="plan", relation="includes", tail="DISNEY+"),
        Relation(head="Plan", relation="includes", tail="Hulu"),
        Relation(head="", relation="includes", tail="Plan"),
    ]

    result = normalizer.normalize(_parsed(entities, relations), "")

    assert len(result.relations) == 1
    assert result.relations[0].tail == "DISNEY+"


def test_intent_passes_through(normalizer: ConsistencyNormalizer) -> None:
    result = normalizer.normalize(_parsed([], intent="plan_benefits_query"), "")

    assert result.intent == "plan_benefits_query"


def _messy_extraction() -> ParsedExtraction:
    return _parsed(
        [
            Entity(name="App", type="APP"),
            Entity(name="bank account or credit card", type="PAYMENT_METHOD"),
            Entity(name="Data Allowance", type="PRODUCT"),
            Entity(name="data allowance", type="BENEFIT"),
            Entity(name="App", type="APP"),
        ],
        [
            Relation(head="App", relation="accepts_method", tail="credit card"),
            Relation(head="App", relation="support", tail="auto-pay", confidence=3),
            Relation(head="Plan", relation="contains", tail="Data Allowance", confidence=0.5),
        ],
        intent="auto_payment_setup",
    )


def test_normalization_is_idempotent(normalizer: ConsistencyNormalizer) -> None:
    once = normalizer.normalize(_messy_extraction(), AUTO_PAY_TEXT)
    twice = normalizer.normalize(once, AUTO_PAY_TEXT)

    assert twice == once


def test_normalization_is_deterministic(normalizer: ConsistencyNormalizer) -> None:
    first = normalizer.normalize(_messy_extraction(), AUTO_PAY_TEXT)
    second = ConsistencyNormalizer().normalize(_messy_extraction(), AUTO_PAY_TEXT)

    assert json.dumps(first.model_dump()) == json.dumps(second.model_dump())


def test_output_invariants_hold(normalizer: ConsistencyNormalizer) -> None:
    result = normalizer.normalize(_messy_extraction(), AUTO_PAY_TEXT)

    names = {e.name.lower() for e in result.entities}
    for relation in result.relations:
        assert relation.head.lower() in names
        assert relation.tail.lower() in names
        assert 0.0 < relation.confidence <= 1.0


def test_passes_are_declared_in_order() -> None:
    assert [p.name for p in DEFAULT_PASSES] == [
        "split_coordinated",
        "dedupe_entities",
        "retype_benefits",
        "synthesize_features",
        "redirect_feature_relations",
        "fold_relation_labels",
        "clamp_confidence",
        "prune_dangling_relations",
    ]


def test_custom_feature_phrases() -> None:
    config = NormalizationConfig(feature_phrases=["roaming"])
    parsed = _parsed([Entity(name="My App", type="APP")])

    result = ConsistencyNormalizer(config).normalize(parsed, "Enable roaming in My App")

    assert Entity(name="roaming", type="FEATURE") in result.entities
    assert result.relations == [Relation(head="My App", relation="supports", tail="roaming", confidence=0.9)]
