"""Static vocabularies for the extracted knowledge graph.

Entity types are softly enforced: the model may answer with any label and only
a few are remapped by the consistency rules. Relation labels are folded into
``RELATION_TYPES`` through ``RELATION_SYNONYMS``; anything else passes through.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple


class EntityType(str, Enum):
    """Entity type labels known to the extraction prompt."""

    APP = "APP"
    PLAN = "PLAN"
    FEATURE = "FEATURE"
    BENEFIT = "BENEFIT"
    PAYMENT_METHOD = "PAYMENT_METHOD"
    ORG = "ORG"
    PRODUCT = "PRODUCT"


class RelationType(str, Enum):
    """Closed relation vocabulary."""

    SUPPORTS = "supports"
    ENABLES = "enables"
    INCLUDES = "includes"
    ACCEPTS_METHOD = "accepts_method"
    BELONGS_TO = "belongs_to"
    USES = "uses"


ENTITY_TYPES: Tuple[str, ...] = tuple(t.value for t in EntityType)
RELATION_TYPES: Tuple[str, ...] = tuple(r.value for r in RelationType)

# Lowercased label -> canonical relation
RELATION_SYNONYMS: Dict[str, str] = {
    "include": RelationType.INCLUDES.value,
    "contain": RelationType.INCLUDES.value,
    "contains": RelationType.INCLUDES.value,
    "support": RelationType.SUPPORTS.value,
    "enable": RelationType.ENABLES.value,
    "use": RelationType.USES.value,
}


def fold_relation_label(label: str) -> str:
    """Map a relation label onto the closed vocabulary.

    Unknown labels are returned unchanged.
    """
    return RELATION_SYNONYMS.get(label.strip().lower(), label)
