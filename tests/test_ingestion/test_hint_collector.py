from __future__ import annotations

from typing import Any, Dict, List

from qakg.extraction.models import Hint
from qakg.ingestion.hint_collector import HintCollector, iter_token_arrays


def _tok(word: str, ner: str = "O") -> Dict[str, Any]:
    return {"word": word, "pos": "NN", "lemma": word.lower(), "ner": ner}


def _record(*sentences: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"sentences": [{"text": "", "tokens": list(tokens)} for tokens in sentences]}


def test_contiguous_same_tag_tokens_form_one_hint() -> None:
    record = _record(
        [_tok("Pay"), _tok("with"), _tok("U+", "ORGANIZATION"), _tok("Mobile", "ORGANIZATION")]
    )

    hints = HintCollector().collect(record)

    assert hints == [Hint(name="U+ Mobile", type="ORGANIZATION")]


def test_tag_change_flushes_run() -> None:
    record = _record([_tok("Seoul", "CITY"), _tok("Telecom", "ORGANIZATION")])

    hints = HintCollector().collect(record)

    assert hints == [Hint(name="Seoul", type="CITY"), Hint(name="Telecom", type="ORGANIZATION")]


def test_run_at_end_of_array_is_flushed_and_arrays_do_not_merge() -> None:
    record = _record([_tok("Visa", "MISC")], [_tok("Card", "MISC")])

    hints = HintCollector().collect(record)

    assert [h.name for h in hints] == ["Visa", "Card"]


def test_duplicates_are_removed_case_insensitively() -> None:
    record = _record(
        [_tok("Netflix", "ORG"), _tok("and"), _tok("netflix", "ORG"), _tok("and"), _tok("NETFLIX", "PRODUCT")]
    )

    hints = HintCollector().collect(record)

    assert hints == [Hint(name="Netflix", type="ORG"), Hint(name="NETFLIX", type="PRODUCT")]


def test_max_hints_caps_output() -> None:
    tokens = []
    for i in range(10):
        tokens.extend([_tok(f"Name{i}", "PERSON"), _tok(",")])

    assert len(HintCollector(max_hints=3).collect(_record(tokens))) == 3
    assert HintCollector(max_hints=0).collect(_record(tokens)) == []


def test_lenient_token_shapes_never_fail() -> None:
    record = {
        "sentences": [
            {"tokens": [None, "text", {"word": None, "ner": "ORG"}, {"word": "Galaxy"}, {"word": "S24", "ner": "PRODUCT"}]}
        ]
    }

    hints = HintCollector().collect(record)

    assert hints == [Hint(name="S24", type="PRODUCT")]


def test_token_arrays_are_found_breadth_first() -> None:
    record = {
        "nested": {"deep": {"tokens": [_tok("deep")]}},
        "tokens": [_tok("top")],
    }

    arrays = list(iter_token_arrays(record))

    assert [arr[0]["word"] for arr in arrays] == ["top", "deep"]


def test_collect_is_idempotent() -> None:
    record = _record([_tok("KT", "ORG"), _tok("plan"), _tok("5G", "PRODUCT"), _tok("Max", "PRODUCT")])
    collector = HintCollector()

    assert collector.collect(record) == collector.collect(record)
