from __future__ import annotations

from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest
from neo4j.exceptions import Neo4jError

from qakg.exceptions import GraphSinkError
from qakg.extraction.models import Entity, ExtractionUnit, ParsedExtraction, ParseFailure, Relation, ResultRecord
from qakg.storage.graph_sink import (
    SCHEMA_STATEMENTS,
    UPSERT_CHUNKS,
    UPSERT_ENTITIES,
    UPSERT_RELATIONS,
    Neo4jGraphSink,
    entity_key,
)
from qakg.utils.config import DatabaseConfig


@pytest.fixture
def driver() -> MagicMock:
    return MagicMock()


def _session(driver: MagicMock) -> MagicMock:
    return driver.session.return_value


def _rows(session: MagicMock, query: str) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for call in session.run.call_args_list:
        if call.args and call.args[0] == query:
            rows.extend(call.kwargs["rows"])
    return rows


def _record(index: int, *, failed: bool = False) -> ResultRecord:
    unit = ExtractionUnit(
        doc_id=f"ROW_{index}",
        chunk_id=f"{index:016x}",
        question="How do I set up auto-pay?",
        text="Q: How do I set up auto-pay?",
    )
    if failed:
        return ResultRecord.from_unit(unit, ParseFailure(raw="???"))
    extraction = ParsedExtraction(
        entities=[Entity(name="App", type="APP"), Entity(name="auto-pay", type="FEATURE")],
        relations=[
            Relation(head="app", relation="supports", tail="Auto-Pay", confidence=0.9),
            Relation(head="App", relation="uses", tail="Nowhere", confidence=0.5),
        ],
        intent="auto_payment_setup",
    )
    return ResultRecord.from_unit(unit, extraction)


def test_write_records_upserts_chunks_entities_and_relations(driver: MagicMock) -> None:
    sink = Neo4jGraphSink(DatabaseConfig(), driver=driver)

    stats = sink.write_records([_record(1)])

    session = _session(driver)
    chunk_rows = _rows(session, UPSERT_CHUNKS)
    assert chunk_rows[0]["chunk_id"] == f"{1:016x}"
    assert chunk_rows[0]["intent"] == "auto_payment_setup"
    assert chunk_rows[0]["degraded"] is False

    entity_rows = _rows(session, UPSERT_ENTITIES)
    assert [r["key"] for r in entity_rows] == ["app|app", "auto-pay|feature"]

    relation_rows = _rows(session, UPSERT_RELATIONS)
    assert relation_rows == [
        {
            "chunk_id": f"{1:016x}",
            "head_key": "app|app",
            "tail_key": "auto-pay|feature",
            "relation": "supports",
            "confidence": 0.9,
        }
    ]
    assert stats.records == 1
    assert stats.relations == 1
    session.close.assert_called()


def test_degraded_records_only_write_chunk_nodes(driver: MagicMock) -> None:
    sink = Neo4jGraphSink(DatabaseConfig(), driver=driver)

    sink.write_records([_record(1, failed=True)])

    session = _session(driver)
    assert len(_rows(session, UPSERT_CHUNKS)) == 1
    assert _rows(session, UPSERT_CHUNKS)[0]["degraded"] is True
    assert _rows(session, UPSERT_ENTITIES) == []
    assert _rows(session, UPSERT_RELATIONS) == []


def test_records_are_written_in_batches(driver: MagicMock) -> None:
    sink = Neo4jGraphSink(DatabaseConfig(write_batch_size=2), driver=driver)

    stats = sink.write_records([_record(i) for i in range(5)])

    chunk_calls = [c for c in _session(driver).run.call_args_list if c.args[0] == UPSERT_CHUNKS]
    assert [len(c.kwargs["rows"]) for c in chunk_calls] == [2, 2, 1]
    assert stats.records == 5


def test_output_dicts_are_accepted_and_invalid_ones_skipped(driver: MagicMock) -> None:
    sink = Neo4jGraphSink(DatabaseConfig(), driver=driver)
    as_dict = _record(1, failed=True).to_output_dict()

    stats = sink.write_records([as_dict, {"doc_id": "ROW_9"}])

    assert stats.records == 1
    assert stats.skipped_records == 1
    assert _rows(_session(driver), UPSERT_CHUNKS)[0]["degraded"] is True


def test_driver_errors_are_wrapped(driver: MagicMock) -> None:
    _session(driver).run.side_effect = Neo4jError("write failed")
    sink = Neo4jGraphSink(DatabaseConfig(), driver=driver)

    with pytest.raises(GraphSinkError):
        sink.write_records([_record(1)])


def test_create_schema_runs_every_statement(driver: MagicMock) -> None:
    sink = Neo4jGraphSink(DatabaseConfig(neo4j_database="qa"), driver=driver)

    sink.create_schema()

    driver.session.assert_called_with(database="qa")
    statements = [c.args[0] for c in _session(driver).run.call_args_list]
    assert statements == list(SCHEMA_STATEMENTS)


def test_session_requires_connection() -> None:
    sink = Neo4jGraphSink(DatabaseConfig())

    with pytest.raises(RuntimeError, match="Not connected"):
        with sink.session():
            pass


def test_entity_key_is_case_insensitive() -> None:
    assert entity_key("Auto-Pay", "FEATURE") == entity_key("auto-pay", "feature") == "auto-pay|feature"
