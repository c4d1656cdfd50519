"""Neo4j sink for extraction results."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from loguru import logger
from neo4j import GraphDatabase, Session
from neo4j.exceptions import DriverError, Neo4jError
from pydantic import BaseModel, ValidationError

from qakg.exceptions import GraphSinkError
from qakg.extraction.models import ResultRecord
from qakg.utils.config import DatabaseConfig

RecordLike = Union[ResultRecord, Mapping[str, Any]]

SCHEMA_STATEMENTS = (
    "CREATE CONSTRAINT qa_chunk_id_unique IF NOT EXISTS "
    "FOR (c:QAChunk) REQUIRE c.chunk_id IS UNIQUE",
    "CREATE CONSTRAINT entity_key_unique IF NOT EXISTS "
    "FOR (e:Entity) REQUIRE e.key IS UNIQUE",
    "CREATE INDEX entity_type_idx IF NOT EXISTS FOR (e:Entity) ON (e.type)",
)

UPSERT_CHUNKS = """
UNWIND $rows AS row
MERGE (c:QAChunk {chunk_id: row.chunk_id})
SET c.doc_id = row.doc_id,
    c.question = row.question,
    c.answer = row.answer,
    c.type = row.type,
    c.text = row.text,
    c.intent = row.intent,
    c.degraded = row.degraded
"""

UPSERT_ENTITIES = """
UNWIND $rows AS row
MATCH (c:QAChunk {chunk_id: row.chunk_id})
MERGE (e:Entity {key: row.key})
ON CREATE SET e.name = row.name, e.type = row.type
MERGE (c)-[:MENTIONS]->(e)
"""

UPSERT_RELATIONS = """
UNWIND $rows AS row
MATCH (h:Entity {key: row.head_key})
MATCH (t:Entity {key: row.tail_key})
MERGE (h)-[r:RELATED {relation: row.relation}]->(t)
ON CREATE SET r.confidence = row.confidence, r.chunk_ids = [row.chunk_id]
ON MATCH SET
    r.confidence = CASE WHEN row.confidence > r.confidence THEN row.confidence ELSE r.confidence END,
    r.chunk_ids = CASE WHEN row.chunk_id IN r.chunk_ids THEN r.chunk_ids ELSE r.chunk_ids + row.chunk_id END
"""


def entity_key(name: str, entity_type: str) -> str:
    return f"{name.lower()}|{entity_type.lower()}"


class GraphLoadStats(BaseModel):
    records: int = 0
    skipped_records: int = 0
    chunks: int = 0
    entities: int = 0
    relations: int = 0


class Neo4jGraphSink:
    """Upsert extraction results into Neo4j.

    Each record becomes a ``QAChunk`` node that ``MENTIONS`` its entities;
    relations become ``RELATED`` edges keyed by label, keeping the highest
    confidence seen and the chunks that asserted them. Records that failed to
    parse only contribute their chunk node.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None, driver: Any = None):
        self.config = config or DatabaseConfig()
        self.uri = self.config.neo4j_uri
        self.database = self.config.neo4j_database
        self.batch_size = self.config.write_batch_size
        self.driver = driver
        self._connected = driver is not None

    def connect(self) -> None:
        """Open the driver and verify connectivity.

        Raises:
            GraphSinkError: If the database is unreachable
        """
        try:
            self.driver = GraphDatabase.driver(
                self.uri, auth=(self.config.neo4j_user, self.config.neo4j_password)
            )
            self.driver.verify_connectivity()
        except (Neo4jError, DriverError) as exc:
            raise GraphSinkError(f"Failed to connect to Neo4j at {self.uri}: {exc}") from exc
        self._connected = True
        logger.info(f"Connected to Neo4j at {self.uri}")

    def close(self) -> None:
        if self.driver:
            self.driver.close()
            self._connected = False
            logger.info("Closed Neo4j connection")

    @contextmanager
    def session(self) -> Iterator[Session]:
        if not self._connected or not self.driver:
            raise RuntimeError("Not connected to Neo4j. Call connect() first.")
        session = self.driver.session(database=self.database)
        try:
            yield session
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create uniqueness constraints and indexes used by the upserts."""
        with self.session() as session:
            for statement in SCHEMA_STATEMENTS:
                try:
                    session.run(statement)
                except Neo4jError as exc:
                    raise GraphSinkError(f"Could not apply schema statement: {exc}") from exc
        logger.info("Graph schema ready")

    def write_records(self, records: Iterable[RecordLike]) -> GraphLoadStats:
        """Upsert records in batches of ``write_batch_size``."""
        stats = GraphLoadStats()
        batch: List[ResultRecord] = []
        for item in records:
            record = self._coerce(item)
            if record is None:
                stats.skipped_records += 1
                continue
            batch.append(record)
            if len(batch) >= self.batch_size:
                self._write_batch(batch, stats)
                batch = []
        if batch:
            self._write_batch(batch, stats)

        logger.info(
            f"Loaded {stats.records} records: {stats.entities} entity mentions, "
            f"{stats.relations} relations ({stats.skipped_records} skipped)"
        )
        return stats

    @staticmethod
    def _coerce(item: RecordLike) -> Optional[ResultRecord]:
        if isinstance(item, ResultRecord):
            return item
        try:
            return ResultRecord.model_validate(dict(item))
        except ValidationError as exc:
            logger.warning(f"Skipping invalid result record: {exc.error_count()} validation errors")
            return None

    def _write_batch(self, records: List[ResultRecord], stats: GraphLoadStats) -> None:
        chunk_rows = [self._chunk_row(record) for record in records]
        entity_rows: List[Dict[str, Any]] = []
        relation_rows: List[Dict[str, Any]] = []
        for record in records:
            if record.is_degraded:
                continue
            entity_rows.extend(self._entity_rows(record))
            relation_rows.extend(self._relation_rows(record))

        try:
            with self.session() as session:
                session.run(UPSERT_CHUNKS, rows=chunk_rows)
                if entity_rows:
                    session.run(UPSERT_ENTITIES, rows=entity_rows)
                if relation_rows:
                    session.run(UPSERT_RELATIONS, rows=relation_rows)
        except Neo4jError as exc:
            raise GraphSinkError(f"Failed to write batch of {len(records)} records: {exc}") from exc

        stats.records += len(records)
        stats.chunks += len(chunk_rows)
        stats.entities += len(entity_rows)
        stats.relations += len(relation_rows)

    @staticmethod
    def _chunk_row(record: ResultRecord) -> Dict[str, Any]:
        return {
            "chunk_id": record.chunk_id,
            "doc_id": record.doc_id,
            "question": record.question,
            "answer": record.answer,
            "type": record.type,
            "text": record.text,
            "intent": record.intent,
            "degraded": record.is_degraded,
        }

    @staticmethod
    def _entity_rows(record: ResultRecord) -> List[Dict[str, Any]]:
        rows: Dict[str, Dict[str, Any]] = {}
        for entity in record.entities:
            key = entity_key(entity.name, entity.type)
            rows.setdefault(
                key,
                {"chunk_id": record.chunk_id, "key": key, "name": entity.name, "type": entity.type},
            )
        return list(rows.values())

    @staticmethod
    def _relation_rows(record: ResultRecord) -> List[Dict[str, Any]]:
        keys_by_name: Dict[str, str] = {}
        for entity in record.entities:
            keys_by_name.setdefault(entity.name.lower(), entity_key(entity.name, entity.type))

        rows = []
        for relation in record.relations:
            head_key = keys_by_name.get(relation.head.lower())
            tail_key = keys_by_name.get(relation.tail.lower())
            if head_key is None or tail_key is None:
                continue
            rows.append(
                {
                    "chunk_id": record.chunk_id,
                    "head_key": head_key,
                    "tail_key": tail_key,
                    "relation": relation.relation,
                    "confidence": relation.confidence,
                }
            )
        return rows

    def __enter__(self) -> "Neo4jGraphSink":
        if not self._connected:
            self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
