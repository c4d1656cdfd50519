from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from qakg.exceptions import GraphSinkError
from qakg.utils.config import reset_config
from scripts import extract_knowledge, load_graph


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


class _FakeClient:
    def __init__(self) -> None:
        self.users: list[str] = []
        self.closed = False

    def complete(self, system: str, user: str) -> str:
        self.users.append(user)
        return '{"entities": [{"name": "App", "type": "APP"}], "intent": "setup"}'

    def close(self) -> None:
        self.closed = True


def _write_input(path: Path) -> None:
    rows = [
        {"rowIndex": 1, "question": "How do I pay?", "answer": "Use the app."},
        {"rowIndex": 2, "question": "Can I use auto-pay?", "answer": "Yes."},
    ]
    path.write_text("\n".join(json.dumps(r) for r in rows) + "\n", encoding="utf-8")


def test_extract_runs_end_to_end_with_overrides(tmp_path: Path) -> None:
    input_path = tmp_path / "in.jsonl"
    output_path = tmp_path / "out.jsonl"
    _write_input(input_path)
    client = _FakeClient()

    with patch("qakg.pipeline.extraction_pipeline.create_inference_client", return_value=client):
        code = extract_knowledge.main(
            [
                "--input", str(input_path),
                "--output", str(output_path),
                "--workers", "2",
                "--batch-size", "1",
                "--no-keep-qa-prefix",
            ]
        )

    assert code == 0
    assert client.closed
    records = [json.loads(line) for line in output_path.read_text(encoding="utf-8").splitlines()]
    assert [r["doc_id"] for r in records] == ["ROW_1", "ROW_2"]
    assert records[0]["text"] == "How do I pay? Use the app."
    assert all(r["intent"] == "setup" for r in records)


def test_extract_missing_config_file_exits_2(tmp_path: Path) -> None:
    assert extract_knowledge.main(["--config", str(tmp_path / "missing.yaml")]) == 2


def test_extract_invalid_override_exits_2(tmp_path: Path) -> None:
    input_path = tmp_path / "in.jsonl"
    _write_input(input_path)

    assert extract_knowledge.main(["--input", str(input_path), "--workers", "0"]) == 2


def test_extract_missing_input_exits_1(tmp_path: Path) -> None:
    assert extract_knowledge.main(["--input", str(tmp_path / "absent.jsonl")]) == 1


def test_cli_overrides_leave_unset_fields_alone() -> None:
    args = extract_knowledge.build_parser().parse_args(["--model", "llama3", "--threads", "3"])
    config = extract_knowledge.load_config(None)

    updated = extract_knowledge.apply_cli_overrides(config, args)

    assert updated.llm.model == "llama3"
    assert updated.llm.base_url == config.llm.base_url
    assert updated.pipeline.max_workers == 3
    assert updated.pipeline.batch_size == config.pipeline.batch_size
    assert updated.units.keep_qa_prefix is True


def test_load_graph_reads_results_into_sink(tmp_path: Path) -> None:
    results = tmp_path / "out.jsonl"
    results.write_text('{"doc_id": "ROW_1", "chunk_id": "abc", "text": "t"}\n', encoding="utf-8")
    sink = MagicMock()
    sink.__enter__.return_value = sink

    with patch("scripts.load_graph.Neo4jGraphSink", return_value=sink):
        code = load_graph.main([str(results), "--create-schema"])

    assert code == 0
    sink.create_schema.assert_called_once()
    loaded = list(sink.write_records.call_args.args[0])
    assert loaded == [{"doc_id": "ROW_1", "chunk_id": "abc", "text": "t"}]


def test_load_graph_failures_exit_1(tmp_path: Path) -> None:
    results = tmp_path / "out.jsonl"
    results.write_text("{}\n", encoding="utf-8")
    sink = MagicMock()
    sink.__enter__.side_effect = GraphSinkError("unreachable")

    with patch("scripts.load_graph.Neo4jGraphSink", return_value=sink):
        assert load_graph.main([str(results)]) == 1

    assert load_graph.main([str(tmp_path / "absent.jsonl")]) == 1
