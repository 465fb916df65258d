"""End-to-end tests for the ragchat CLI with an offline embedder and a mocked chat model."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from ragchat.cli.main import app
from ragchat.db.connection import Database
from ragchat.db.schema import initialize

runner = CliRunner()

_DOC = "Retrieval augmented generation grounds answers.\n"
_QUESTION = "What is retrieval augmented generation?"


def _completion(text: str) -> MagicMock:
    message = MagicMock()
    message.content = text
    message.tool_calls = None
    response = MagicMock()
    response.choices = [MagicMock(message=message)]
    return response


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A project dir with a synthetic embedder and a key-less chat model."""
    for var in ("RAGCHAT_CHAT_MODEL", "RAGCHAT_EMBEDDING_MODEL", "RAGCHAT_FLOW"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.setattr("ragchat.config._GLOBAL_CONFIG_PATH", tmp_path / "global" / "config.yaml")
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    (tmp_path / "rag-intro.md").write_text(_DOC, encoding="utf-8")
    return tmp_path


def _write_config(root, **overrides) -> None:
    data = {
        "embedding": {"provider": "synthetic", "dimensions": 256},
        "chat": {"model": "ollama/llama3"},
        "pipeline": {"flow": "pre_retrieval"},
    }
    data.update(overrides)
    (root / "ragchat.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")


def _empty_db(root) -> None:
    conn = Database(root / ".ragchat.db").connect()
    initialize(conn)
    conn.close()


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


def test_version_command(project):
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("ragchat ")


def test_version_flag(project):
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "ragchat" in result.output


# ---------------------------------------------------------------------------
# ingest / documents / reingest / remove
# ---------------------------------------------------------------------------


def test_ingest_creates_db_and_lists_document(project):
    result = runner.invoke(app, ["ingest", "rag-intro.md"])
    assert result.exit_code == 0, result.output
    assert "Ingested" in result.output
    assert (project / ".ragchat.db").exists()

    listed = runner.invoke(app, ["documents"])
    assert listed.exit_code == 0
    assert "rag-intro" in listed.output


def test_ingest_title_option(project):
    result = runner.invoke(app, ["ingest", "rag-intro.md", "--title", "Intro"])
    assert result.exit_code == 0
    assert "Intro" in runner.invoke(app, ["documents"]).output


def test_ingest_missing_file_exits_1(project):
    result = runner.invoke(app, ["ingest", "nope.md"])
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_ingest_empty_file_exits_1(project):
    (project / "empty.md").write_text("   \n", encoding="utf-8")
    result = runner.invoke(app, ["ingest", "empty.md"])
    assert result.exit_code == 1
    assert "no text to ingest" in result.output


def test_documents_without_db_exits_1(project):
    result = runner.invoke(app, ["documents"])
    assert result.exit_code == 1
    assert "No database found" in result.output


def test_documents_empty(project):
    _empty_db(project)
    result = runner.invoke(app, ["documents"])
    assert result.exit_code == 0
    assert "No documents ingested yet" in result.output


def test_reingest_replaces_content(project):
    runner.invoke(app, ["ingest", "rag-intro.md"])
    (project / "v2.md").write_text("A second version of the notes.", encoding="utf-8")
    result = runner.invoke(app, ["reingest", "1", "v2.md", "--title", "Notes v2"])
    assert result.exit_code == 0, result.output
    assert "Re-ingested" in result.output
    assert "Notes v2" in runner.invoke(app, ["documents"]).output


def test_reingest_unknown_document_exits_1(project):
    _empty_db(project)
    result = runner.invoke(app, ["reingest", "42", "rag-intro.md"])
    assert result.exit_code == 1
    assert "Document not found" in result.output


def test_remove_with_yes(project):
    runner.invoke(app, ["ingest", "rag-intro.md"])
    result = runner.invoke(app, ["remove", "1", "--yes"])
    assert result.exit_code == 0
    assert "Removed: rag-intro" in result.output
    assert "No documents ingested yet" in runner.invoke(app, ["documents"]).output


def test_remove_declined_keeps_document(project):
    runner.invoke(app, ["ingest", "rag-intro.md"])
    result = runner.invoke(app, ["remove", "1"], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert "rag-intro" in runner.invoke(app, ["documents"]).output


def test_remove_unknown_document_exits_1(project):
    _empty_db(project)
    result = runner.invoke(app, ["remove", "7", "--yes"])
    assert result.exit_code == 1
    assert "Document not found" in result.output


# ---------------------------------------------------------------------------
# ask / queries
# ---------------------------------------------------------------------------


def test_ask_pre_retrieval_prints_answer_and_sources(project):
    runner.invoke(app, ["ingest", "rag-intro.md"])
    with patch("ragchat.rag.llm_client.litellm.completion", return_value=_completion("Grounded answer")) as mock:
        result = runner.invoke(app, ["ask", _QUESTION])

    assert result.exit_code == 0, result.output
    assert "Grounded answer" in result.output
    assert "rag-intro (#1)" in result.output
    prompt = mock.call_args.kwargs["messages"][-1]["content"]
    assert "grounds answers" in prompt


def test_ask_without_documents_exits_1(project):
    _empty_db(project)
    with patch("ragchat.rag.llm_client.litellm.completion") as mock:
        result = runner.invoke(app, ["ask", _QUESTION])
    assert result.exit_code == 1
    assert "No relevant documents found" in result.output
    mock.assert_not_called()


def test_ask_tool_flow_direct_answer(project):
    _write_config(project, pipeline={"flow": "tool_based"})
    _empty_db(project)
    with patch("ragchat.rag.llm_client.litellm.completion", return_value=_completion("Hi there")) as mock:
        result = runner.invoke(app, ["ask", "Hello"])

    assert result.exit_code == 0, result.output
    assert "Hi there" in result.output
    assert mock.call_args.kwargs["tool_choice"] == "auto"


def test_ask_chat_failure_exits_1(project):
    runner.invoke(app, ["ingest", "rag-intro.md"])
    with patch("ragchat.rag.llm_client.litellm.completion", side_effect=RuntimeError("boom")):
        result = runner.invoke(app, ["ask", _QUESTION])
    assert result.exit_code == 1
    assert "ollama/llama3" in result.output


def test_ask_missing_api_key_exits_1(project, monkeypatch):
    _write_config(project, chat={"model": "groq/llama3-70b-8192"})
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    _empty_db(project)
    result = runner.invoke(app, ["ask", _QUESTION])
    assert result.exit_code == 1
    assert "GROQ_API_KEY" in result.output


def test_queries_lists_answered_questions(project):
    _write_config(project, pipeline={"flow": "tool_based"})
    _empty_db(project)
    with patch("ragchat.rag.llm_client.litellm.completion", return_value=_completion("RAG means retrieval.")):
        runner.invoke(app, ["ask", "Define RAG"])

    result = runner.invoke(app, ["queries"])
    assert result.exit_code == 0
    assert "Define RAG" in result.output
    assert "RAG means retrieval." in result.output


def test_queries_empty(project):
    _empty_db(project)
    result = runner.invoke(app, ["queries"])
    assert result.exit_code == 0
    assert "No queries recorded yet" in result.output


def test_invalid_config_exits_1(project):
    _write_config(project, pipeline={"flow": "sideways"})
    result = runner.invoke(app, ["documents"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------


def test_chat_loop_answers_resets_and_exits(project):
    _write_config(project, pipeline={"flow": "tool_based"})
    _empty_db(project)
    with patch("ragchat.rag.llm_client.litellm.completion", return_value=_completion("Hello back")) as mock:
        result = runner.invoke(app, ["chat"], input="Hello\n/reset\nexit\n")

    assert result.exit_code == 0, result.output
    assert "Hello back" in result.output
    assert "Conversation cleared" in result.output
    assert "Session closed" in result.output
    assert mock.call_count == 1


def test_chat_keeps_history_within_session(project):
    _write_config(project, pipeline={"flow": "tool_based"})
    _empty_db(project)
    replies = [_completion("First reply"), _completion("Second reply")]
    with patch("ragchat.rag.llm_client.litellm.completion", side_effect=replies) as mock:
        result = runner.invoke(app, ["chat"], input="One\nTwo\n")

    assert result.exit_code == 0, result.output
    second_messages = mock.call_args_list[1].kwargs["messages"]
    contents = [m.get("content") for m in second_messages]
    assert "One" in contents
    assert "First reply" in contents
    assert contents[-1] == "Two"


# ---------------------------------------------------------------------------
# dimension mismatch vs. other validation errors
# ---------------------------------------------------------------------------


def _embedding(vector: list[float]) -> MagicMock:
    response = MagicMock()
    response.data = [{"embedding": vector}]
    return response


def _litellm_embedding(dimensions: int) -> dict:
    return {"provider": "litellm", "model": "ollama/nomic-embed-text", "dimensions": dimensions}


def test_ask_dimension_mismatch_reports_embedding_config(project):
    _write_config(project, embedding=_litellm_embedding(3))
    with patch("ragchat.rag.llm_client.litellm.embedding", return_value=_embedding([1.0, 0.0, 0.0])):
        assert runner.invoke(app, ["ingest", "rag-intro.md"]).exit_code == 0

    _write_config(project, embedding=_litellm_embedding(4))
    with patch(
        "ragchat.rag.llm_client.litellm.embedding", return_value=_embedding([1.0, 0.0, 0.0, 0.0])
    ), patch("ragchat.rag.llm_client.litellm.completion") as chat:
        result = runner.invoke(app, ["ask", _QUESTION])

    assert result.exit_code == 1
    assert "embedding.dimensions" in result.output
    chat.assert_not_called()


def test_ingest_blank_title_is_not_a_dimension_error(project):
    result = runner.invoke(app, ["ingest", "rag-intro.md", "--title", "   "])
    assert result.exit_code == 1
    assert "Document rejected" in result.output
    assert "embedding.dimensions" not in result.output


def test_ask_unrelated_value_error_is_not_reported_as_mismatch(project):
    _empty_db(project)
    with patch(
        "ragchat.rag.orchestrator.QueryOrchestrator.process_query",
        side_effect=ValueError("Unknown message role 'robot'"),
    ):
        result = runner.invoke(app, ["ask", _QUESTION])

    assert isinstance(result.exception, ValueError)
    assert "embedding.dimensions" not in result.output
