"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from ragchat.db.connection import Database
from ragchat.db.repository import Repository
from ragchat.db.schema import initialize
from ragchat.rag.providers import ChatReply, SyntheticEmbeddingProvider


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".ragchat.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def embedder():
    """Offline deterministic embedder."""
    return SyntheticEmbeddingProvider(dimensions=256)


class ScriptedChat:
    """Chat provider that replays canned replies and records every call."""

    model = "scripted/chat"

    def __init__(self, replies: list[ChatReply]) -> None:
        self._replies = list(replies)
        self.calls: list[dict] = []

    def complete(self, messages, tools=None, tool_choice=None) -> ChatReply:
        self.calls.append(
            {"messages": [dict(m) for m in messages], "tools": tools, "tool_choice": tool_choice}
        )
        if not self._replies:
            raise AssertionError("ScriptedChat ran out of replies")
        return self._replies.pop(0)


@pytest.fixture
def scripted_chat():
    """Factory: ``scripted_chat(ChatReply(...), ...)``."""

    def _make(*replies: ChatReply) -> ScriptedChat:
        return ScriptedChat(list(replies))

    return _make


@pytest.fixture
def conversation_ids(repo):
    """Callable returning the stored conversation session ids, sorted."""

    def _ids() -> list[str]:
        with repo.lock:
            rows = repo.connection.execute(
                "SELECT session_id FROM conversations ORDER BY session_id"
            ).fetchall()
        return [r["session_id"] for r in rows]

    return _ids


@pytest.fixture
def chunk_rows(repo):
    """Callable returning a document's chunk rows ordered by chunk_index."""

    def _rows(document_id: int) -> list:
        with repo.lock:
            return repo.connection.execute(
                "SELECT id, chunk_index, content FROM chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            ).fetchall()

    return _rows
