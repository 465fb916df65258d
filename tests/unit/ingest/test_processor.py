"""Tests for DocumentIngestor (create, re-ingest, delete)."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ragchat.db.vectors import VectorIndex
from ragchat.ingest.chunker import ParagraphChunker
from ragchat.ingest.processor import DocumentIngestor
from ragchat.rag.errors import EmbeddingFailure

TEXT = "\n\n".join(
    [
        "Retrieval-Augmented Generation combines search with text generation.",
        "Documents are split into chunks and every chunk is embedded.",
        "At question time the closest chunks are handed to the language model.",
    ]
)


@pytest.fixture
def index(repo, embedder):
    return VectorIndex(repo, embedder.model)


@pytest.fixture
def ingestor(repo, index, embedder):
    return DocumentIngestor(repo, index, embedder, ParagraphChunker(chunk_size=100, overlap=20))


class FlakyEmbedder:
    """Fails on the n-th call."""

    def __init__(self, inner, fail_on: int) -> None:
        self.model = inner.model
        self._inner = inner
        self._fail_on = fail_on
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls == self._fail_on:
            raise EmbeddingFailure("provider down")
        return self._inner.embed(text)


# --- construction ---

def test_model_mismatch_rejected(repo, embedder):
    with pytest.raises(ValueError, match="does not match"):
        DocumentIngestor(repo, VectorIndex(repo, "other/model"), embedder)


# --- ingest ---

def test_ingest_stores_document_chunks_and_vectors(repo, index, ingestor, chunk_rows):
    doc = ingestor.ingest("RAG Intro", TEXT)

    assert doc.id is not None
    assert doc.chunk_count == 3
    assert [r["chunk_index"] for r in chunk_rows(doc.id)] == [0, 1, 2]
    assert index.count() == 3
    assert repo.get_document(doc.id).chunk_count == 3


def test_ingest_vectors_are_searchable(index, ingestor, embedder):
    ingestor.ingest("RAG Intro", TEXT)
    hits = index.nearest(embedder.embed("closest chunks handed to the language model"))
    assert hits
    assert hits[0].title == "RAG Intro"
    assert "language model" in hits[0].chunk.content


@pytest.mark.parametrize("title,content", [("", TEXT), ("  ", TEXT), ("T", ""), ("T", "\n\n")])
def test_ingest_requires_title_and_content(ingestor, title, content):
    with pytest.raises(ValueError, match="Title and content are required"):
        ingestor.ingest(title, content)


def test_ingest_embedding_failure_writes_nothing(repo, index, embedder):
    flaky = FlakyEmbedder(embedder, fail_on=2)
    ingestor = DocumentIngestor(repo, index, flaky, ParagraphChunker(chunk_size=100, overlap=20))

    with pytest.raises(EmbeddingFailure):
        ingestor.ingest("RAG Intro", TEXT)

    assert repo.list_documents() == []
    assert index.count() == 0


def test_ingest_embeds_each_chunk_once(repo, index, embedder):
    spy = MagicMock(wraps=embedder)
    spy.model = embedder.model
    ingestor = DocumentIngestor(repo, index, spy, ParagraphChunker(chunk_size=100, overlap=20))

    ingestor.ingest("RAG Intro", TEXT)

    assert spy.embed.call_count == 3


# --- reingest ---

def test_reingest_replaces_chunks(index, ingestor, chunk_rows):
    doc = ingestor.ingest("RAG Intro", TEXT)
    old_ids = {r["id"] for r in chunk_rows(doc.id)}

    updated = ingestor.reingest(doc.id, content="Only one paragraph now.")

    assert updated.title == "RAG Intro"
    assert updated.chunk_count == 1
    new_rows = chunk_rows(doc.id)
    assert [r["content"] for r in new_rows] == ["Only one paragraph now."]
    assert not old_ids & {r["id"] for r in new_rows}
    assert index.count() == 1


def test_reingest_title_only_keeps_content(repo, ingestor):
    doc = ingestor.ingest("RAG Intro", TEXT)
    updated = ingestor.reingest(doc.id, title="RAG Basics")
    assert updated.title == "RAG Basics"
    assert updated.content == TEXT
    assert updated.chunk_count == 3


def test_reingest_missing_document(ingestor):
    with pytest.raises(KeyError):
        ingestor.reingest(123, content="x")


def test_reingest_embedding_failure_keeps_old_state(repo, index, embedder, ingestor, chunk_rows):
    doc = ingestor.ingest("RAG Intro", TEXT)
    flaky = DocumentIngestor(
        repo, index, FlakyEmbedder(embedder, fail_on=1), ParagraphChunker(chunk_size=100, overlap=20)
    )

    with pytest.raises(EmbeddingFailure):
        flaky.reingest(doc.id, content="New content.")

    assert repo.get_document(doc.id).content == TEXT
    assert len(chunk_rows(doc.id)) == 3
    assert index.count() == 3


# --- delete ---

def test_delete_cascades(repo, index, ingestor):
    doc = ingestor.ingest("RAG Intro", TEXT)
    assert ingestor.delete(doc.id) is True
    assert repo.get_document(doc.id) is None
    assert index.count() == 0
    assert ingestor.delete(doc.id) is False
