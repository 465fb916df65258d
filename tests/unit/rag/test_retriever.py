"""Tests for the dense retriever."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ragchat.db.models import Chunk, Source
from ragchat.db.vectors import Metric, ScoredChunk, VectorIndex
from ragchat.ingest.processor import DocumentIngestor
from ragchat.rag.errors import EmbeddingFailure
from ragchat.rag.providers import SyntheticEmbeddingProvider
from ragchat.rag.retriever import Retriever, RetrieverConfig, sources_from_hits


def _hit(doc_id: int, title: str, score: float, chunk_id: int = 1) -> ScoredChunk:
    return ScoredChunk(
        chunk=Chunk(id=chunk_id, document_id=doc_id, chunk_index=0, content="c"),
        title=title,
        score=score,
    )


def test_config_defaults():
    cfg = RetrieverConfig()
    assert (cfg.top_k, cfg.threshold, cfg.metric) == (5, 0.3, Metric.COSINE)


def test_search_passes_config_to_index():
    index = MagicMock()
    index.nearest.return_value = []
    retriever = Retriever(MagicMock(), index, RetrieverConfig(top_k=3, threshold=0.5))

    retriever.search([0.1, 0.2])

    index.nearest.assert_called_once_with([0.1, 0.2], k=3, metric=Metric.COSINE, threshold=0.5)


def test_search_top_k_override():
    index = MagicMock()
    index.nearest.return_value = []
    Retriever(MagicMock(), index).search([0.1], top_k=9)
    assert index.nearest.call_args.kwargs["k"] == 9


def test_search_explicit_zero_top_k_is_kept():
    index = MagicMock()
    index.nearest.return_value = []
    retriever = Retriever(MagicMock(), index, RetrieverConfig(top_k=5))

    assert retriever.search([0.1], top_k=0) == []
    assert index.nearest.call_args.kwargs["k"] == 0


def test_retrieve_embeds_then_searches():
    embedder = MagicMock()
    embedder.embed.return_value = [1.0, 0.0]
    index = MagicMock()
    index.nearest.return_value = [_hit(1, "RAG Intro", 0.9)]

    hits = Retriever(embedder, index).retrieve("What is RAG?")

    embedder.embed.assert_called_once_with("What is RAG?")
    assert hits[0].title == "RAG Intro"


def test_retrieve_propagates_embedding_failure():
    embedder = MagicMock()
    embedder.embed.side_effect = EmbeddingFailure("down")
    index = MagicMock()

    with pytest.raises(EmbeddingFailure):
        Retriever(embedder, index).retrieve("q")
    index.nearest.assert_not_called()


def test_retrieve_end_to_end(repo):
    embedder = SyntheticEmbeddingProvider(768)
    index = VectorIndex(repo, embedder.model)
    DocumentIngestor(repo, index, embedder).ingest(
        "RAG Intro", "What is RAG? RAG stands for Retrieval-Augmented Generation."
    )
    DocumentIngestor(repo, index, embedder).ingest(
        "Gardening", "Tomatoes need plenty of sun and regular watering."
    )

    hits = Retriever(embedder, index).retrieve("What is RAG?")

    assert [h.title for h in hits] == ["RAG Intro"]
    assert hits[0].score > 0.3


def test_sources_from_hits_dedupes_by_document_in_rank_order():
    hits = [
        _hit(2, "B", 0.9, chunk_id=10),
        _hit(1, "A", 0.8, chunk_id=11),
        _hit(2, "B", 0.7, chunk_id=12),
    ]
    assert sources_from_hits(hits) == [Source(2, "B"), Source(1, "A")]


def test_sources_from_hits_empty():
    assert sources_from_hits([]) == []
