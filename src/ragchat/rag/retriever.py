"""Dense retriever: embed a query and rank chunks in the vector index.

Both flows use it: the pre-retrieval flow before the first chat call, and the
``search_knowledge_base`` tool when the model asks for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ragchat.db.models import Source
from ragchat.db.vectors import DEFAULT_COSINE_THRESHOLD, Metric, ScoredChunk, VectorIndex
from ragchat.rag.providers import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    """Configuration for the retriever.

    Attributes:
        top_k: Maximum number of chunks returned.
        threshold: Minimum cosine similarity (exclusive). Ignored for other metrics.
        metric: Ranking metric; cosine in the end-to-end pipeline.
    """

    top_k: int = 5
    threshold: float = DEFAULT_COSINE_THRESHOLD
    metric: Metric = Metric.COSINE


class Retriever:
    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndex,
        config: RetrieverConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self.config = config or RetrieverConfig()

    def embed_query(self, text: str) -> list[float]:
        """Embed *text*. Raises EmbeddingFailure on provider errors."""
        return self._embedder.embed(text)

    def search(self, embedding: list[float], top_k: int | None = None) -> list[ScoredChunk]:
        """Rank chunks against an already-computed query embedding, best first."""
        hits = self._index.nearest(
            embedding,
            k=self.config.top_k if top_k is None else top_k,
            metric=self.config.metric,
            threshold=self.config.threshold,
        )
        for hit in hits:
            logger.debug("Chunk from %r with score %.4f", hit.title, hit.score)
        return hits

    def retrieve(self, text: str, top_k: int | None = None) -> list[ScoredChunk]:
        """Embed *text* and return the best matching chunks."""
        return self.search(self.embed_query(text), top_k=top_k)


def sources_from_hits(hits: list[ScoredChunk]) -> list[Source]:
    """Return the distinct documents behind *hits*, in rank order."""
    seen: set[int] = set()
    sources: list[Source] = []
    for hit in hits:
        if hit.chunk.document_id in seen:
            continue
        seen.add(hit.chunk.document_id)
        sources.append(Source(document_id=hit.chunk.document_id, title=hit.title))
    return sources
