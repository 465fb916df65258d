"""Document ingestion: chunk, embed, and persist atomically.

Every chunk is embedded before anything is written, and the document, its
chunks and their vectors are then written in one transaction. An embedding
failure therefore leaves the knowledge base untouched.
"""

from __future__ import annotations

import logging

from ragchat.db.models import Chunk, Document
from ragchat.db.repository import Repository
from ragchat.db.vectors import VectorIndex
from ragchat.ingest.chunker import ParagraphChunker
from ragchat.rag.providers import EmbeddingProvider

logger = logging.getLogger(__name__)


class DocumentIngestor:
    """Create, re-process and delete documents in the knowledge base.

    Args:
        repo:     Open Repository instance.
        index:    Vector index for the embedder's model.
        embedder: Provider used for every chunk.
        chunker:  Paragraph chunker (defaults: 1000 chars / 200 overlap).
    """

    def __init__(
        self,
        repo: Repository,
        index: VectorIndex,
        embedder: EmbeddingProvider,
        chunker: ParagraphChunker | None = None,
    ) -> None:
        if index.model != embedder.model:
            raise ValueError(
                f"Vector index model '{index.model}' does not match "
                f"embedding provider model '{embedder.model}'"
            )
        self._repo = repo
        self._index = index
        self._embedder = embedder
        self._chunker = chunker or ParagraphChunker()

    def ingest(self, title: str, content: str) -> Document:
        """Create a document and index its chunks.

        Raises:
            ValueError: If title or content is blank.
            EmbeddingFailure: If any chunk cannot be embedded (nothing is written).
        """
        _require(title, content)
        texts = self._chunker.split(content)
        vectors = self._embed_all(texts)

        document = Document(title=title, content=content)
        with self._repo.transaction():
            document_id = self._repo.add_document(document)
            self._write_chunks(document_id, texts, vectors)

        document.chunk_count = len(texts)
        logger.info("Ingested document %r with %d chunks", title, len(texts))
        return document

    def reingest(
        self,
        document_id: int,
        title: str | None = None,
        content: str | None = None,
    ) -> Document:
        """Update a document and replace its chunks and vectors.

        Omitted fields keep their stored value.

        Raises:
            KeyError: If the document does not exist.
            ValueError: If the resulting title or content is blank.
            EmbeddingFailure: If any chunk cannot be embedded (nothing is changed).
        """
        existing = self._repo.get_document(document_id)
        if existing is None:
            raise KeyError(f"Document {document_id} not found")

        new_title = existing.title if title is None else title
        new_content = existing.content if content is None else content
        _require(new_title, new_content)

        texts = self._chunker.split(new_content)
        vectors = self._embed_all(texts)

        with self._repo.transaction():
            self._repo.update_document(document_id, new_title, new_content)
            self._repo.delete_chunks_by_document(document_id)
            self._write_chunks(document_id, texts, vectors)

        logger.info("Re-ingested document %d (%r) with %d chunks", document_id, new_title, len(texts))
        return self._repo.get_document(document_id)  # type: ignore[return-value]

    def delete(self, document_id: int) -> bool:
        """Delete a document; its chunks and vectors cascade."""
        deleted = self._repo.delete_document(document_id)
        if deleted:
            logger.info("Deleted document %d", document_id)
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _embed_all(self, texts: list[str]) -> list[list[float]]:
        vectors = []
        for text in texts:
            vector = self._embedder.embed(text)
            logger.debug("Generated embedding with %d dimensions", len(vector))
            vectors.append(vector)
        return vectors

    def _write_chunks(
        self, document_id: int, texts: list[str], vectors: list[list[float]]
    ) -> None:
        for index, (text, vector) in enumerate(zip(texts, vectors)):
            chunk_id = self._repo.add_chunk(
                Chunk(document_id=document_id, chunk_index=index, content=text)
            )
            self._index.add(chunk_id, vector)


def _require(title: str, content: str) -> None:
    if not (title or "").strip() or not (content or "").strip():
        raise ValueError("Title and content are required")
