"""Per-model vector tables and nearest-neighbour search.

Each embedding model gets its own table ``vec_chunks_<slug>`` so vectors from
different providers are never ranked against each other. The dimension of a
table is fixed by the first vector written to it and recorded in
``vec_indexes``.

Distances are computed with sqlite-vec scalar functions:
  cosine         score = 1 - vec_distance_cosine   (desc, thresholded)
  l2             score = vec_distance_l2           (asc)
  inner_product  score = (|a|^2 + |b|^2 - l2^2) / 2 (desc)
"""

from __future__ import annotations

import logging
import math
import re
import sqlite3
from dataclasses import dataclass
from enum import Enum

import sqlite_vec

from ragchat.db.models import Chunk
from ragchat.db.repository import Repository

logger = logging.getLogger(__name__)

DEFAULT_COSINE_THRESHOLD = 0.3


class DimensionMismatch(ValueError):
    """A vector does not match the dimension recorded for its model's table."""


class Metric(str, Enum):
    COSINE = "cosine"
    L2 = "l2"
    INNER_PRODUCT = "inner_product"


@dataclass
class ScoredChunk:
    """A retrieved chunk with its parent document title and metric score.

    Attributes:
        chunk: The Chunk row.
        title: Title of the owning document.
        score: Cosine similarity, L2 distance or inner product, depending on
            the metric the search ran with.
    """

    chunk: Chunk
    title: str
    score: float


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "ollama/nomic-embed-text" -> "ollama_nomic_embed_text"
        "synthetic/hash-768"      -> "synthetic_hash_768"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_chunks_{model_slug}"


def registered_dimensions(conn: sqlite3.Connection, table: str) -> int | None:
    """Return the recorded dimension of *table*, or None if it does not exist yet."""
    row = conn.execute(
        "SELECT dimensions FROM vec_indexes WHERE table_name = ?", (table,)
    ).fetchone()
    return row[0] if row else None


def ensure_vec_table(
    conn: sqlite3.Connection, model: str, dimensions: int
) -> str:
    """Create the vector table for *model* if needed and return its name.

    Does not commit; callers run this inside their own write.

    Raises:
        ValueError: If *dimensions* is not positive.
        DimensionMismatch: If the table already exists with a different dimension.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_to_slug(model))
    existing = registered_dimensions(conn, table)
    if existing is None:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                chunk_id   INTEGER PRIMARY KEY REFERENCES chunks(id) ON DELETE CASCADE,
                embedding  BLOB NOT NULL,
                norm_sq    REAL NOT NULL
            )
            """
        )
        conn.execute(
            "INSERT INTO vec_indexes (table_name, model, dimensions) VALUES (?, ?, ?)",
            (table, model, dimensions),
        )
    elif existing != dimensions:
        raise DimensionMismatch(
            f"Embedding dimension mismatch for '{model}': index has {existing}, "
            f"got {dimensions}. Re-embed all documents after switching providers."
        )
    return table


class VectorIndex:
    """Nearest-neighbour search over the chunk vectors of one embedding model."""

    def __init__(self, repo: Repository, model: str) -> None:
        self._repo = repo
        self.model = model
        self.table = vec_table_name(model_to_slug(model))

    @property
    def dimensions(self) -> int | None:
        with self._repo.lock:
            return registered_dimensions(self._repo.connection, self.table)

    def add(self, chunk_id: int, embedding: list[float]) -> None:
        """Store the vector for *chunk_id*, creating the table on first use."""
        with self._repo.lock:
            ensure_vec_table(self._repo.connection, self.model, len(embedding))
            self._repo.add_embedding(self.table, chunk_id, embedding)

    def count(self) -> int:
        with self._repo.lock:
            if self.dimensions is None:
                return 0
            return self._repo.connection.execute(
                f"SELECT COUNT(*) FROM {self.table}"
            ).fetchone()[0]

    def nearest(
        self,
        query: list[float],
        k: int = 5,
        metric: Metric = Metric.COSINE,
        threshold: float | None = DEFAULT_COSINE_THRESHOLD,
    ) -> list[ScoredChunk]:
        """Return up to *k* chunks ranked best-first under *metric*.

        Cosine results are limited to ``score > threshold`` before truncation;
        L2 and inner product are never thresholded. Ties keep insertion order.
        An empty list means nothing matched; it is never an error.

        Raises:
            DimensionMismatch: If *query* does not match the index dimension.
        """
        metric = Metric(metric)
        if k < 1:
            return []

        with self._repo.lock:
            dims = self.dimensions
            if dims is None:
                logger.debug("No vectors stored yet for model %s", self.model)
                return []
            if len(query) != dims:
                raise DimensionMismatch(
                    f"Query vector has {len(query)} dimensions, index "
                    f"'{self.model}' has {dims}."
                )

            norm_sq = sum(x * x for x in query)
            if metric is Metric.COSINE and norm_sq == 0.0:
                return []

            sql, params = self._build_query(metric, k, threshold)
            params["q"] = sqlite_vec.serialize_float32(query)
            params["qnorm_sq"] = norm_sq
            rows = self._repo.connection.execute(sql, params).fetchall()

        return [
            ScoredChunk(
                chunk=Chunk(
                    id=r["chunk_id"],
                    document_id=r["document_id"],
                    chunk_index=r["chunk_index"],
                    content=r["content"],
                ),
                title=r["title"],
                score=float(r["score"]),
            )
            for r in rows
            if r["score"] is not None and not math.isnan(r["score"])
        ]

    def _build_query(
        self, metric: Metric, k: int, threshold: float | None
    ) -> tuple[str, dict]:
        if metric is Metric.COSINE:
            score = "1.0 - vec_distance_cosine(v.embedding, :q)"
            order = "DESC"
        elif metric is Metric.L2:
            score = "vec_distance_l2(v.embedding, :q)"
            order = "ASC"
        else:
            score = (
                "(v.norm_sq + :qnorm_sq - vec_distance_l2(v.embedding, :q) "
                "* vec_distance_l2(v.embedding, :q)) / 2.0"
            )
            order = "DESC"

        params: dict = {"k": k}
        where = "WHERE score IS NOT NULL"
        if metric is Metric.COSINE:
            where += " AND score > :threshold"
            params["threshold"] = (
                DEFAULT_COSINE_THRESHOLD if threshold is None else threshold
            )

        sql = f"""
            SELECT * FROM (
                SELECT c.id AS chunk_id, c.document_id, c.chunk_index, c.content,
                       d.title, {score} AS score
                FROM {self.table} v
                JOIN chunks c ON c.id = v.chunk_id
                JOIN documents d ON d.id = c.document_id
            )
            {where}
            ORDER BY score {order}, chunk_id ASC
            LIMIT :k
        """
        return sql, params
