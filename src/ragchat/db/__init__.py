"""ragchat database layer."""

from ragchat.db.connection import Database
from ragchat.db.migrations import MIGRATIONS, run_migrations
from ragchat.db.repository import Repository
from ragchat.db.schema import initialize
from ragchat.db.vectors import (
    Metric,
    ScoredChunk,
    VectorIndex,
    ensure_vec_table,
    model_to_slug,
    vec_table_name,
)

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
    "Metric",
    "ScoredChunk",
    "VectorIndex",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
