"""Tests for the forward-only migration runner and schema bootstrap."""

from __future__ import annotations

import pytest

import ragchat.db.migrations as migrations_module
from ragchat.db.connection import Database
from ragchat.db.migrations import MIGRATIONS, run_migrations
from ragchat.db.schema import CURRENT_VERSION, initialize, schema_version


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def _columns(conn, table: str) -> set[str]:
    return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


# --- Bootstrap ---

def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert schema_version(conn) == MIGRATIONS[-1][0] == CURRENT_VERSION
    conn.close()


def test_schema_version_zero_before_migrations(tmp_path):
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE schema_version (version INTEGER NOT NULL, applied_at DATETIME)"
    )
    assert schema_version(conn) == 0
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


# --- Tables created ---

@pytest.mark.parametrize(
    "table,expected",
    [
        ("documents", {"id", "title", "content", "created_at", "updated_at"}),
        ("chunks", {"id", "document_id", "chunk_index", "content", "created_at"}),
        ("vec_indexes", {"table_name", "model", "dimensions"}),
        ("queries", {"id", "query_text", "response_text", "embedding", "created_at"}),
        ("conversations", {"session_id", "messages", "last_activity", "created_at"}),
    ],
)
def test_initialize_creates_table(tmp_db, table, expected):
    assert _table_exists(tmp_db, table)
    assert _columns(tmp_db, table) == expected


def test_migrations_do_not_create_vec_tables(tmp_db):
    rows = tmp_db.execute(
        "SELECT name FROM sqlite_master WHERE name LIKE 'vec_chunks_%'"
    ).fetchall()
    assert rows == []


def test_chunk_index_unique_per_document(tmp_db):
    import sqlite3

    tmp_db.execute("INSERT INTO documents (title, content) VALUES ('t', 'c')")
    tmp_db.execute("INSERT INTO chunks (document_id, chunk_index, content) VALUES (1, 0, 'a')")
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO chunks (document_id, chunk_index, content) VALUES (1, 0, 'b')"
        )


# --- Incremental application ---

def test_run_migrations_applies_only_pending(tmp_path, monkeypatch):
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL, "
        "applied_at DATETIME NOT NULL DEFAULT (datetime('now')))"
    )
    conn.execute("INSERT INTO schema_version (version) VALUES (1)")
    conn.commit()

    monkeypatch.setattr(
        migrations_module,
        "MIGRATIONS",
        [(1, "CREATE TABLE v1_marker (x INTEGER);"), (2, "CREATE TABLE v2_marker (x INTEGER);")],
    )
    run_migrations(conn)

    assert not _table_exists(conn, "v1_marker")
    assert _table_exists(conn, "v2_marker")
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
    assert versions == [1, 2]
    conn.close()


def test_initialize_delegates_to_run_migrations(tmp_path):
    conn = _fresh_conn(tmp_path)
    initialize(conn)
    assert schema_version(conn) == CURRENT_VERSION
    conn.close()
