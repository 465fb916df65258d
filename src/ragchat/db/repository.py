"""Repository pattern for all ragchat database operations.

Single interface for: documents, chunks, vector embeddings, query records and
conversations. Vector tables are model-managed (ensure_vec_table); the
repository handles their writes, VectorIndex handles their reads.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import sqlite_vec

from ragchat.db.models import Chunk, Conversation, Document, Message, QueryRecord


class Repository:
    """Data access layer for all ragchat database entities.

    Wraps an open sqlite3.Connection. Every public method runs under a
    re-entrant lock so one connection can be shared by concurrent query and
    session-lifecycle threads. The connection is owned by the caller and must
    be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see ragchat.db.schema.initialize).
        """
        self._conn = conn
        self._lock = threading.RLock()
        self._tx_depth = 0

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several writes into one atomic commit.

        Nested calls join the outer transaction. On error everything written
        since the outermost ``transaction()`` began is rolled back.
        """
        with self._lock:
            self._tx_depth += 1
            try:
                yield
            except BaseException:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self._conn.rollback()
                raise
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.commit()

    def commit(self) -> None:
        """Commit pending writes unless an outer transaction() owns them."""
        if self._tx_depth == 0:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_document(self, document: Document) -> int:
        """Insert a document and return its new id."""
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO documents (title, content) VALUES (?, ?)",
                (document.title, document.content),
            )
            self.commit()
            document.id = cur.lastrowid
            return cur.lastrowid

    def get_document(self, document_id: int) -> Document | None:
        """Return a document by id (with its chunk count), or None if not found."""
        with self._lock:
            row = self._conn.execute(
                f"{_DOCUMENT_SELECT} WHERE d.id = ? GROUP BY d.id",
                (document_id,),
            ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self) -> list[Document]:
        """Return all documents with chunk counts, newest first."""
        with self._lock:
            rows = self._conn.execute(
                f"{_DOCUMENT_SELECT} GROUP BY d.id ORDER BY d.created_at DESC, d.id DESC"
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def update_document(self, document_id: int, title: str, content: str) -> None:
        """Overwrite title and content and bump updated_at."""
        with self._lock:
            self._conn.execute(
                """
                UPDATE documents
                SET title = ?, content = ?, updated_at = datetime('now')
                WHERE id = ?
                """,
                (title, content, document_id),
            )
            self.commit()

    def delete_document(self, document_id: int) -> bool:
        """Delete a document. Chunks and their vectors cascade.

        Returns:
            True if a document was deleted.
        """
        with self._lock:
            cur = self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            self.commit()
            return cur.rowcount > 0

    def find_documents_by_titles(self, titles: list[str]) -> list[tuple[int, str]]:
        """Return [(id, title), ...] for documents whose title is in *titles*.

        Ordered by id so the oldest document wins when titles repeat.
        """
        if not titles:
            return []
        placeholders = ",".join("?" * len(titles))
        with self._lock:
            rows = self._conn.execute(
                f"SELECT id, title FROM documents WHERE title IN ({placeholders}) ORDER BY id",
                list(titles),
            ).fetchall()
        return [(r["id"], r["title"]) for r in rows]

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: Chunk) -> int:
        """Insert a chunk keyed by (document_id, chunk_index). Returns the new id."""
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO chunks (document_id, chunk_index, content)
                VALUES (?, ?, ?)
                """,
                (chunk.document_id, chunk.chunk_index, chunk.content),
            )
            self.commit()
            chunk.id = cur.lastrowid
            return cur.lastrowid

    def delete_chunks_by_document(self, document_id: int) -> int:
        """Delete every chunk of a document (vectors cascade). Returns rows deleted."""
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM chunks WHERE document_id = ?", (document_id,)
            )
            self.commit()
            return cur.rowcount

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def add_embedding(self, table: str, chunk_id: int, embedding: list[float]) -> None:
        """Insert an embedding into a vec table keyed by the chunk id.

        The squared norm is stored alongside so inner-product ranking can be
        derived from L2 distance in SQL.
        """
        norm_sq = sum(x * x for x in embedding)
        with self._lock:
            self._conn.execute(
                f"INSERT INTO {table} (chunk_id, embedding, norm_sq) VALUES (?, ?, ?)",
                (chunk_id, sqlite_vec.serialize_float32(embedding), norm_sq),
            )
            self.commit()

    # ------------------------------------------------------------------
    # Query records
    # ------------------------------------------------------------------

    def add_query(self, record: QueryRecord) -> int:
        """Append a query record. Returns the new id."""
        embedding = json.dumps(record.embedding) if record.embedding is not None else None
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO queries (query_text, response_text, embedding)
                VALUES (?, ?, ?)
                """,
                (record.query_text, record.response_text, embedding),
            )
            self.commit()
            record.id = cur.lastrowid
            return cur.lastrowid

    def list_queries(self, limit: int = 10) -> list[QueryRecord]:
        """Return the most recent query records, newest first."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, query_text, response_text, embedding, created_at
                FROM queries ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [_row_to_query(r) for r in rows]

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def get_conversation(self, session_id: str) -> Conversation | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT session_id, messages, last_activity FROM conversations WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        return _row_to_conversation(row) if row else None

    def insert_conversation(self, conversation: Conversation) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO conversations (session_id, messages, last_activity)
                VALUES (?, ?, ?)
                """,
                (
                    conversation.session_id,
                    _dump_messages(conversation.messages),
                    conversation.last_activity,
                ),
            )
            self.commit()

    def save_conversation(self, conversation: Conversation) -> None:
        """Persist the full message list and last_activity of an existing row."""
        with self._lock:
            self._conn.execute(
                """
                UPDATE conversations SET messages = ?, last_activity = ?
                WHERE session_id = ?
                """,
                (
                    _dump_messages(conversation.messages),
                    conversation.last_activity,
                    conversation.session_id,
                ),
            )
            self.commit()

    def touch_conversation(self, session_id: str, last_activity: str) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE conversations SET last_activity = ? WHERE session_id = ?",
                (last_activity, session_id),
            )
            self.commit()

    def delete_conversations_except(self, active_session_ids: list[str]) -> list[str]:
        """Delete every conversation whose session id is not in *active_session_ids*.

        Returns:
            The session ids that were deleted.
        """
        with self._lock:
            if active_session_ids:
                placeholders = ",".join("?" * len(active_session_ids))
                where = f"WHERE session_id NOT IN ({placeholders})"
                params: list[str] = list(active_session_ids)
            else:
                where, params = "", []
            stale = [
                r["session_id"]
                for r in self._conn.execute(
                    f"SELECT session_id FROM conversations {where}", params
                ).fetchall()
            ]
            if stale:
                self._conn.execute(f"DELETE FROM conversations {where}", params)
                self.commit()
        return stale


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

_DOCUMENT_SELECT = """
SELECT d.id, d.title, d.content, d.created_at, d.updated_at,
       COUNT(c.id) AS chunk_count
FROM documents d LEFT JOIN chunks c ON c.document_id = d.id
"""


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        chunk_count=row["chunk_count"],
    )


def _row_to_query(row: sqlite3.Row) -> QueryRecord:
    return QueryRecord(
        id=row["id"],
        query_text=row["query_text"],
        response_text=row["response_text"],
        embedding=json.loads(row["embedding"]) if row["embedding"] else None,
        created_at=row["created_at"],
    )


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        session_id=row["session_id"],
        last_activity=row["last_activity"],
        messages=[Message.from_dict(m) for m in json.loads(row["messages"] or "[]")],
    )


def _dump_messages(messages: list[Message]) -> str:
    return json.dumps([m.to_dict() for m in messages])
