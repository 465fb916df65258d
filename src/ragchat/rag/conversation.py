"""Per-session conversation history.

One Conversation row exists per session id. Messages are only ever appended;
``clear`` empties the list and cleanup deletes whole conversations. Writers
for the same session are serialized by a per-session re-entrant lock, so
different sessions never wait on each other.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ragchat.db.models import MESSAGE_ROLES, Conversation, Message
from ragchat.db.repository import Repository

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class _SessionLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    # Threads holding or waiting on the lock; the entry lives while > 0.
    users: int = 0


def format_for_llm(messages: Iterable[Message]) -> list[dict]:
    """Strip stored messages down to ``{role, content}`` pairs, order preserved."""
    return [{"role": m.role, "content": m.content} for m in messages]


class ConversationStore:
    """Session-keyed conversation history backed by the repository."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo
        self._locks: dict[str, _SessionLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def session_lock(self, session_id: str) -> Iterator[None]:
        """Hold the session's lock; re-entrant for the owning thread.

        The lock is dropped from the table once no thread holds or waits on it,
        so a session never has two live locks.
        """
        with self._locks_guard:
            entry = self._locks.setdefault(session_id, _SessionLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[session_id]

    def get_or_create(self, session_id: str) -> Conversation:
        """Return the session's conversation, creating an empty one if absent.

        An existing conversation has its ``last_activity`` refreshed.
        """
        with self.session_lock(session_id):
            now = _now()
            conversation = self._repo.get_conversation(session_id)
            if conversation is None:
                conversation = Conversation(session_id=session_id, last_activity=now)
                self._repo.insert_conversation(conversation)
                logger.debug("Created conversation for session %s", session_id)
                return conversation

            self._repo.touch_conversation(session_id, now)
            conversation.last_activity = now
            return conversation

    def append(self, session_id: str, role: str, content: str) -> Conversation:
        """Append one message and return the updated conversation.

        Raises:
            ValueError: If *role* is not user, assistant or tool.
        """
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unknown message role '{role}'")

        with self.session_lock(session_id):
            conversation = self.get_or_create(session_id)
            now = _now()
            conversation.messages.append(Message(role=role, content=content, timestamp=now))
            conversation.last_activity = now
            self._repo.save_conversation(conversation)
            return conversation

    def messages(self, session_id: str) -> list[Message]:
        """Return the stored history for *session_id* (empty if none)."""
        conversation = self._repo.get_conversation(session_id)
        return conversation.messages if conversation else []

    def clear(self, session_id: str) -> None:
        """Reset a conversation to an empty message list."""
        with self.session_lock(session_id):
            conversation = self._repo.get_conversation(session_id)
            if conversation is None:
                return
            conversation.messages = []
            conversation.last_activity = _now()
            self._repo.save_conversation(conversation)

    def delete_where_session_not_in(self, active_ids: Iterable[str]) -> int:
        """Delete every conversation whose session id is not active.

        Returns:
            Number of conversations deleted.
        """
        return len(self._repo.delete_conversations_except(sorted(set(active_ids))))
