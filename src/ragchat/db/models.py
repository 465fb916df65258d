"""Domain models for the ragchat database layer."""

from __future__ import annotations

from dataclasses import dataclass, field

# Roles a stored conversation message may carry.
MESSAGE_ROLES: frozenset[str] = frozenset({"user", "assistant", "tool"})


@dataclass
class Document:
    title: str
    content: str
    id: int | None = None  # set after insert
    created_at: str | None = None
    updated_at: str | None = None
    chunk_count: int = 0


@dataclass
class Chunk:
    document_id: int
    chunk_index: int
    content: str
    embedding: list[float] | None = None
    id: int | None = None  # set after insert; None for unsaved chunks
    created_at: str | None = None


@dataclass
class QueryRecord:
    query_text: str
    response_text: str
    embedding: list[float] | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class Message:
    role: str
    content: str
    timestamp: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            role=str(data["role"]),
            content=str(data.get("content") or ""),
            timestamp=str(data.get("timestamp") or ""),
        )


@dataclass
class Conversation:
    session_id: str
    last_activity: str
    messages: list[Message] = field(default_factory=list)


@dataclass(frozen=True)
class Source:
    """A document cited by an answer. Derived, never persisted."""

    document_id: int
    title: str
