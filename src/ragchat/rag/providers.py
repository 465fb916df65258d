"""Embedding and chat providers behind a narrow contract.

The pipeline only depends on the two protocols below. LiteLLM-backed
implementations reach real services over HTTP; ``SyntheticEmbeddingProvider``
derives deterministic vectors from token hashes when no embedding model is
available. It reports its own model name, so its vectors land in their own
vector table and are never ranked against a real model's vectors.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ragchat.rag import llm_client
from ragchat.rag.errors import ChatFailure, EmbeddingFailure

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


# ------------------------------------------------------------------
# Contract
# ------------------------------------------------------------------


@dataclass
class ToolCall:
    """A model request to run a named tool.

    Attributes:
        id: Provider-assigned invocation id; tool results are keyed by it.
        name: Registered tool name.
        arguments: Raw JSON object string as produced by the model.
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ChatReply:
    """Either a text answer or one or more tool calls (occasionally both)."""

    text: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Maps text to a fixed-dimension vector."""

    model: str

    def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*.

        Raises:
            EmbeddingFailure: If the provider is unreachable or rejects the input.
        """
        ...


@runtime_checkable
class ChatProvider(Protocol):
    """Maps a message sequence (+ optional tools) to a reply."""

    def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        tool_choice: str | None = None,
    ) -> ChatReply:
        """Return the model's reply to *messages*.

        Raises:
            ChatFailure: On provider error or timeout.
        """
        ...


# ------------------------------------------------------------------
# Embedding providers
# ------------------------------------------------------------------


class LiteLLMEmbeddingProvider:
    """Embeddings from any LiteLLM-supported provider (Ollama by default)."""

    def __init__(
        self,
        model: str = "ollama/nomic-embed-text",
        dimensions: int | None = None,
        timeout: float = llm_client.DEFAULT_TIMEOUT,
        api_base: str | None = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.api_base = api_base

    def embed(self, text: str) -> list[float]:
        try:
            vector = llm_client.embed(
                self.model, text, timeout=self.timeout, api_base=self.api_base
            )
        except Exception as exc:
            logger.error("Embedding request to %s failed: %s", self.model, exc)
            raise EmbeddingFailure(
                f"Embedding provider '{self.model}' failed: {exc}"
            ) from exc

        if not vector:
            raise EmbeddingFailure(f"Embedding provider '{self.model}' returned an empty vector")
        if self.dimensions is not None and len(vector) != self.dimensions:
            raise EmbeddingFailure(
                f"Embedding provider '{self.model}' returned {len(vector)} dimensions, "
                f"expected {self.dimensions}"
            )
        return vector


class SyntheticEmbeddingProvider:
    """Deterministic hash-derived embeddings with no model behind them.

    Each lower-cased word token is hashed to a bucket and a sign (feature
    hashing); the bucket counts are L2-normalised. Texts sharing words get a
    positive cosine similarity, which keeps retrieval usable for development
    and tests. Text without word tokens hashes as a whole.
    """

    def __init__(self, dimensions: int = 768) -> None:
        if dimensions < 1:
            raise ValueError("dimensions must be >= 1")
        self.dimensions = dimensions
        self.model = f"synthetic/hash-{dimensions}"

    def embed(self, text: str) -> list[float]:
        tokens = _TOKEN_RE.findall(text.lower()) or [text]
        vector = [0.0] * self.dimensions
        for token in tokens:
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimensions
            vector[bucket] += 1.0 if digest[4] & 1 else -1.0

        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0.0:
            # Every token cancelled out; fall back to a single hashed bucket.
            digest = hashlib.blake2b(text.encode("utf-8"), digest_size=8).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimensions] = 1.0
            return vector
        return [x / norm for x in vector]


# ------------------------------------------------------------------
# Chat provider
# ------------------------------------------------------------------


class LiteLLMChatProvider:
    """Chat completions with optional tool calling via LiteLLM (Groq by default)."""

    def __init__(
        self,
        model: str = "groq/llama3-70b-8192",
        temperature: float = 0.2,
        max_tokens: int = 1024,
        timeout: float = llm_client.DEFAULT_TIMEOUT,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        tool_choice: str | None = None,
    ) -> ChatReply:
        try:
            message = llm_client.chat_completion(
                self.model,
                messages,
                tools=tools,
                tool_choice=tool_choice,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self.timeout,
            )
        except Exception as exc:
            logger.error("Chat request to %s failed: %s", self.model, exc)
            raise ChatFailure(f"Chat provider '{self.model}' failed: {exc}") from exc

        return ChatReply(
            text=getattr(message, "content", None),
            tool_calls=[_to_tool_call(tc) for tc in (getattr(message, "tool_calls", None) or [])],
        )


def _to_tool_call(raw) -> ToolCall:
    """Normalise a LiteLLM tool call (object or dict) into a ToolCall."""
    if isinstance(raw, dict):
        function = raw.get("function") or {}
        return ToolCall(
            id=str(raw.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=function.get("arguments") or "{}",
        )
    return ToolCall(
        id=str(raw.id or ""),
        name=str(raw.function.name or ""),
        arguments=raw.function.arguments or "{}",
    )
