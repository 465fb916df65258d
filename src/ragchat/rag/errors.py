"""Typed failures raised by the retrieval-and-generation pipeline.

Provider failures abort the current query and are never retried inside the
core. Tool failures are reported back to the model instead of failing the
query; see QueryOrchestrator.
"""

from __future__ import annotations


class RagError(Exception):
    """Base class for pipeline failures. ``str(exc)`` is the human-readable reason."""


class EmbeddingFailure(RagError):
    """The embedding provider was unreachable, timed out or rejected the input."""


class ChatFailure(RagError):
    """The chat provider returned an error or timed out."""


class NoRelevantContent(RagError):
    """No chunk cleared the similarity threshold (pre-retrieval flow only)."""


class UnknownTool(RagError):
    """The model asked for a tool name that is not registered."""


class ToolExecutionFailure(RagError):
    """A registered tool raised while handling a call."""
