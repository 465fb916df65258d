"""Prompt assembly for both query flows.

Pre-retrieval:
  [system] + earlier history + [user: context blocks + question]
  Each context block is ``Document / Content / Relevance%`` for one chunk.

Tool-based:
  [system] + history (ending with the current question), then after a tool
  round: + [assistant tool-call message] + one ``tool`` message per call.
"""

from __future__ import annotations

import json

from ragchat.db.vectors import ScoredChunk
from ragchat.rag.providers import ChatReply, ToolCall

CONTEXT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant that answers questions based on provided context.\n"
    "If the context doesn't contain relevant information, indicate that you don't know "
    "rather than making up an answer.\n"
    "Always cite your sources by referring to the document title in your answer.\n"
    "Maintain a conversational style when responding to follow-up questions."
)

TOOL_SYSTEM_PROMPT = (
    "You are a helpful AI assistant with access to a knowledge base of documents.\n"
    "When a question may depend on information from those documents, call the "
    "search_knowledge_base tool before answering. For general questions, answer directly.\n"
    "When you use search results, cite the document titles you relied on. "
    "If the results do not contain the answer, say so rather than guessing."
)


def format_context(hits: list[ScoredChunk]) -> str:
    """Render retrieved chunks as ``Document / Content / Relevance%`` blocks."""
    return "\n\n".join(
        f"Document: {hit.title}\n"
        f"Content: {hit.chunk.content}\n"
        f"Relevance: {round(hit.score * 100, 2)}%"
        for hit in hits
    )


def build_context_messages(
    question: str,
    hits: list[ScoredChunk],
    history: list[dict] | None = None,
) -> list[dict]:
    """Build the single-call prompt of the pre-retrieval flow.

    Args:
        question: The user's question.
        hits: Retrieved chunks, best first.
        history: Earlier ``{role, content}`` turns, not including *question*.
    """
    prompt = (
        f"Context information:\n{format_context(hits)}\n\n"
        f"Question: {question}\n\n"
        "Please answer the question based only on the provided context."
    )
    return [
        {"role": "system", "content": CONTEXT_SYSTEM_PROMPT},
        *(history or []),
        {"role": "user", "content": prompt},
    ]


def build_tool_messages(history: list[dict]) -> list[dict]:
    """Build the opening message list of the tool-based flow."""
    return [{"role": "system", "content": TOOL_SYSTEM_PROMPT}, *history]


def assistant_tool_call_message(reply: ChatReply) -> dict:
    """Echo the model's tool-call turn back into the working message list."""
    return {
        "role": "assistant",
        "content": reply.text or "",
        "tool_calls": [call.to_dict() for call in reply.tool_calls],
    }


def tool_result_message(call: ToolCall, result: object) -> dict:
    """Wrap a tool result (or ``{"error": ...}``) as a ``tool`` message keyed by call id."""
    return {
        "role": "tool",
        "tool_call_id": call.id,
        "name": call.name,
        "content": json.dumps(result),
    }


def titles_from_tool_messages(messages: list[dict]) -> list[str]:
    """Collect document titles cited in ``tool`` messages, first occurrence first."""
    titles: list[str] = []
    for message in messages:
        if message.get("role") != "tool":
            continue
        try:
            payload = json.loads(message.get("content") or "null")
        except json.JSONDecodeError:
            continue
        if not isinstance(payload, list):
            continue
        for item in payload:
            title = item.get("title") if isinstance(item, dict) else None
            if isinstance(title, str) and title not in titles:
                titles.append(title)
    return titles
