"""Query orchestration: the two retrieval-augmented answer flows.

The flow is picked once, when the orchestrator is built:

PRE_RETRIEVAL
  embed query → nearest chunks (cosine, k=5, > 0.3) → none: NoRelevantContent
  → append user turn → one chat call with context blocks → record → append reply

TOOL_BASED
  embed query → append user turn → chat call with tools (tool_choice=auto)
  → no tool calls: the text is the answer, no sources
  → tool calls: run each, add assistant + tool messages, one more chat call
    with tool_choice=none; tool calls in that reply are not executed
  → sources from the tool results → record → append reply

Queries for the same session id run one at a time under the session lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from ragchat.db.models import QueryRecord, Source
from ragchat.db.repository import Repository
from ragchat.rag import assembler
from ragchat.rag.conversation import ConversationStore, format_for_llm
from ragchat.rag.errors import NoRelevantContent, ToolExecutionFailure, UnknownTool
from ragchat.rag.providers import ChatProvider, ToolCall
from ragchat.rag.retriever import Retriever, sources_from_hits
from ragchat.rag.tools import ToolRegistry

logger = logging.getLogger(__name__)


class RagFlow(str, Enum):
    PRE_RETRIEVAL = "pre_retrieval"
    TOOL_BASED = "tool_based"


@dataclass
class QueryResult:
    response: str
    sources: list[Source] = field(default_factory=list)
    session_id: str | None = None


class QueryOrchestrator:
    """Answer questions with retrieval-augmented generation.

    Args:
        flow: Which flow every query uses.
        repo: Repository for query records and title → document lookups.
        retriever: Embeds queries and ranks chunks.
        chat: Chat provider.
        conversations: Session history store.
        tools: Tool registry (only consulted by the tool-based flow).
    """

    def __init__(
        self,
        flow: RagFlow,
        repo: Repository,
        retriever: Retriever,
        chat: ChatProvider,
        conversations: ConversationStore,
        tools: ToolRegistry,
    ) -> None:
        self.flow = RagFlow(flow)
        self._repo = repo
        self._retriever = retriever
        self._chat = chat
        self._conversations = conversations
        self._tools = tools
        self._run: Callable[[str, str | None], QueryResult] = {
            RagFlow.PRE_RETRIEVAL: self._pre_retrieval,
            RagFlow.TOOL_BASED: self._tool_based,
        }[self.flow]

    def process_query(self, query_text: str, session_id: str | None = None) -> QueryResult:
        """Answer *query_text*, optionally within the conversation of *session_id*.

        Raises:
            EmbeddingFailure: The query could not be embedded.
            ChatFailure: The chat provider failed. A user turn already appended
                to the conversation stays there.
            NoRelevantContent: Pre-retrieval flow found no chunk above the threshold.
        """
        logger.info(
            "Processing query (%s): %r, session_id: %s",
            self.flow.value,
            query_text,
            session_id or "none",
        )
        if session_id is None:
            return self._run(query_text, None)
        with self._conversations.session_lock(session_id):
            return self._run(query_text, session_id)

    # ------------------------------------------------------------------
    # Pre-retrieval flow
    # ------------------------------------------------------------------

    def _pre_retrieval(self, query_text: str, session_id: str | None) -> QueryResult:
        embedding = self._retriever.embed_query(query_text)
        hits = self._retriever.search(embedding)
        logger.info("Found %d relevant chunks", len(hits))
        if not hits:
            logger.warning("No relevant documents found for query: %r", query_text)
            raise NoRelevantContent("No relevant documents found")

        history = self._begin_turn(query_text, session_id)
        messages = assembler.build_context_messages(query_text, hits, history[:-1])
        reply = self._chat.complete(messages)
        response = reply.text or ""

        self._finish_turn(query_text, response, embedding, session_id)
        return QueryResult(response=response, sources=sources_from_hits(hits), session_id=session_id)

    # ------------------------------------------------------------------
    # Tool-based flow
    # ------------------------------------------------------------------

    def _tool_based(self, query_text: str, session_id: str | None) -> QueryResult:
        # Embedded up front so a failure aborts before the user turn is stored.
        embedding = self._retriever.embed_query(query_text)
        messages = assembler.build_tool_messages(self._begin_turn(query_text, session_id))
        definitions = self._tools.definitions()

        reply = self._chat.complete(messages, tools=definitions, tool_choice="auto")
        tool_messages: list[dict] = []
        if reply.wants_tools:
            messages.append(assembler.assistant_tool_call_message(reply))
            tool_messages = [self._run_tool(call) for call in reply.tool_calls]
            messages.extend(tool_messages)

            final = self._chat.complete(messages, tools=definitions, tool_choice="none")
            if final.wants_tools:
                logger.warning(
                    "Ignoring %d tool call(s) requested after the tool round",
                    len(final.tool_calls),
                )
            response = final.text or ""
        else:
            response = reply.text or ""

        sources = self._sources_from_tool_messages(tool_messages)
        self._finish_turn(query_text, response, embedding, session_id)
        return QueryResult(response=response, sources=sources, session_id=session_id)

    def _run_tool(self, call: ToolCall) -> dict:
        try:
            result = self._tools.execute(call.name, call.arguments)
        except (UnknownTool, ToolExecutionFailure) as exc:
            logger.warning("Tool call %s (%s) failed: %s", call.id, call.name, exc)
            result = {"error": str(exc)}
        return assembler.tool_result_message(call, result)

    def _sources_from_tool_messages(self, tool_messages: list[dict]) -> list[Source]:
        titles = assembler.titles_from_tool_messages(tool_messages)
        by_title: dict[str, Source] = {}
        for document_id, title in self._repo.find_documents_by_titles(titles):
            by_title.setdefault(title, Source(document_id=document_id, title=title))
        return [by_title[t] for t in titles if t in by_title]

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _begin_turn(self, query_text: str, session_id: str | None) -> list[dict]:
        """Append the user turn (when in a session) and return the LLM history."""
        if session_id is None:
            return [{"role": "user", "content": query_text}]
        conversation = self._conversations.append(session_id, "user", query_text)
        return format_for_llm(conversation.messages)

    def _finish_turn(
        self,
        query_text: str,
        response: str,
        embedding: list[float],
        session_id: str | None,
    ) -> None:
        self._repo.add_query(
            QueryRecord(query_text=query_text, response_text=response, embedding=embedding)
        )
        if session_id is not None:
            self._conversations.append(session_id, "assistant", response)
