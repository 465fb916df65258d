"""Tools the chat model may call, and the registry that dispatches them.

The registry is built once from a fixed list of tool objects; names are
checked for duplicates and against each tool's own schema at construction.
Dispatch is by name. Unknown names raise ``UnknownTool``; anything a tool
raises is wrapped in ``ToolExecutionFailure`` so the orchestrator can report
it back to the model.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterable
from typing import Any, Protocol

from ragchat.rag.errors import RagError, ToolExecutionFailure, UnknownTool
from ragchat.rag.retriever import Retriever

logger = logging.getLogger(__name__)


class Tool(Protocol):
    name: str

    def definition(self) -> dict:
        """Return the OpenAI function-tool schema for this tool."""
        ...

    def execute(self, arguments: dict[str, Any]) -> Any:
        """Run the tool. The result must be JSON-serialisable."""
        ...


# ------------------------------------------------------------------
# search_knowledge_base
# ------------------------------------------------------------------

_SEARCH_DEFINITION: dict = {
    "type": "function",
    "function": {
        "name": "search_knowledge_base",
        "description": (
            "Search the knowledge base for information related to the query. "
            "Use this tool when the user asks questions that might require specific "
            "information from documents. This performs a semantic search and "
            "retrieves relevant document chunks."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query to find relevant information",
                },
                "num_results": {
                    "type": "integer",
                    "description": "Number of results to retrieve (default: 5)",
                    "default": 5,
                },
            },
            "required": ["query"],
        },
    },
}


class SearchKnowledgeBaseTool:
    """Semantic search over ingested chunks (cosine metric).

    Returns ``[{title, content, relevance_percent}]`` where relevance is the
    cosine similarity × 100 rounded to 2 decimals.
    """

    name = "search_knowledge_base"

    def __init__(self, retriever: Retriever, default_results: int = 5) -> None:
        self._retriever = retriever
        self._default_results = default_results

    def definition(self) -> dict:
        return copy.deepcopy(_SEARCH_DEFINITION)

    def execute(self, arguments: dict[str, Any]) -> list[dict]:
        query = arguments.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ToolExecutionFailure("search_knowledge_base requires a non-empty 'query' string")

        raw_count = arguments.get("num_results")
        try:
            num_results = self._default_results if raw_count is None else int(raw_count)
        except (TypeError, ValueError) as exc:
            raise ToolExecutionFailure(f"num_results must be an integer, got {raw_count!r}") from exc
        if num_results < 1:
            raise ToolExecutionFailure(f"num_results must be >= 1, got {num_results}")

        try:
            hits = self._retriever.retrieve(query, top_k=num_results)
        except RagError as exc:
            raise ToolExecutionFailure(f"Failed to search knowledge base: {exc}") from exc

        return [
            {
                "title": hit.title,
                "content": hit.chunk.content,
                "relevance_percent": round(hit.score * 100, 2),
            }
            for hit in hits
        ]


# ------------------------------------------------------------------
# Registry
# ------------------------------------------------------------------


class ToolRegistry:
    """Name → tool mapping handed to the chat model and used for dispatch."""

    def __init__(self, tools: Iterable[Tool]) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            schema_name = tool.definition().get("function", {}).get("name")
            if not tool.name or schema_name != tool.name:
                raise ValueError(
                    f"Tool name {tool.name!r} does not match its schema name {schema_name!r}"
                )
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name {tool.name!r}")
            self._tools[tool.name] = tool

    def definitions(self) -> list[dict]:
        """Return tool schemas in registration order."""
        return [tool.definition() for tool in self._tools.values()]

    def execute(self, name: str, arguments: dict[str, Any] | str) -> Any:
        """Run the tool called *name*.

        Args:
            name: Tool name requested by the model.
            arguments: Parsed arguments, or the raw JSON object string.

        Raises:
            UnknownTool: If *name* is not registered.
            ToolExecutionFailure: If the arguments are malformed or the tool fails.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownTool(f"Unknown tool: {name}")

        if isinstance(arguments, str):
            arguments = _parse_arguments(name, arguments)

        logger.info("Executing tool %s with arguments %s", name, arguments)
        try:
            return tool.execute(arguments)
        except ToolExecutionFailure:
            raise
        except Exception as exc:
            raise ToolExecutionFailure(f"Tool '{name}' failed: {exc}") from exc


def _parse_arguments(name: str, raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ToolExecutionFailure(f"Invalid JSON arguments for '{name}': {exc}") from exc
    if not isinstance(parsed, dict):
        raise ToolExecutionFailure(f"Arguments for '{name}' must be a JSON object")
    return parsed


def build_default_registry(retriever: Retriever) -> ToolRegistry:
    """Return the registry with every built-in tool."""
    return ToolRegistry([SearchKnowledgeBaseTool(retriever)])
