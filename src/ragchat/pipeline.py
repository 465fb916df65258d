"""Wire configuration into a ready-to-use pipeline.

Everything is built explicitly from a ``RagchatConfig`` and one open SQLite
connection and returned in a ``Pipeline``; there is no module-level
instance. Callers own the connection and the janitor's lifetime.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from ragchat.config import RagchatConfig
from ragchat.db.repository import Repository
from ragchat.db.vectors import VectorIndex
from ragchat.ingest.chunker import ParagraphChunker
from ragchat.ingest.processor import DocumentIngestor
from ragchat.rag.conversation import ConversationStore
from ragchat.rag.orchestrator import QueryOrchestrator, RagFlow
from ragchat.rag.providers import (
    ChatProvider,
    EmbeddingProvider,
    LiteLLMChatProvider,
    LiteLLMEmbeddingProvider,
    SyntheticEmbeddingProvider,
)
from ragchat.rag.retriever import Retriever, RetrieverConfig
from ragchat.rag.sessions import SessionJanitor, SessionRegistry
from ragchat.rag.tools import ToolRegistry, build_default_registry

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    repo: Repository
    embedder: EmbeddingProvider
    chat: ChatProvider
    index: VectorIndex
    ingestor: DocumentIngestor
    retriever: Retriever
    tools: ToolRegistry
    conversations: ConversationStore
    sessions: SessionRegistry
    orchestrator: QueryOrchestrator

    def janitor(self, sweep_interval: float, safety_sweep_interval: float) -> SessionJanitor:
        """Return an unstarted janitor for this pipeline's session registry."""
        return SessionJanitor(self.sessions, sweep_interval, safety_sweep_interval)


def build_embedder(cfg: RagchatConfig) -> EmbeddingProvider:
    """Return the embedding provider named by ``embedding.provider``."""
    if cfg.embedding.provider == "synthetic":
        return SyntheticEmbeddingProvider(dimensions=cfg.embedding.dimensions)
    return LiteLLMEmbeddingProvider(
        model=cfg.embedding.model,
        dimensions=cfg.embedding.dimensions,
        timeout=cfg.embedding.timeout,
        api_base=cfg.embedding.api_base,
    )


def build_chat(cfg: RagchatConfig) -> ChatProvider:
    return LiteLLMChatProvider(
        model=cfg.chat.model,
        temperature=cfg.chat.temperature,
        max_tokens=cfg.chat.max_tokens,
        timeout=cfg.chat.timeout,
    )


def build_pipeline(
    cfg: RagchatConfig,
    conn: sqlite3.Connection,
    *,
    embedder: EmbeddingProvider | None = None,
    chat: ChatProvider | None = None,
) -> Pipeline:
    """Assemble every component for *cfg* on top of *conn*.

    Args:
        cfg: Loaded configuration.
        conn: Open connection with the schema initialised.
        embedder: Provider override (tests, embedding without config).
        chat: Provider override.
    """
    embedder = embedder or build_embedder(cfg)
    chat = chat or build_chat(cfg)

    repo = Repository(conn)
    index = VectorIndex(repo, embedder.model)
    retriever = Retriever(
        embedder,
        index,
        RetrieverConfig(top_k=cfg.retrieval.top_k, threshold=cfg.retrieval.threshold),
    )
    tools = build_default_registry(retriever)
    conversations = ConversationStore(repo)
    orchestrator = QueryOrchestrator(
        flow=RagFlow(cfg.pipeline.flow),
        repo=repo,
        retriever=retriever,
        chat=chat,
        conversations=conversations,
        tools=tools,
    )
    logger.debug(
        "Pipeline ready: flow=%s embedder=%s chat=%s",
        cfg.pipeline.flow,
        embedder.model,
        getattr(chat, "model", type(chat).__name__),
    )
    return Pipeline(
        repo=repo,
        embedder=embedder,
        chat=chat,
        index=index,
        ingestor=DocumentIngestor(
            repo,
            index,
            embedder,
            ParagraphChunker(cfg.chunking.chunk_size, cfg.chunking.overlap),
        ),
        retriever=retriever,
        tools=tools,
        conversations=conversations,
        sessions=SessionRegistry(conversations),
        orchestrator=orchestrator,
    )
