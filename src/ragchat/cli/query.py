"""ragchat query commands — one-shot ask, interactive chat and the query log.

``chat`` behaves like one connected client: it mints a session id, registers
it, runs the session janitor for the lifetime of the loop and unregisters on
exit, which deletes the conversation.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.markdown import Markdown
from rich.table import Table

from ragchat.cli.common import (
    console,
    load_settings,
    open_pipeline,
    require_api_keys,
    require_db,
    resolve_db,
)
from ragchat.cli.errors import (
    err_chat_failed,
    err_embedding_failed,
    err_embedding_model_mismatch,
    err_no_relevant_content,
)
from ragchat.config import RagchatConfig
from ragchat.db.vectors import DimensionMismatch
from ragchat.pipeline import Pipeline
from ragchat.rag.errors import ChatFailure, EmbeddingFailure, NoRelevantContent
from ragchat.rag.orchestrator import QueryResult

_EXIT_WORDS = frozenset(["exit", "quit", ":q"])
_RESET_WORD = "/reset"

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the SQLite database (default from config: .ragchat.db)."),
]


def _answer(
    pipeline: Pipeline, cfg: RagchatConfig, question: str, session_id: str | None
) -> QueryResult | None:
    """Run one query; print the failure and return None when it cannot be answered."""
    try:
        return pipeline.orchestrator.process_query(question, session_id)
    except NoRelevantContent:
        console.print(err_no_relevant_content())
    except EmbeddingFailure as exc:
        console.print(err_embedding_failed(str(exc), pipeline.embedder.model))
    except ChatFailure as exc:
        console.print(err_chat_failed(str(exc), cfg.chat.model))
    except DimensionMismatch as exc:
        console.print(err_embedding_model_mismatch(str(exc)))
    return None


def _print_result(result: QueryResult) -> None:
    console.print(Markdown(result.response or "_(empty response)_"))
    if result.sources:
        cited = ", ".join(f"{s.title} (#{s.document_id})" for s in result.sources)
        console.print(f"\n[dim]Sources:[/] {cited}")


# ------------------------------------------------------------------
# ask
# ------------------------------------------------------------------


def ask_cmd(
    ctx: typer.Context,
    question: Annotated[str, typer.Argument(help="Question to answer from the knowledge base.")],
    session: Annotated[
        str | None,
        typer.Option("--session", "-s", help="Session id to keep conversation history under."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Answer one question with retrieval-augmented generation."""
    cfg = load_settings(ctx)
    db_path = resolve_db(cfg, db)
    require_db(db_path)
    require_api_keys(cfg)

    with open_pipeline(cfg, db_path) as pipeline:
        result = _answer(pipeline, cfg, question, session)
    if result is None:
        raise typer.Exit(1)
    _print_result(result)


# ------------------------------------------------------------------
# chat
# ------------------------------------------------------------------


def chat_cmd(ctx: typer.Context, db: _DbOption = None) -> None:
    """Interactive conversation; history is discarded when you leave."""
    cfg = load_settings(ctx)
    db_path = resolve_db(cfg, db)
    require_db(db_path)
    require_api_keys(cfg)

    session_id = uuid.uuid4().hex
    with open_pipeline(cfg, db_path) as pipeline:
        pipeline.sessions.register(session_id)
        janitor = pipeline.janitor(cfg.sessions.sweep_interval, cfg.sessions.safety_sweep_interval)
        console.print(
            f"[bold]ragchat[/] ({cfg.pipeline.flow}, {cfg.chat.model}) — "
            f"type [bold]{_RESET_WORD}[/] to start over, [bold]exit[/] to leave."
        )
        try:
            with janitor:
                _chat_loop(pipeline, cfg, session_id)
        finally:
            pipeline.sessions.unregister(session_id)
    console.print("[dim]Session closed.[/]")


def _chat_loop(pipeline: Pipeline, cfg: RagchatConfig, session_id: str) -> None:
    while True:
        try:
            question = typer.prompt("You", prompt_suffix="> ").strip()
        except (EOFError, typer.Abort):
            return
        if not question:
            continue
        if question.lower() in _EXIT_WORDS:
            return
        if question == _RESET_WORD:
            pipeline.conversations.clear(session_id)
            console.print("[dim]Conversation cleared.[/]")
            continue

        result = _answer(pipeline, cfg, question, session_id)
        if result is not None:
            _print_result(result)


# ------------------------------------------------------------------
# queries
# ------------------------------------------------------------------


def queries_cmd(
    ctx: typer.Context,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Number of queries to show.")] = 10,
    db: _DbOption = None,
) -> None:
    """Show the most recent answered queries, newest first."""
    cfg = load_settings(ctx)
    db_path = resolve_db(cfg, db)
    require_db(db_path)

    with open_pipeline(cfg, db_path) as pipeline:
        records = pipeline.repo.list_queries(limit)

    if not records:
        console.print("[dim]No queries recorded yet.[/]")
        return

    table = Table(title="Recent queries", show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Asked")
    table.add_column("Query")
    table.add_column("Response")
    for record in records:
        response = record.response_text
        if len(response) > 80:
            response = response[:77] + "..."
        table.add_row(str(record.id), record.created_at or "", record.query_text, response)
    console.print(table)
