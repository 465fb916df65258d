"""ragchat document commands — ingest, list, re-ingest and remove.

Usage:
  ragchat ingest notes/rag-intro.md --title "RAG Intro"
  ragchat documents
  ragchat reingest 3 notes/rag-intro.md
  ragchat remove 3 --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
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
    err_document_not_found,
    err_embedding_failed,
    err_embedding_model_mismatch,
    err_empty_document,
    err_file_not_found,
    err_invalid_document,
)
from ragchat.db.models import Document
from ragchat.db.vectors import DimensionMismatch
from ragchat.pipeline import Pipeline
from ragchat.rag.errors import EmbeddingFailure

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the SQLite database (default from config: .ragchat.db)."),
]


def _read_text(path: Path) -> str:
    if not path.is_file():
        console.print(err_file_not_found(str(path)))
        raise typer.Exit(1)
    content = path.read_text(encoding="utf-8")
    if not content.strip():
        console.print(err_empty_document(str(path)))
        raise typer.Exit(1)
    return content


def _index_or_exit(pipeline: Pipeline, action) -> Document:
    """Run an ingest *action*, turning provider, vector and validation errors into exit 1."""
    try:
        return action()
    except EmbeddingFailure as exc:
        console.print(err_embedding_failed(str(exc), pipeline.embedder.model))
        raise typer.Exit(1) from exc
    except DimensionMismatch as exc:
        console.print(err_embedding_model_mismatch(str(exc)))
        raise typer.Exit(1) from exc
    except ValueError as exc:
        console.print(err_invalid_document(str(exc)))
        raise typer.Exit(1) from exc


# ------------------------------------------------------------------
# ingest
# ------------------------------------------------------------------


def ingest_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="Text or markdown file to ingest.")],
    title: Annotated[
        str | None,
        typer.Option("--title", "-t", help="Document title (default: file name without extension)."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Chunk, embed and store a document in the knowledge base."""
    cfg = load_settings(ctx)
    content = _read_text(file)
    require_api_keys(cfg, chat=False)

    with open_pipeline(cfg, resolve_db(cfg, db)) as pipeline:
        document = _index_or_exit(
            pipeline, lambda: pipeline.ingestor.ingest(title or file.stem, content)
        )

    console.print(f"[green]✓[/] Ingested [bold]{document.title}[/] (id {document.id})")
    console.print(f"  {document.chunk_count} chunks embedded with {pipeline.embedder.model}")


# ------------------------------------------------------------------
# documents
# ------------------------------------------------------------------


def documents_cmd(ctx: typer.Context, db: _DbOption = None) -> None:
    """List ingested documents, newest first."""
    cfg = load_settings(ctx)
    db_path = resolve_db(cfg, db)
    require_db(db_path)

    with open_pipeline(cfg, db_path) as pipeline:
        documents = pipeline.repo.list_documents()

    if not documents:
        console.print("[dim]No documents ingested yet.[/]  Run:  ragchat ingest <file>")
        return

    table = Table(title="Documents", show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Chunks", justify="right")
    table.add_column("Updated")
    for doc in documents:
        table.add_row(str(doc.id), doc.title, str(doc.chunk_count), doc.updated_at or "")
    console.print(table)


# ------------------------------------------------------------------
# reingest
# ------------------------------------------------------------------


def reingest_cmd(
    ctx: typer.Context,
    document_id: Annotated[int, typer.Argument(help="Document id (see: ragchat documents).")],
    file: Annotated[Path, typer.Argument(help="File with the new content.")],
    title: Annotated[
        str | None,
        typer.Option("--title", "-t", help="New title (default: keep the current one)."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Replace a document's content and rebuild its chunks and vectors."""
    cfg = load_settings(ctx)
    db_path = resolve_db(cfg, db)
    require_db(db_path)
    content = _read_text(file)
    require_api_keys(cfg, chat=False)

    with open_pipeline(cfg, db_path) as pipeline:
        if pipeline.repo.get_document(document_id) is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(1)
        document = _index_or_exit(
            pipeline, lambda: pipeline.ingestor.reingest(document_id, title=title, content=content)
        )

    console.print(f"[green]✓[/] Re-ingested [bold]{document.title}[/] (id {document.id})")
    console.print(f"  {document.chunk_count} chunks")


# ------------------------------------------------------------------
# remove
# ------------------------------------------------------------------


def remove_cmd(
    ctx: typer.Context,
    document_id: Annotated[int, typer.Argument(help="Document id to remove.")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    db: _DbOption = None,
) -> None:
    """Remove a document together with its chunks and vectors."""
    cfg = load_settings(ctx)
    db_path = resolve_db(cfg, db)
    require_db(db_path)

    with open_pipeline(cfg, db_path) as pipeline:
        existing = pipeline.repo.get_document(document_id)
        if existing is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(1)

        console.print(f"\nRemove document: [bold]{existing.title}[/] (id {document_id})")
        console.print(f"  Chunks: {existing.chunk_count}")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        pipeline.ingestor.delete(document_id)

    console.print(f"\n[green]✓[/] Removed: {existing.title}")
