"""Shared CLI plumbing: console, logging, config and pipeline setup."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from ragchat.cli.errors import err_config, err_no_api_key, err_no_db
from ragchat.config import ConfigError, RagchatConfig, load_config
from ragchat.db.connection import Database
from ragchat.db.schema import initialize
from ragchat.pipeline import Pipeline, build_pipeline
from ragchat.rag import llm_client

console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str, verbose: bool = False) -> None:
    """Route stdlib logging through rich at *level* (DEBUG when *verbose*)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # LiteLLM and its HTTP stack are noisy at DEBUG.
    for name in ("LiteLLM", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def load_settings(ctx: typer.Context | None = None) -> RagchatConfig:
    """Load config, then configure logging from it and the global --verbose flag."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    verbose = bool(ctx and ctx.obj and ctx.obj.get("verbose"))
    configure_logging(cfg.logging.level, verbose)
    return cfg


def resolve_db(cfg: RagchatConfig, db: Path | None) -> Path:
    return db if db is not None else Path(cfg.database.path)


def require_db(db_path: Path) -> None:
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)


def require_api_keys(cfg: RagchatConfig, *, chat: bool = True, embedding: bool = True) -> None:
    """Fail fast with an actionable message when a provider key is missing."""
    models = []
    if embedding and cfg.embedding.provider == "litellm":
        models.append(cfg.embedding.model)
    if chat:
        models.append(cfg.chat.model)
    for model in models:
        try:
            llm_client.validate_api_key(model)
        except EnvironmentError as exc:
            console.print(err_no_api_key(llm_client.provider_of(model)))
            raise typer.Exit(1) from exc


@contextmanager
def open_pipeline(cfg: RagchatConfig, db_path: Path) -> Iterator[Pipeline]:
    """Open *db_path* (schema initialised), build the pipeline, close on exit."""
    conn = Database(db_path).connect()
    try:
        initialize(conn)
        yield build_pipeline(cfg, conn)
    finally:
        conn.close()
