"""ragchat CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from ragchat.cli.documents import documents_cmd, ingest_cmd, reingest_cmd, remove_cmd
from ragchat.cli.query import ask_cmd, chat_cmd, queries_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("ragchat")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ragchat {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="ragchat",
    help=(
        "ragchat — ask questions about your documents.\n\n"
        "  ragchat ingest FILE   Chunk, embed and store a document.\n"
        "  ragchat ask QUESTION  Answer with retrieval-augmented generation.\n"
        "  ragchat chat          Interactive conversation with history."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log at DEBUG level."),
    ] = False,
) -> None:
    """ragchat — ask questions about your documents."""
    ctx.obj = {"verbose": verbose}


app.command("ingest")(ingest_cmd)
app.command("documents")(documents_cmd)
app.command("reingest")(reingest_cmd)
app.command("remove")(remove_cmd)
app.command("ask")(ask_cmd)
app.command("chat")(chat_cmd)
app.command("queries")(queries_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed ragchat version."""
    typer.echo(f"ragchat {_installed_version()}")


if __name__ == "__main__":
    app()
