"""ragchat rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from ragchat.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("groq"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'groq'. Set:  export GROQ_API_KEY=...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
        "groq": "GROQ_API_KEY",
        "together_ai": "TOGETHERAI_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=<key>"
    )


def err_no_db(db_path: str = ".ragchat.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  ragchat ingest <file>  to create it."
    )


def err_config(message: str) -> str:
    """Config file could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix ragchat.yaml (or ~/.ragchat/config.yaml) and retry."
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path and retry."
    )


def err_document_not_found(document_id: int) -> str:
    return (
        f"[yellow]Document not found:[/] no document with id {document_id}.\n"
        "  Run:  ragchat documents  to see all ingested documents."
    )


def err_empty_document(path: str) -> str:
    return (
        f"[red]Error:[/] '{path}' has no text to ingest.\n"
        "  Add text to the file and run the command again."
    )


def err_invalid_document(reason: str) -> str:
    return (
        f"[red]Error:[/] Document rejected: {reason}.\n"
        "  Check the --title value and the file content, then retry."
    )


def err_embedding_failed(reason: str, model: str) -> str:
    """Embedding provider failed; nothing was written."""
    return (
        f"[red]Error:[/] Embedding failed: {reason}\n"
        f"  Check that '{model}' is reachable (for Ollama:  ollama pull nomic-embed-text),\n"
        "  or set  embedding.provider: synthetic  in ragchat.yaml for offline use."
    )


def err_chat_failed(reason: str, model: str) -> str:
    return (
        f"[red]Error:[/] Chat model '{model}' failed: {reason}\n"
        "  Check your network and API key, then ask again."
    )


def err_no_relevant_content() -> str:
    """Pre-retrieval flow found nothing above the similarity threshold."""
    return (
        "[yellow]No relevant documents found.[/]\n"
        "  Ingest documents on this topic:  ragchat ingest <file>\n"
        "  or lower  retrieval.threshold  in ragchat.yaml."
    )


def err_embedding_model_mismatch(reason: str) -> str:
    """Stored vectors were created with a different vector size."""
    return (
        f"[red]Error:[/] {reason}\n"
        "  Set  embedding.dimensions  to match the stored vectors,\n"
        "  or switch to a new embedding model name to build a separate index."
    )
