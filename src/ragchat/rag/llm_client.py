"""LiteLLM client wrapper with timeouts and API key validation.

All chat and embedding calls in the pipeline route through this module.
Calls are made with ``num_retries=0``: a failed provider call fails the
enclosing query immediately and retry policy is left to the caller. Every
call carries a bounded timeout (30 s by default).
"""

from __future__ import annotations

import os
from typing import Any

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

DEFAULT_TIMEOUT = 30.0


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Return the provider prefix of a LiteLLM model string ('openai' if absent)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama) or unknown provider

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def chat_completion(
    model: str,
    messages: list[dict],
    tools: list[dict] | None = None,
    tool_choice: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.2,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """Call litellm.completion() once and return the first choice's message.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style message list.
        tools: OpenAI function-tool schemas, or None for a plain completion.
        tool_choice: 'auto', 'none' or None. Ignored when *tools* is None.
        max_tokens: Maximum output tokens.
        temperature: Sampling temperature.
        timeout: Seconds before the request is abandoned.

    Returns:
        The LiteLLM message object (``.content`` and ``.tool_calls``).

    Raises:
        litellm.exceptions.APIError: On any provider failure or timeout.
    """
    kwargs: dict[str, Any] = {}
    if tools:
        kwargs["tools"] = tools
        if tool_choice:
            kwargs["tool_choice"] = tool_choice

    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        timeout=timeout,
        num_retries=0,
        **kwargs,
    )
    return response.choices[0].message


def embed(
    model: str,
    text: str,
    timeout: float = DEFAULT_TIMEOUT,
    api_base: str | None = None,
) -> list[float]:
    """Call litellm.embedding() once and return the embedding vector.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        text: Text to embed.
        timeout: Seconds before the request is abandoned.
        api_base: Override the provider endpoint (e.g. a remote Ollama host).

    Returns:
        Embedding as a list of floats.
    """
    kwargs: dict[str, Any] = {}
    if api_base:
        kwargs["api_base"] = api_base
    response = litellm.embedding(
        model=model,
        input=[text],
        timeout=timeout,
        num_retries=0,
        **kwargs,
    )
    return list(response.data[0]["embedding"])
