"""ragchat configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (RAGCHAT_CHAT_MODEL, RAGCHAT_EMBEDDING_MODEL, RAGCHAT_FLOW)
  3. Per-project ragchat.yaml  (in the working directory)
  4. Global ~/.ragchat/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".ragchat"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "ragchat.yaml"
DEFAULT_DB_NAME: str = ".ragchat.db"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Leaves max_tokens alone.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["database", "embedding", "chat", "retrieval", "chunking", "pipeline", "sessions", "logging"]
)

EMBEDDING_PROVIDERS: frozenset[str] = frozenset(["litellm", "synthetic"])
FLOWS: frozenset[str] = frozenset(["pre_retrieval", "tool_based"])
LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """SQLite location (ragchat.yaml: database:). Relative paths resolve against the project dir."""

    path: str = DEFAULT_DB_NAME


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (ragchat.yaml: embedding:).

    Attributes:
        provider: ``litellm`` for a real model, ``synthetic`` for hash vectors.
        model: LiteLLM model string (ignored by the synthetic provider).
        dimensions: Expected vector size; also the synthetic vector size.
        timeout: Seconds per embedding request.
        api_base: Optional endpoint override (e.g. a remote Ollama).
    """

    provider: str = "litellm"
    model: str = "ollama/nomic-embed-text"
    dimensions: int = 768
    timeout: float = 30.0
    api_base: str | None = None


@dataclass
class ChatCfg:
    """Chat model configuration (ragchat.yaml: chat:)."""

    model: str = "groq/llama3-70b-8192"
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout: float = 30.0


@dataclass
class RetrievalCfg:
    """Retrieval configuration (ragchat.yaml: retrieval:)."""

    top_k: int = 5
    threshold: float = 0.3


@dataclass
class ChunkingCfg:
    """Paragraph chunker configuration (ragchat.yaml: chunking:)."""

    chunk_size: int = 1000
    overlap: int = 200


@dataclass
class PipelineCfg:
    """Answer flow (ragchat.yaml: pipeline:). One of ``pre_retrieval`` / ``tool_based``."""

    flow: str = "tool_based"


@dataclass
class SessionsCfg:
    """Conversation cleanup cadence in seconds (ragchat.yaml: sessions:)."""

    sweep_interval: float = 15.0
    safety_sweep_interval: float = 1800.0


@dataclass
class LoggingCfg:
    level: str = "WARNING"


@dataclass
class RagchatConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chat: ChatCfg = field(default_factory=ChatCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    pipeline: PipelineCfg = field(default_factory=PipelineCfg)
    sessions: SessionsCfg = field(default_factory=SessionsCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return raw


def _validate(cfg: RagchatConfig) -> None:
    if cfg.embedding.provider not in EMBEDDING_PROVIDERS:
        raise ConfigError(
            f"Unknown embedding provider '{cfg.embedding.provider}'.\n"
            f"  Choose one of: {', '.join(sorted(EMBEDDING_PROVIDERS))}"
        )
    if cfg.pipeline.flow not in FLOWS:
        raise ConfigError(
            f"Unknown pipeline flow '{cfg.pipeline.flow}'.\n"
            f"  Choose one of: {', '.join(sorted(FLOWS))}"
        )
    if cfg.logging.level not in LOG_LEVELS:
        raise ConfigError(
            f"Unknown log level '{cfg.logging.level}'.\n"
            f"  Choose one of: {', '.join(sorted(LOG_LEVELS))}"
        )
    if cfg.embedding.dimensions < 1:
        raise ConfigError("embedding.dimensions must be >= 1")
    if cfg.retrieval.top_k < 1:
        raise ConfigError("retrieval.top_k must be >= 1")
    if cfg.chunking.chunk_size < 1 or not 0 <= cfg.chunking.overlap < cfg.chunking.chunk_size:
        raise ConfigError(
            "chunking.overlap must be >= 0 and smaller than chunking.chunk_size "
            f"(got chunk_size={cfg.chunking.chunk_size}, overlap={cfg.chunking.overlap})"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> RagchatConfig:
    """Build a *RagchatConfig* from a merged raw YAML dict."""
    cfg = RagchatConfig()

    try:
        if "database" in data:
            db = data["database"] or {}
            cfg.database = DatabaseCfg(path=str(db.get("path", cfg.database.path)))

        if "embedding" in data:
            e = data["embedding"] or {}
            cfg.embedding = EmbeddingCfg(
                provider=str(e.get("provider", cfg.embedding.provider)),
                model=str(e.get("model", cfg.embedding.model)),
                dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
                timeout=float(e.get("timeout", cfg.embedding.timeout)),
                api_base=e.get("api_base") or cfg.embedding.api_base,
            )

        if "chat" in data:
            c = data["chat"] or {}
            cfg.chat = ChatCfg(
                model=str(c.get("model", cfg.chat.model)),
                temperature=float(c.get("temperature", cfg.chat.temperature)),
                max_tokens=int(c.get("max_tokens", cfg.chat.max_tokens)),
                timeout=float(c.get("timeout", cfg.chat.timeout)),
            )

        if "retrieval" in data:
            r = data["retrieval"] or {}
            cfg.retrieval = RetrievalCfg(
                top_k=int(r.get("top_k", cfg.retrieval.top_k)),
                threshold=float(r.get("threshold", cfg.retrieval.threshold)),
            )

        if "chunking" in data:
            ch = data["chunking"] or {}
            cfg.chunking = ChunkingCfg(
                chunk_size=int(ch.get("chunk_size", cfg.chunking.chunk_size)),
                overlap=int(ch.get("overlap", cfg.chunking.overlap)),
            )

        if "pipeline" in data:
            p = data["pipeline"] or {}
            cfg.pipeline = PipelineCfg(flow=str(p.get("flow", cfg.pipeline.flow)))

        if "sessions" in data:
            s = data["sessions"] or {}
            cfg.sessions = SessionsCfg(
                sweep_interval=float(s.get("sweep_interval", cfg.sessions.sweep_interval)),
                safety_sweep_interval=float(
                    s.get("safety_sweep_interval", cfg.sessions.safety_sweep_interval)
                ),
            )

        if "logging" in data:
            lg = data["logging"] or {}
            cfg.logging = LoggingCfg(level=str(lg.get("level", cfg.logging.level)).upper())
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: RagchatConfig) -> RagchatConfig:
    """Apply RAGCHAT_* environment variable overrides (layer 2)."""
    if model := os.environ.get("RAGCHAT_CHAT_MODEL"):
        cfg.chat.model = model
    if model := os.environ.get("RAGCHAT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if flow := os.environ.get("RAGCHAT_FLOW"):
        cfg.pipeline.flow = flow
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RagchatConfig:
    """Load and return a merged *RagchatConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *ragchat.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, a value
            has the wrong type, or the flow / embedding provider is unknown.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg
