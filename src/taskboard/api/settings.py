from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/taskboard.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - API_TOKENS: comma-separated 'token:user_id' pairs accepted as bearer credentials
    - OPENAI_API_KEY: key for the AI collaborator (AI routes fail without it)
    - OPENAI_MODEL: chat model name (default 'gpt-4o-mini')
    - OPENAI_BASE_URL: chat-completions base url (default 'https://api.openai.com/v1')
    - AI_TIMEOUT_SECONDS: timeout for AI calls (default 30)
    - TAG_UPSERT_RETRIES: attempts when a concurrent tag insert collides (default 3)
    - LOG_LEVEL: logging level name (default 'INFO')
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    api_tokens: Dict[str, str] = field(default_factory=dict)
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    ai_timeout_seconds: float = 30.0
    tag_upsert_retries: int = 3
    log_level: str = "INFO"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int, minimum: int = 1) -> int:
    try:
        return max(int(value.strip()), minimum)
    except ValueError:
        return default


def _parse_float(value: str, default: float) -> float:
    try:
        v = float(value.strip())
    except ValueError:
        return default
    return v if v > 0 else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


def _parse_tokens(tokens_value: str) -> Dict[str, str]:
    """
    Parse 'token:user_id' pairs. Malformed pairs are skipped.
    """
    tokens: Dict[str, str] = {}
    for pair in tokens_value.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token.strip() and user_id.strip():
            tokens[token.strip()] = user_id.strip()
    return tokens


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        backend = "memory"

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./data/taskboard.db").strip(),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        api_tokens=_parse_tokens(_get_env("API_TOKENS", "")),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=_get_env("OPENAI_MODEL", "gpt-4o-mini").strip(),
        openai_base_url=_get_env("OPENAI_BASE_URL", "https://api.openai.com/v1").strip().rstrip("/"),
        ai_timeout_seconds=_parse_float(_get_env("AI_TIMEOUT_SECONDS", "30"), 30.0),
        tag_upsert_retries=_parse_int(_get_env("TAG_UPSERT_RETRIES", "3"), 3),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
    )
