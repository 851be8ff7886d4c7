"""Centralised configuration loaded from environment variables / .env file."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage: "sql" (local durable store) or "remote" (namespaced KV service)
    storage_backend: str = "sql"
    database_url: str = "sqlite:///./cardscan.db"

    # Remote key-value service
    kv_endpoint: str = ""
    kv_namespace: str = ""
    kv_token: str = ""

    # LLM / text-completion service: "toolkit" (messages -> completion) or "openai"
    llm_provider: str = "toolkit"
    llm_endpoint: str = "https://toolkit.rork.com/text/llm/"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    llm_timeout_seconds: float = 10.0

    # Upper bound on the whole enrichment run before an add falls back
    enrichment_timeout_seconds: float = 30.0

    # HTTP API bearer key (empty = auth disabled)
    cardscan_api_key: str = ""

    # Auth backend
    session_token_key_length: int = 0
    password_hash_iterations: int = 240_000

    # Export
    export_timestamp_format: str = "%m/%d/%Y, %I:%M:%S %p"
    sheets_webhook_url: str = ""
    sheets_sheet_id: str = ""

    # Logging
    log_level: str = "INFO"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def effective_database_url(self) -> str:
        """Return a SQLAlchemy-compatible URL.

        Hosted Postgres providers inject ``postgres://`` but SQLAlchemy 2.0+
        requires ``postgresql://``.
        """
        url = self.database_url
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return url

    @property
    def remote_store_configured(self) -> bool:
        return bool(self.kv_endpoint and self.kv_namespace and self.kv_token)


settings = Settings()


def validate_config() -> list[str]:
    """Log (never raise) configuration combinations that will degrade at runtime."""
    problems: list[str] = []
    if settings.storage_backend not in ("sql", "remote"):
        problems.append(
            f"Unknown STORAGE_BACKEND {settings.storage_backend!r} – falling back to sql"
        )
    if settings.storage_backend == "remote" and not settings.remote_store_configured:
        problems.append("Remote storage selected but KV_ENDPOINT/KV_NAMESPACE/KV_TOKEN incomplete")
    if settings.llm_provider == "openai" and not settings.openai_api_key:
        problems.append("LLM_PROVIDER=openai but OPENAI_API_KEY not set – enrichment will be skipped")
    if settings.llm_provider == "toolkit" and not settings.llm_endpoint:
        problems.append("LLM_ENDPOINT not set – enrichment and scanning disabled")
    if not settings.cardscan_api_key:
        problems.append("CARDSCAN_API_KEY not set – HTTP API is unauthenticated")
    for problem in problems:
        logger.warning(problem)
    return problems
