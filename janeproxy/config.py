from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _split_csv(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


class Settings(BaseModel):
    """Runtime settings for the chat proxy."""

    database_url: str = env_field(
        "postgresql://localhost:5432/janeproxy", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    shared_fs_root: str = env_field("/srv/janeproxy", "SHARED_FS_ROOT")

    # Completion provider (OpenAI-compatible chat completions)
    provider_api_key: str | None = env_field(None, "PROVIDER_API_KEY")
    provider_base_url: str = env_field("https://api.openai.com/v1", "PROVIDER_BASE_URL")
    provider_model: str = env_field("gpt-4o-mini", "PROVIDER_MODEL")
    provider_timeout_seconds: float = env_field(
        60.0,
        "PROVIDER_TIMEOUT_SECONDS",
        description="Upper bound on a single provider request, including the stream",
    )

    # Chat turn defaults
    default_user_id: str = env_field("local-user", "DEFAULT_USER_ID")
    default_pack_id: str = env_field("standard", "DEFAULT_PACK_ID")
    conversation_title: str = env_field("General", "CONVERSATION_TITLE")

    # Billing
    stripe_secret_key: str | None = env_field(None, "STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = env_field(None, "STRIPE_WEBHOOK_SECRET")
    checkout_success_url: str = env_field(
        "http://localhost:8787/success", "CHECKOUT_SUCCESS_URL"
    )
    checkout_cancel_url: str = env_field(
        "http://localhost:8787/cancel", "CHECKOUT_CANCEL_URL"
    )
    client_url: str = env_field("http://localhost:5173", "CLIENT_URL")

    # Optional reference-text augmentation
    enable_web_rag: bool = env_field(False, "ENABLE_WEB_RAG")
    rag_whitelist: list[str] = env_field(
        [],
        "RAG_WHITELIST",
        description="Comma separated origin prefixes that may be fetched",
    )
    rag_fetch_timeout_seconds: float = env_field(5.0, "RAG_FETCH_TIMEOUT_SECONDS")

    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow runtime resets and other deterministic testing behaviors",
    )
    build_sha: str = env_field("dev", "BUILD_SHA")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("rag_whitelist", "cors_allow_origins", mode="before")
    @classmethod
    def _parse_csv(cls, value: Any) -> list[str]:
        return _split_csv(value)

    @field_validator("provider_api_key", "stripe_secret_key", "stripe_webhook_secret")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("provider_timeout_seconds", "rag_fetch_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
