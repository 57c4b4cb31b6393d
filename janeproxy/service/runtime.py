from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from janeproxy.config import get_settings, reset_settings_cache
from janeproxy.logging import get_logger
from janeproxy.service.billing import BillingService
from janeproxy.service.chat import ChatPipeline
from janeproxy.service.conversations import ConversationStore
from janeproxy.service.model_backend import build_backend
from janeproxy.service.personas import PersonaRegistry
from janeproxy.service.web_context import WebContextFetcher
from janeproxy.storage.memory import MemoryStore
from janeproxy.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password of a DSN with ``***`` for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.conversations = ConversationStore(
            self.store, default_title=self.settings.conversation_title
        )
        self.personas = PersonaRegistry(default_pack_id=self.settings.default_pack_id)
        self.backend = build_backend(
            self.settings.provider_model,
            api_key=self.settings.provider_api_key,
            base_url=self.settings.provider_base_url,
            timeout=self.settings.provider_timeout_seconds,
        )
        self.web_context = WebContextFetcher(
            enabled=self.settings.enable_web_rag,
            allow_list=self.settings.rag_whitelist,
            timeout=self.settings.rag_fetch_timeout_seconds,
        )
        self.pipeline = ChatPipeline(
            self.conversations,
            self.personas,
            self.backend,
            web_context=self.web_context,
            default_user_id=self.settings.default_user_id,
        )
        self.billing = BillingService(
            self.store,
            secret_key=self.settings.stripe_secret_key,
            webhook_secret=self.settings.stripe_webhook_secret,
            success_url=self.settings.checkout_success_url,
            cancel_url=self.settings.checkout_cancel_url,
            client_url=self.settings.client_url,
        )
        logger.info(
            "runtime_init_completed",
            backend=self.backend.mode,
            web_context_enabled=self.web_context.enabled,
            billing_configured=bool(self.settings.stripe_secret_key),
        )

    async def close(self) -> None:
        close_backend = getattr(self.backend, "close", None)
        if close_backend is not None:
            await close_backend()
        self.store.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.store.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
