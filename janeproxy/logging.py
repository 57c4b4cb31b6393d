from __future__ import annotations

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Request id of the HTTP request being served; bound by the app middleware
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

REDACTED = "[redacted]"

# keys whose values are credentials and never reach the log stream
_CREDENTIAL_MARKERS = ("secret", "token", "api_key", "authorization", "signature", "password")
# keys whose values may echo user or provider text
_FREE_TEXT_KEYS = frozenset({"error", "detail", "message", "reason"})

_EMAIL = re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b")
_PHONE = re.compile(r"(?<![\w+])\+?\d[\d\s().-]{6,}\d")
_DSN_PASSWORD = re.compile(r"(://[^:/@\s]+:)[^@\s]+@")


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Use the caller's request id, or a fresh UUID when none was sent."""
    cid = (correlation_id or "").strip() or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = cid
    return event_dict


def _mask_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key, value in event_dict.items():
        if not isinstance(value, str) or not value:
            continue
        lower_key = key.lower()
        if any(marker in lower_key for marker in _CREDENTIAL_MARKERS):
            event_dict[key] = REDACTED
        elif lower_key.endswith("_url") or lower_key == "url":
            event_dict[key] = _DSN_PASSWORD.sub(r"\1***@", value)
    return event_dict


def _scrub_contact_details(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Replace emails and phone numbers inside free-text values.

    Exception strings from the provider or Stripe can quote the user's own
    input, so they get the same placeholders the chat pipeline applies.
    Keys named ``email`` or ``phone`` are dropped to their placeholder whole.
    """
    for key, value in event_dict.items():
        if not isinstance(value, str) or not value:
            continue
        lower_key = key.lower()
        if "email" in lower_key:
            event_dict[key] = "[email]"
        elif "phone" in lower_key:
            event_dict[key] = "[phone]"
        elif lower_key in _FREE_TEXT_KEYS:
            event_dict[key] = _PHONE.sub("[phone]", _EMAIL.sub("[email]", value))
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(
    level: str = "INFO", *, json_output: bool = True, development_mode: bool = False
) -> None:
    """Install the structlog pipeline: request id, redaction, then a renderer.

    JSON lines by default; the colored console renderer when
    ``development_mode`` is set or ``json_output`` is off.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _mask_credentials,
        _scrub_contact_details,
        structlog.processors.StackInfoRenderer(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.extend([structlog.processors.format_exc_info, structlog.processors.JSONRenderer()])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
