from __future__ import annotations

from typing import Any, Dict, Optional


class StorageError(Exception):
    """Base class for failures raised by the durable stores."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConstraintViolation(StorageError):
    """A write would reference a missing row (e.g. a message for an unknown conversation)."""


__all__ = ["StorageError", "ConstraintViolation"]
