from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pairs an HTTP ``status_code`` with a stable ``error_code``:
    - validation_error (400)
    - server_error (500)
    - unavailable (503)
    Storage conflicts (409) and unknown routes (404) are mapped by the API layer.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Request is malformed or missing a required identifier (400)."""
    status_code = 400
    error_code = "validation_error"


class ServerError(ServiceError):
    """Internal or upstream failure (500)."""
    status_code = 500
    error_code = "server_error"


class ServiceUnavailableError(ServiceError):
    """A collaborator the request needs is not configured (503)."""
    status_code = 503
    error_code = "unavailable"


__all__ = [
    "ServiceError",
    "BadRequestError",
    "ServerError",
    "ServiceUnavailableError",
]
