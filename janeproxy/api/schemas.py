from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from janeproxy.logging import get_correlation_id

# Stable error codes carried by error envelopes
_VALID_ERROR_CODES = frozenset(
    {
        "validation_error",
        "not_found",
        "conflict",
        "server_error",
        "unavailable",
    }
)


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class ChatTurnMessage(BaseModel):
    # system prompts come from the persona registry, never from the client
    role: Literal["user", "assistant"] = "user"
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _null_content_to_empty(cls, value: Any) -> Any:
        # lists of content parts and other non-strings fail the str check
        return "" if value is None else value


class ChatTurnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    pack_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("packId", "pack", "pack_id"),
    )
    messages: List[ChatTurnMessage] = Field(default_factory=list)

    @field_validator("user_id", "pack_id")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()


class HistoryMessage(BaseModel):
    role: str
    content: str
    created_at: datetime


class HistoryResponse(BaseModel):
    conversation_id: Optional[str] = None
    messages: List[HistoryMessage] = Field(default_factory=list)


class PackListResponse(BaseModel):
    packs: List[str]


class LicenseResponse(BaseModel):
    user_id: str
    active: bool
    status: str
    current_period_end: int = 0
    product: Optional[str] = None


class CheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    price_id: Optional[str] = Field(default=None, alias="priceId")
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")


class PortalSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_id: Optional[str] = Field(default=None, alias="customerId")
    return_url: Optional[str] = Field(default=None, alias="returnUrl")


class SessionUrlResponse(BaseModel):
    url: str
