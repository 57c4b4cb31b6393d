from __future__ import annotations

import contextlib
import json
from dataclasses import asdict
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from janeproxy.api.schemas import (
    ChatTurnRequest,
    CheckoutSessionRequest,
    Envelope,
    HistoryMessage,
    HistoryResponse,
    LicenseResponse,
    PackListResponse,
    PortalSessionRequest,
    SessionUrlResponse,
)
from janeproxy.service.chat import ChatTurn
from janeproxy.service.errors import BadRequestError
from janeproxy.service.runtime import get_runtime

router = APIRouter(prefix="/v1")

SSE_DONE = "data: [DONE]\n\n"


def _sse_frame(event: Dict[str, Any]) -> str:
    if event["event"] == "done":
        return SSE_DONE
    payload = json.dumps({"delta": event["data"]}, ensure_ascii=False)
    return f"data: {payload}\n\n"


async def _sse_stream(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    # closing this generator (client gone) closes the pipeline and its provider stream
    async with contextlib.aclosing(events):
        async for event in events:
            yield _sse_frame(event)


def _require_user_id(user_id: Optional[str]) -> str:
    user_id = (user_id or "").strip()
    if not user_id:
        raise BadRequestError("userId required")
    return user_id


@router.post("/chat", tags=["chat"])
async def chat(body: ChatTurnRequest):
    """Run one chat turn and stream the reply as server-sent events.

    Frames are ``data: {"delta": "..."}`` followed by a final ``data: [DONE]``.
    Crisis language short-circuits to a fixed safety reply; provider failures
    end with a single fallback delta.
    """
    runtime = get_runtime()
    turn = ChatTurn(
        user_id=body.user_id,
        pack_id=body.pack_id,
        messages=[message.model_dump() for message in body.messages],
    )
    return StreamingResponse(
        _sse_stream(runtime.pipeline.run_turn(turn)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/history", response_model=Envelope, tags=["chat"])
def get_history(user_id: Optional[str] = Query(None, alias="userId")):
    runtime = get_runtime()
    history = runtime.conversations.get_history_for_user(_require_user_id(user_id))
    data = HistoryResponse(
        conversation_id=history.conversation_id,
        messages=[
            HistoryMessage(role=m.role, content=m.content, created_at=m.created_at)
            for m in history.messages
        ],
    )
    return Envelope(status="ok", data=data)


@router.get("/packs", response_model=Envelope, tags=["chat"])
def list_packs():
    runtime = get_runtime()
    return Envelope(status="ok", data=PackListResponse(packs=runtime.personas.list_packs()))


@router.get("/license", response_model=Envelope, tags=["billing"])
def get_license(user_id: Optional[str] = Query(None, alias="userId")):
    runtime = get_runtime()
    status = runtime.billing.get_license(_require_user_id(user_id))
    return Envelope(status="ok", data=LicenseResponse(**asdict(status)))


@router.post("/billing/checkout-session", response_model=Envelope, tags=["billing"])
def create_checkout_session(body: CheckoutSessionRequest):
    runtime = get_runtime()
    url = runtime.billing.create_checkout_session(
        body.user_id,
        body.price_id,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    return Envelope(status="ok", data=SessionUrlResponse(url=url))


@router.post("/billing/portal-session", response_model=Envelope, tags=["billing"])
def create_portal_session(body: PortalSessionRequest):
    runtime = get_runtime()
    url = runtime.billing.create_portal_session(body.customer_id, return_url=body.return_url)
    return Envelope(status="ok", data=SessionUrlResponse(url=url))


@router.post("/billing/webhook", tags=["billing"])
async def billing_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    """Verify a Stripe event and reconcile the license it describes."""
    runtime = get_runtime()
    payload = await request.body()
    return await run_in_threadpool(runtime.billing.handle_webhook, payload, stripe_signature)
