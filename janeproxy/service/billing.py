from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

from janeproxy.logging import get_logger
from janeproxy.service.errors import BadRequestError, ServerError, ServiceUnavailableError

logger = get_logger(__name__)

SUBSCRIPTION_EVENTS = frozenset({"customer.subscription.updated", "customer.subscription.deleted"})


@dataclass
class LicenseStatus:
    user_id: str
    active: bool
    status: str
    current_period_end: int
    product: Optional[str]


def _first_item(subscription: Any) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def license_fields(subscription: Any) -> Dict[str, Any]:
    """Status, period end (epoch ms) and product price id of a subscription object."""
    item = _first_item(subscription)
    # newer API versions report the billing period on the subscription item
    period_end = subscription.get("current_period_end") or item.get("current_period_end") or 0
    price = item.get("price") or {}
    return {
        "status": subscription.get("status") or "none",
        "current_period_end": int(period_end) * 1000,
        "product": price.get("id") or "",
    }


def _user_id_of(obj: Any) -> str:
    metadata = obj.get("metadata") or {}
    return metadata.get("userId") or "unknown"


class BillingService:
    """Stripe checkout, customer portal and license reconciliation."""

    def __init__(
        self,
        store: Any,
        *,
        secret_key: Optional[str],
        webhook_secret: Optional[str],
        success_url: str,
        cancel_url: str,
        client_url: str,
    ) -> None:
        self.store = store
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.client_url = client_url

    def _require_key(self) -> str:
        if not self.secret_key:
            raise ServiceUnavailableError("billing is not configured")
        return self.secret_key

    def create_checkout_session(
        self,
        user_id: Optional[str],
        price_id: Optional[str],
        *,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> str:
        if not user_id or not price_id:
            raise BadRequestError("userId and priceId required")
        api_key = self._require_key()
        try:
            session = stripe.checkout.Session.create(
                api_key=api_key,
                mode="subscription",
                success_url=success_url or self.success_url,
                cancel_url=cancel_url or self.cancel_url,
                line_items=[{"price": price_id, "quantity": 1}],
                metadata={"userId": user_id},
            )
        except stripe.StripeError as exc:
            logger.error("billing_checkout_failed", user_id=user_id, error_type=type(exc).__name__)
            raise ServerError("billing provider error") from exc
        logger.info("billing_checkout_created", user_id=user_id, session_id=session.get("id"))
        return session["url"]

    def create_portal_session(
        self, customer_id: Optional[str], *, return_url: Optional[str] = None
    ) -> str:
        if not customer_id:
            raise BadRequestError("customerId required")
        api_key = self._require_key()
        try:
            session = stripe.billing_portal.Session.create(
                api_key=api_key,
                customer=customer_id,
                return_url=return_url or self.client_url,
            )
        except stripe.StripeError as exc:
            logger.error("billing_portal_failed", error_type=type(exc).__name__)
            raise ServerError("billing provider error") from exc
        return session["url"]

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise ServiceUnavailableError("billing webhook is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("billing_webhook_rejected", error_type=type(exc).__name__)
            raise BadRequestError("invalid webhook", detail={"reason": str(exc)}) from exc

        event_type = event["type"]
        try:
            self._reconcile(event_type, event["data"]["object"])
        except Exception as exc:
            # acknowledged anyway; Stripe would otherwise retry the same event
            logger.error(
                "billing_webhook_reconcile_failed",
                event_type=event_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        else:
            logger.info("billing_webhook_processed", event_type=event_type)
        return {"received": True}

    def _reconcile(self, event_type: str, obj: Any) -> None:
        if event_type == "checkout.session.completed":
            subscription_id = obj.get("subscription")
            if not subscription_id:
                return
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._require_key())
            self.store.upsert_license(_user_id_of(obj), **license_fields(subscription))
        elif event_type in SUBSCRIPTION_EVENTS:
            self.store.upsert_license(_user_id_of(obj), **license_fields(obj))

    def get_license(self, user_id: str) -> LicenseStatus:
        record = self.store.get_license(user_id)
        if record is None:
            return LicenseStatus(
                user_id=user_id, active=False, status="none", current_period_end=0, product=None
            )
        return LicenseStatus(
            user_id=user_id,
            active=record.active,
            status=record.status or "none",
            current_period_end=record.current_period_end or 0,
            product=record.product or None,
        )
