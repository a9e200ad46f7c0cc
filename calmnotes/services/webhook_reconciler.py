"""
Webhook Reconciler — Stripe Lifecycle Events → Subscription State
=================================================================

PURPOSE:
    Applies Stripe subscription lifecycle events to the subscription store
    and the usage ledger:

    | Stripe event                    | Action                                        |
    |---------------------------------|-----------------------------------------------|
    | checkout.session.completed      | upsert subscription (active), reset usage     |
    | customer.subscription.updated   | map status, update status + period end        |
    | customer.subscription.deleted   | status=canceled, plan=free                    |
    | invoice.payment_failed          | status=past_due                               |

DELIVERY MODEL:
    Stripe delivers at-least-once and in no guaranteed order. Every handler
    is a conditional upsert/update, so a redelivered event only re-sets the
    fields it already set. Update/delete/payment-failed events for an
    unknown subscription are logged and dropped.

    A replayed checkout for the subscription id already stored for that user
    leaves the record and the usage ledger untouched, so it can neither undo
    a later past_due or canceled status nor reset usage a second time.

VERIFICATION:
    Only ``VerifiedWebhookEvent`` instances produced by ``verify_event()``
    (Stripe signature check against the webhook secret) are accepted by
    ``WebhookReconciler.apply()``; anything else raises
    ``UnverifiedEventError``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

import stripe

from calmnotes.core.errors import CalmNotesError
from calmnotes.services.plans import PLANS
from calmnotes.services.subscription_store import (
    ACTIVE,
    CANCELED,
    PAST_DUE,
    SubscriptionStore,
    subscription_store,
)
from calmnotes.services.usage_ledger import UsageLedger, usage_ledger

logger = logging.getLogger(__name__)

__all__ = [
    "WebhookEventType",
    "CheckoutCompleted",
    "SubscriptionUpdated",
    "SubscriptionDeleted",
    "InvoicePaymentFailed",
    "ReconcileResult",
    "VerifiedWebhookEvent",
    "UnverifiedEventError",
    "map_stripe_status",
    "parse_event",
    "verify_event",
    "WebhookReconciler",
]

DEFAULT_CHECKOUT_PLAN = "pro"


class WebhookEventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    user_id: str
    subscription_id: str
    customer_id: str
    plan: str
    type: WebhookEventType = WebhookEventType.CHECKOUT_COMPLETED


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription_id: str
    stripe_status: str
    current_period_end: Optional[datetime]
    type: WebhookEventType = WebhookEventType.SUBSCRIPTION_UPDATED


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: str
    type: WebhookEventType = WebhookEventType.SUBSCRIPTION_DELETED


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    subscription_id: str
    type: WebhookEventType = WebhookEventType.INVOICE_PAYMENT_FAILED


ReconcilerEvent = Union[CheckoutCompleted, SubscriptionUpdated, SubscriptionDeleted, InvoicePaymentFailed]


@dataclass(frozen=True)
class ReconcileResult:
    event_type: str
    applied: bool
    detail: str = ""


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

class UnverifiedEventError(Exception):
    """Raised when an event reaches the reconciler without signature verification."""


_VERIFIED = object()


class VerifiedWebhookEvent:
    """A Stripe event whose signature has been checked by ``verify_event()``."""

    __slots__ = ("event", "_seal")

    def __init__(self, event: Mapping[str, Any], seal: object = None):
        self.event = event
        self._seal = seal

    @property
    def is_verified(self) -> bool:
        return self._seal is _VERIFIED


def verify_event(payload: bytes, sig_header: Optional[str], secret: str) -> VerifiedWebhookEvent:
    """Check the ``Stripe-Signature`` header and parse the body as plain JSON.

    The event stays a dict: SDK ``StripeObject`` instances are not mappings.

    Raises:
        CalmNotesError: WEBHOOK_SIGNATURE_INVALID on a bad signature or
            unparseable payload.
    """
    try:
        stripe.WebhookSignature.verify_header(payload, sig_header or "", secret)
    except stripe.SignatureVerificationError as exc:
        raise CalmNotesError("WEBHOOK_SIGNATURE_INVALID", detail=f"Invalid signature: {exc}")
    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise CalmNotesError("WEBHOOK_SIGNATURE_INVALID", detail=f"Invalid payload: {exc}")
    if not isinstance(event, dict):
        raise CalmNotesError("WEBHOOK_SIGNATURE_INVALID", detail="Invalid payload: not a JSON object")
    return VerifiedWebhookEvent(event, seal=_VERIFIED)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def map_stripe_status(stripe_status: Optional[str]) -> str:
    """Map a Stripe subscription status onto ours. Unrecognized → canceled."""
    if stripe_status == "active":
        return ACTIVE
    if stripe_status == "past_due":
        return PAST_DUE
    return CANCELED


def _from_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def subscription_period_end(subscription: Mapping[str, Any]) -> Optional[datetime]:
    """``current_period_end`` of a Stripe subscription object.

    Newer Stripe API versions carry it on the subscription items only.
    """
    if subscription.get("current_period_end") is not None:
        return _from_timestamp(subscription["current_period_end"])
    items = (subscription.get("items") or {}).get("data") or []
    if items and items[0].get("current_period_end") is not None:
        return _from_timestamp(items[0]["current_period_end"])
    return None


def _invalid(event_id: str, reason: str) -> CalmNotesError:
    return CalmNotesError("WEBHOOK_PAYLOAD_INVALID", detail=reason, context={"event_id": event_id})


def _parse_checkout(event_id: str, obj: Mapping[str, Any]) -> CheckoutCompleted:
    metadata = obj.get("metadata") or {}
    user_id = metadata.get("userId")
    subscription_id = obj.get("subscription")
    if not user_id or not subscription_id:
        raise _invalid(event_id, "checkout session missing metadata.userId or subscription")
    plan = metadata.get("plan") or DEFAULT_CHECKOUT_PLAN
    if plan not in PLANS:
        raise _invalid(event_id, f"checkout session carries unknown plan {plan!r}")
    return CheckoutCompleted(
        event_id=event_id,
        user_id=user_id,
        subscription_id=subscription_id,
        customer_id=obj.get("customer") or "",
        plan=plan,
    )


def _parse_subscription_updated(event_id: str, obj: Mapping[str, Any]) -> SubscriptionUpdated:
    if not obj.get("id"):
        raise _invalid(event_id, "subscription object missing id")
    return SubscriptionUpdated(
        event_id=event_id,
        subscription_id=obj["id"],
        stripe_status=obj.get("status") or "",
        current_period_end=subscription_period_end(obj),
    )


def _parse_subscription_deleted(event_id: str, obj: Mapping[str, Any]) -> SubscriptionDeleted:
    if not obj.get("id"):
        raise _invalid(event_id, "subscription object missing id")
    return SubscriptionDeleted(event_id=event_id, subscription_id=obj["id"])


def _parse_invoice_failed(event_id: str, obj: Mapping[str, Any]) -> InvoicePaymentFailed:
    subscription_id = obj.get("subscription")
    if not subscription_id:
        raise _invalid(event_id, "invoice missing subscription")
    return InvoicePaymentFailed(event_id=event_id, subscription_id=subscription_id)


_PARSERS: Dict[str, Callable[[str, Mapping[str, Any]], ReconcilerEvent]] = {
    WebhookEventType.CHECKOUT_COMPLETED.value: _parse_checkout,
    WebhookEventType.SUBSCRIPTION_UPDATED.value: _parse_subscription_updated,
    WebhookEventType.SUBSCRIPTION_DELETED.value: _parse_subscription_deleted,
    WebhookEventType.INVOICE_PAYMENT_FAILED.value: _parse_invoice_failed,
}


def parse_event(event: Mapping[str, Any]) -> Optional[ReconcilerEvent]:
    """Translate a raw Stripe event into a typed variant.

    Returns None for event types the reconciler does not handle.

    Raises:
        CalmNotesError: WEBHOOK_PAYLOAD_INVALID when required fields are missing.
    """
    parser = _PARSERS.get(event.get("type"))
    if parser is None:
        return None
    event_id = event.get("id") or ""
    obj = (event.get("data") or {}).get("object")
    if obj is None:
        raise _invalid(event_id, "event missing data.object")
    return parser(event_id, obj)


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

class WebhookReconciler:
    """Applies verified Stripe events to the subscription store and usage ledger.

    ``period_end_lookup`` fetches ``current_period_end`` for a subscription id
    from Stripe (checkout sessions do not carry it).
    """

    def __init__(
        self,
        store: SubscriptionStore = subscription_store,
        ledger: UsageLedger = usage_ledger,
        period_end_lookup: Optional[Callable[[str], Optional[datetime]]] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._period_end_lookup = period_end_lookup
        self._handlers = {
            CheckoutCompleted: self._on_checkout_completed,
            SubscriptionUpdated: self._on_subscription_updated,
            SubscriptionDeleted: self._on_subscription_deleted,
            InvoicePaymentFailed: self._on_invoice_payment_failed,
        }

    def apply(self, verified: VerifiedWebhookEvent) -> ReconcileResult:
        """Single entry point for all webhook events."""
        if not isinstance(verified, VerifiedWebhookEvent) or not verified.is_verified:
            raise UnverifiedEventError("Webhook event was not signature-verified")

        raw_type = verified.event.get("type") or "unknown"
        parsed = parse_event(verified.event)
        if parsed is None:
            logger.debug("Ignoring unhandled Stripe event type: %s", raw_type)
            return ReconcileResult(event_type=raw_type, applied=False, detail="ignored")

        logger.info(
            "Reconciling Stripe event: id=%s type=%s",
            parsed.event_id,
            parsed.type.value,
        )
        return self._handlers[type(parsed)](parsed)

    # ------------------------------------------------------------------

    def _on_checkout_completed(self, event: CheckoutCompleted) -> ReconcileResult:
        existing = self._store.get(event.user_id)
        replay = existing is not None and existing.subscription_id == event.subscription_id

        if replay:
            # Later lifecycle events own the status from here on.
            if existing.status == CANCELED:
                logger.info(
                    "Checkout replay for canceled subscription ignored: id=%s user=%s",
                    event.subscription_id,
                    event.user_id,
                )
                return ReconcileResult(event.type.value, applied=False, detail="subscription_canceled")
            logger.info(
                "Checkout replay ignored: id=%s user=%s status=%s",
                event.subscription_id,
                event.user_id,
                existing.status,
            )
            return ReconcileResult(event.type.value, applied=False, detail="replay")

        period_end = None
        if self._period_end_lookup is not None:
            period_end = self._period_end_lookup(event.subscription_id)

        self._store.upsert_by_subscription_id(
            subscription_id=event.subscription_id,
            user_id=event.user_id,
            stripe_customer_id=event.customer_id,
            plan=event.plan,
            status=ACTIVE,
            current_period_end=period_end,
        )

        self._ledger.reset_for_new_period(event.user_id)
        return ReconcileResult(event.type.value, applied=True, detail="activated")

    def _on_subscription_updated(self, event: SubscriptionUpdated) -> ReconcileResult:
        status = map_stripe_status(event.stripe_status)
        if status == CANCELED and event.stripe_status != "canceled":
            logger.warning(
                "Unrecognized Stripe subscription status %r mapped to canceled: id=%s",
                event.stripe_status,
                event.subscription_id,
            )
        matched = self._store.update_status_by_subscription_id(
            event.subscription_id,
            status,
            current_period_end=event.current_period_end,
        )
        return self._result(event, matched)

    def _on_subscription_deleted(self, event: SubscriptionDeleted) -> ReconcileResult:
        matched = self._store.mark_canceled_by_subscription_id(event.subscription_id)
        return self._result(event, matched)

    def _on_invoice_payment_failed(self, event: InvoicePaymentFailed) -> ReconcileResult:
        matched = self._store.mark_past_due_by_subscription_id(event.subscription_id)
        return self._result(event, matched)

    def _result(self, event: ReconcilerEvent, matched: bool) -> ReconcileResult:
        if not matched:
            logger.warning(
                "No subscription record for Stripe event, dropped: id=%s type=%s subscription=%s",
                event.event_id,
                event.type.value,
                event.subscription_id,
            )
            return ReconcileResult(event.type.value, applied=False, detail="no_matching_subscription")
        return ReconcileResult(event.type.value, applied=True)
