"""
Billing Service — Stripe Checkout, Portal & Webhook Verification
================================================================

PURPOSE:
    Thin wrapper around the Stripe SDK for the subscription flow:
    1. **create_checkout_session()** — hosted Checkout for a paid plan,
       tagged with ``metadata.userId`` / ``metadata.plan`` so the webhook
       reconciler can attribute the subscription.
    2. **create_portal_session()** — Stripe billing portal for an existing
       customer.
    3. **retrieve_subscription_period_end()** — ``current_period_end`` of a
       subscription (checkout sessions do not carry it).
    4. **construct_event()** — verifies a webhook delivery against the
       signing secret and returns a ``VerifiedWebhookEvent``.

CONFIGURATION (env vars with CALMNOTES_ prefix):
    CALMNOTES_STRIPE_SECRET_KEY        — Stripe secret API key
    CALMNOTES_STRIPE_WEBHOOK_SECRET    — Stripe webhook signing secret
    CALMNOTES_STRIPE_PRICE_ID_PRO      — price for the ``pro`` plan
    CALMNOTES_STRIPE_PRICE_ID_TEAM     — price for the ``team`` plan
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import stripe

from calmnotes.config import settings
from calmnotes.core.errors import CalmNotesError
from calmnotes.services.plans import price_id_for
from calmnotes.services.subscription_store import SubscriptionStore, subscription_store
from calmnotes.services.webhook_reconciler import (
    VerifiedWebhookEvent,
    subscription_period_end,
    verify_event,
)

logger = logging.getLogger(__name__)

__all__ = [
    "BillingService",
    "CheckoutSession",
    "billing_service",
]


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


class BillingService:
    """Stripe operations for checkout, portal and webhook verification."""

    def __init__(self, store: SubscriptionStore = subscription_store):
        self._store = store

    @property
    def configured(self) -> bool:
        """Check if Stripe is properly configured."""
        return bool(settings.stripe_secret_key)

    def _client(self):
        if not self.configured:
            raise CalmNotesError("BILLING_NOT_CONFIGURED")
        stripe.api_key = settings.stripe_secret_key
        return stripe

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def get_or_create_customer(
        self,
        user_id: str,
        email: str,
        name: Optional[str] = None,
    ) -> str:
        """Reuse the customer id already on the user's subscription, else create one."""
        existing = self._store.get(user_id)
        if existing is not None and existing.stripe_customer_id:
            return existing.stripe_customer_id

        client = self._client()
        params = {"email": email, "metadata": {"userId": user_id}}
        if name:
            params["name"] = name
        try:
            customer = client.Customer.create(**params)
        except stripe.StripeError as exc:
            logger.error("Stripe customer creation failed: user=%s error=%s", user_id, exc)
            raise CalmNotesError("BILLING_PROVIDER_ERROR", detail=str(exc))

        logger.info("Stripe customer created: user=%s customer=%s", user_id, customer.id)
        return customer.id

    # ------------------------------------------------------------------
    # Checkout / portal
    # ------------------------------------------------------------------

    def create_checkout_session(
        self,
        user_id: str,
        email: str,
        plan: str,
        base_url: str,
        name: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a subscription-mode Checkout session for *plan*.

        Raises:
            CalmNotesError: BILLING_NOT_CONFIGURED, BILLING_PLAN_INVALID
                (unknown plan or no price configured), BILLING_PROVIDER_ERROR.
        """
        client = self._client()
        price_id = price_id_for(plan)
        if not price_id:
            raise CalmNotesError("BILLING_PLAN_INVALID", context={"plan": plan})

        customer_id = self.get_or_create_customer(user_id, email, name=name)
        try:
            session = client.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=f"{base_url}/settings?billing=success",
                cancel_url=f"{base_url}/pricing",
                metadata={"userId": user_id, "plan": plan},
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout creation failed: user=%s error=%s", user_id, exc)
            raise CalmNotesError("BILLING_PROVIDER_ERROR", detail=str(exc))

        logger.info("Checkout session created: user=%s plan=%s session=%s", user_id, plan, session.id)
        return CheckoutSession(session_id=session.id, url=session.url)

    def create_portal_session(self, user_id: str, base_url: str) -> str:
        """Billing-portal URL for the user's Stripe customer."""
        client = self._client()
        existing = self._store.get(user_id)
        if existing is None or not existing.stripe_customer_id:
            raise CalmNotesError("BILLING_ACCOUNT_MISSING")

        try:
            session = client.billing_portal.Session.create(
                customer=existing.stripe_customer_id,
                return_url=f"{base_url}/settings",
            )
        except stripe.StripeError as exc:
            logger.error("Stripe portal creation failed: user=%s error=%s", user_id, exc)
            raise CalmNotesError("BILLING_PROVIDER_ERROR", detail=str(exc))
        return session.url

    def retrieve_subscription_period_end(self, subscription_id: str) -> Optional[datetime]:
        """``current_period_end`` of *subscription_id*.

        Stripe errors propagate so the webhook answers 5xx and Stripe redelivers.
        """
        client = self._client()
        subscription = client.Subscription.retrieve(subscription_id)
        return subscription_period_end(subscription.to_dict())

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> VerifiedWebhookEvent:
        """
        Verify a webhook delivery.

        Raises:
            CalmNotesError: WEBHOOK_NOT_CONFIGURED when no signing secret is set,
                WEBHOOK_SIGNATURE_INVALID on a bad signature or payload.
        """
        if not settings.stripe_webhook_secret:
            raise CalmNotesError("WEBHOOK_NOT_CONFIGURED")
        return verify_event(payload, sig_header, settings.stripe_webhook_secret)


# Module-level singleton
billing_service = BillingService()
