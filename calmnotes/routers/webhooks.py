"""
Stripe Webhook Router
=====================

    POST /api/webhooks/stripe

Verifies the ``Stripe-Signature`` header against the raw request body
before anything is parsed. Unverified deliveries never reach the
reconciler. Handler failures answer 5xx so Stripe redelivers.
"""

import logging

from fastapi import APIRouter, Request

from calmnotes.services.billing_service import billing_service
from calmnotes.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()

reconciler = WebhookReconciler(period_end_lookup=billing_service.retrieve_subscription_period_end)


@router.post("/stripe")
async def stripe_webhook(request: Request):
    payload = await request.body()
    verified = billing_service.construct_event(payload, request.headers.get("stripe-signature"))
    result = reconciler.apply(verified)
    logger.info(
        "Stripe webhook handled: type=%s applied=%s detail=%s",
        result.event_type,
        result.applied,
        result.detail,
    )
    return {"received": True}
