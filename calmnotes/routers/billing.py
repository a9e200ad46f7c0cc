"""
Billing Router
==============

    GET  /api/billing/plans         — Plan catalog (limits, purchasability)
    GET  /api/billing/subscription  — Current plan, status and usage
    POST /api/billing/checkout      — Stripe Checkout URL for ``pro``/``team``
    POST /api/billing/portal        — Stripe billing-portal URL
"""

import logging

from fastapi import APIRouter, Depends, Request

from calmnotes.auth.session_auth import CurrentUser, get_current_user
from calmnotes.config import settings
from calmnotes.models.schemas import (
    CheckoutRequest,
    PlanResponse,
    PlansResponse,
    RedirectResponse,
    SubscriptionResponse,
    UsageResponse,
)
from calmnotes.services.billing_service import billing_service
from calmnotes.services.plans import DEFAULT_PLAN, PLANS, get_plan
from calmnotes.services.subscription_store import ACTIVE, subscription_store
from calmnotes.services.usage_ledger import usage_ledger

logger = logging.getLogger(__name__)

router = APIRouter()


def _base_url(request: Request) -> str:
    return (settings.base_url or str(request.base_url)).rstrip("/")


@router.get("/plans", response_model=PlansResponse)
async def list_plans():
    return PlansResponse(
        plans=[
            PlanResponse(
                key=plan.key,
                name=plan.name,
                monthly_generation_limit=plan.monthly_generation_limit,
                purchasable=bool(plan.price_id),
            )
            for plan in PLANS.values()
        ]
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(user: CurrentUser = Depends(get_current_user)):
    """Plan/status mirror plus usage for the current period (stale periods reset on read)."""
    subscription = subscription_store.get(user.id)
    usage = usage_ledger.effective_usage(user.id)
    plan = get_plan(subscription.plan if subscription else DEFAULT_PLAN)

    return SubscriptionResponse(
        plan=plan.key,
        status=subscription.status if subscription else ACTIVE,
        current_period_end=subscription.current_period_end if subscription else None,
        usage=UsageResponse(
            generations=usage.generations_count,
            limit=plan.monthly_generation_limit,
            period_start=usage.period_start,
        ),
    )


@router.post("/checkout", response_model=RedirectResponse)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
):
    session = billing_service.create_checkout_session(
        user_id=user.id,
        email=user.email,
        plan=body.plan,
        base_url=_base_url(request),
        name=user.display_name,
    )
    return RedirectResponse(url=session.url)


@router.post("/portal", response_model=RedirectResponse)
async def create_portal(request: Request, user: CurrentUser = Depends(get_current_user)):
    url = billing_service.create_portal_session(user.id, base_url=_base_url(request))
    return RedirectResponse(url=url)
