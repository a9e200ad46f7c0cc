"""
Plan Registry
=============

Static mapping from plan key to monthly generation quota and Stripe price id.
Built once at import time; read-only afterwards.

An unknown plan key resolves to the ``free`` definition, so a subscription
row carrying a stale or corrupted plan degrades to the most restrictive quota.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from calmnotes.config import settings

__all__ = [
    "PlanDefinition",
    "PLANS",
    "DEFAULT_PLAN",
    "get_plan",
    "limit_for",
    "price_id_for",
    "is_unlimited",
]

DEFAULT_PLAN = "free"
FREE_GENERATIONS_PER_MONTH = 10


@dataclass(frozen=True)
class PlanDefinition:
    key: str
    name: str
    # None means unlimited
    monthly_generation_limit: Optional[int]
    price_id: Optional[str] = None


def _build_registry() -> Mapping[str, PlanDefinition]:
    plans = {
        "free": PlanDefinition(
            key="free",
            name="Free",
            monthly_generation_limit=FREE_GENERATIONS_PER_MONTH,
            price_id=None,
        ),
        "pro": PlanDefinition(
            key="pro",
            name="Pro",
            monthly_generation_limit=None,
            price_id=settings.stripe_price_id_pro,
        ),
        "team": PlanDefinition(
            key="team",
            name="Team",
            monthly_generation_limit=None,
            price_id=settings.stripe_price_id_team,
        ),
    }
    if plans[DEFAULT_PLAN].monthly_generation_limit is None:
        raise RuntimeError(f"Plan {DEFAULT_PLAN!r} must have a finite generation limit")
    return MappingProxyType(plans)


PLANS: Mapping[str, PlanDefinition] = _build_registry()


def get_plan(plan_key: Optional[str]) -> PlanDefinition:
    """Return the definition for *plan_key*, or ``free`` if unknown."""
    return PLANS.get(plan_key or DEFAULT_PLAN, PLANS[DEFAULT_PLAN])


def limit_for(plan_key: Optional[str]) -> Optional[int]:
    """Monthly generation quota for a plan. ``None`` means unlimited."""
    return get_plan(plan_key).monthly_generation_limit


def price_id_for(plan_key: Optional[str]) -> Optional[str]:
    """Stripe price id for a plan, or None when the plan is not purchasable.

    Unlike ``limit_for``, unknown keys do not fall back: checkout for an
    unknown plan must fail rather than silently bill for another plan.
    """
    plan = PLANS.get(plan_key or "")
    return plan.price_id if plan else None


def is_unlimited(limit: Optional[int]) -> bool:
    return limit is None
