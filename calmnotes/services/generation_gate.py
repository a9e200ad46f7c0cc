"""
Generation Gate
===============

Allow/deny decision taken before every AI generation, plus post-hoc usage
recording once a generation has succeeded.

Check-then-record is not atomic: two concurrent requests at ``limit - 1``
may both pass and both record, overshooting by one. Recorded usage is
never rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from calmnotes.core.errors import CalmNotesError
from calmnotes.services.plans import DEFAULT_PLAN, is_unlimited, limit_for
from calmnotes.services.subscription_store import SubscriptionStore, subscription_store
from calmnotes.services.usage_ledger import UsageLedger, UsageSnapshot, usage_ledger

logger = logging.getLogger(__name__)

USAGE_LIMIT_EXCEEDED = "USAGE_LIMIT_EXCEEDED"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    plan: str
    limit: Optional[int]
    generations_count: int
    reason: Optional[str] = None


class GenerationGate:
    def __init__(
        self,
        store: SubscriptionStore = subscription_store,
        ledger: UsageLedger = usage_ledger,
    ):
        self._store = store
        self._ledger = ledger

    def authorize(self, user_id: str) -> GateDecision:
        """Decide whether *user_id* may run one more generation.

        Store errors propagate; a failed read never turns into an allow.
        """
        subscription = self._store.get(user_id)
        plan = subscription.plan if subscription is not None else DEFAULT_PLAN
        limit = limit_for(plan)
        usage = self._ledger.effective_usage(user_id)

        if not is_unlimited(limit) and usage.generations_count >= limit:
            logger.info(
                "Generation denied: user=%s plan=%s count=%d limit=%d",
                user_id,
                plan,
                usage.generations_count,
                limit,
            )
            return GateDecision(
                allowed=False,
                plan=plan,
                limit=limit,
                generations_count=usage.generations_count,
                reason=USAGE_LIMIT_EXCEEDED,
            )

        return GateDecision(
            allowed=True,
            plan=plan,
            limit=limit,
            generations_count=usage.generations_count,
        )

    def require(self, user_id: str) -> GateDecision:
        """``authorize`` that raises ``USAGE_LIMIT_EXCEEDED`` on deny."""
        decision = self.authorize(user_id)
        if not decision.allowed:
            raise CalmNotesError(
                USAGE_LIMIT_EXCEEDED,
                detail=f"{decision.generations_count}/{decision.limit} generations used",
                context={"limit": decision.limit, "plan": decision.plan},
            )
        return decision

    def record_success(self, user_id: str) -> UsageSnapshot:
        return self._ledger.record_generation(user_id)


generation_gate = GenerationGate()
