"""
Subscription Record Store
=========================

Persists each user's current plan / status / period end, mirrored from
Stripe. Rows are addressed by user id for reads and by Stripe subscription
id for webhook-driven writes (update/delete events only carry that id).

``user_id`` is unique, so "the" subscription of a user is always a single
row; a new checkout for the same user overwrites it in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlmodel import select

from calmnotes.core.database import dialect_insert, get_session_context, sqlite_retry
from calmnotes.core.errors import CalmNotesError
from calmnotes.models.billing import SubscriptionRecord
from calmnotes.services.plans import DEFAULT_PLAN
from calmnotes.services.usage_ledger import as_utc

logger = logging.getLogger(__name__)

__all__ = [
    "ACTIVE",
    "PAST_DUE",
    "CANCELED",
    "TRIALING",
    "SUBSCRIPTION_STATUSES",
    "SubscriptionState",
    "SubscriptionStore",
    "subscription_store",
]

# Subscription statuses
ACTIVE = "active"
PAST_DUE = "past_due"
CANCELED = "canceled"
TRIALING = "trialing"

SUBSCRIPTION_STATUSES = frozenset({ACTIVE, PAST_DUE, CANCELED, TRIALING})

_subscriptions = SubscriptionRecord.__table__


@dataclass(frozen=True)
class SubscriptionState:
    """Detached view of a ``subscriptions`` row."""
    subscription_id: str
    user_id: str
    stripe_customer_id: str
    plan: str
    status: str
    current_period_end: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: SubscriptionRecord) -> "SubscriptionState":
        return cls(
            subscription_id=row.id,
            user_id=row.user_id,
            stripe_customer_id=row.stripe_customer_id,
            plan=row.plan,
            status=row.status,
            current_period_end=as_utc(row.current_period_end),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStore:
    """Read/write access to the ``subscriptions`` table."""

    def get(self, user_id: str) -> Optional[SubscriptionState]:
        with get_session_context() as session:
            row = session.exec(
                select(SubscriptionRecord).where(SubscriptionRecord.user_id == user_id)
            ).first()
            return SubscriptionState.from_row(row) if row else None

    def get_by_subscription_id(self, subscription_id: str) -> Optional[SubscriptionState]:
        with get_session_context() as session:
            row = session.get(SubscriptionRecord, subscription_id)
            return SubscriptionState.from_row(row) if row else None

    def upsert_by_subscription_id(
        self,
        subscription_id: str,
        user_id: str,
        stripe_customer_id: str,
        plan: str,
        status: str,
        current_period_end: Optional[datetime] = None,
    ) -> SubscriptionState:
        """Insert the user's subscription, or overwrite it on ``user_id`` conflict.

        The stored subscription id becomes *subscription_id* either way.
        """
        now = _utcnow()
        stmt = dialect_insert(_subscriptions).values(
            id=subscription_id,
            user_id=user_id,
            stripe_customer_id=stripe_customer_id,
            plan=plan,
            status=status,
            current_period_end=current_period_end,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_subscriptions.c.user_id],
            set_={
                "id": subscription_id,
                "stripe_customer_id": stripe_customer_id,
                "plan": plan,
                "status": status,
                "current_period_end": current_period_end,
                "updated_at": now,
            },
        )
        self._write(stmt)
        logger.info(
            "Subscription upserted: id=%s user=%s plan=%s status=%s",
            subscription_id,
            user_id,
            plan,
            status,
        )
        state = self.get_by_subscription_id(subscription_id)
        if state is None:
            raise CalmNotesError("DATABASE_UNAVAILABLE", detail=f"Subscription {subscription_id} missing after upsert")
        return state

    def update_status_by_subscription_id(
        self,
        subscription_id: str,
        status: str,
        current_period_end: Optional[datetime] = None,
    ) -> bool:
        """Set status (and period end when given). Returns False if no row matched."""
        values = {"status": status, "updated_at": _utcnow()}
        if current_period_end is not None:
            values["current_period_end"] = current_period_end
        return self._update(subscription_id, values)

    def mark_canceled_by_subscription_id(self, subscription_id: str) -> bool:
        """Upstream deletion: drop the user back to the free plan."""
        return self._update(
            subscription_id,
            {"status": CANCELED, "plan": DEFAULT_PLAN, "updated_at": _utcnow()},
        )

    def mark_past_due_by_subscription_id(self, subscription_id: str) -> bool:
        return self._update(subscription_id, {"status": PAST_DUE, "updated_at": _utcnow()})

    # ------------------------------------------------------------------

    def _update(self, subscription_id: str, values: dict) -> bool:
        stmt = (
            update(_subscriptions)
            .where(_subscriptions.c.id == subscription_id)
            .values(**values)
        )
        matched = self._write(stmt)
        if matched:
            logger.info(
                "Subscription updated: id=%s fields=%s",
                subscription_id,
                sorted(k for k in values if k != "updated_at"),
            )
        return bool(matched)

    def _write(self, stmt) -> int:
        with get_session_context() as session:
            def _execute():
                try:
                    result = session.execute(stmt)
                    session.commit()
                except Exception:
                    session.rollback()
                    raise
                return result.rowcount

            return sqlite_retry(_execute)


# Module-level singleton
subscription_store = SubscriptionStore()
