"""
Billing Models
==============

SQLModel tables for persistent billing state:
- SubscriptionRecord: Stripe subscription mirror, one per user, keyed by
  the Stripe subscription id.
- UsageRecord: per-user generation counter for the current 30-day period.

Neither table is ever hard-deleted. A subscription deleted upstream is kept
with ``plan="free"`` and ``status="canceled"``.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionRecord(SQLModel, table=True):
    """Stripe subscription state for a user."""

    __tablename__ = "subscriptions"

    id: str = Field(primary_key=True, max_length=255)  # Stripe subscription id
    user_id: str = Field(unique=True, index=True, max_length=36, foreign_key="users.id")
    stripe_customer_id: str = Field(max_length=255)
    plan: str = Field(default="free", max_length=32)  # "free" | "pro" | "team"
    status: str = Field(default="active", max_length=32)  # "active" | "past_due" | "canceled" | "trialing"
    current_period_end: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class UsageRecord(SQLModel, table=True):
    """Generation counter for the user's current usage period."""

    __tablename__ = "usage"

    user_id: str = Field(primary_key=True, max_length=36, foreign_key="users.id")
    generations_count: int = Field(default=0)
    period_start: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
