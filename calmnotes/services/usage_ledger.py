"""
Usage Ledger — Per-User Generation Counter
==========================================

PURPOSE:
    Tracks how many AI generations a user has consumed in the current
    30-day usage period.

    1. **current_usage()** — stored counter, or a logical zero record.
    2. **effective_usage()** — same, but first resets a stale period
       (30+ days old). Every gating read goes through this; there is no
       background job doing resets.
    3. **record_generation()** — +1 after a successful generation.
    4. **reset_for_new_period()** — {0, now}; called by the webhook
       reconciler when a subscription activates.

CONCURRENCY:
    Nothing is cached in-process. Increments and resets are single
    ``INSERT ... ON CONFLICT DO UPDATE`` / conditional ``UPDATE`` statements,
    so concurrent requests for the same user never lose an increment and a
    stale period is reset at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import update

from calmnotes.core.database import dialect_insert, get_session_context, sqlite_retry
from calmnotes.models.billing import UsageRecord

logger = logging.getLogger(__name__)

__all__ = [
    "USAGE_PERIOD",
    "UsageSnapshot",
    "UsageLedger",
    "usage_ledger",
]

USAGE_PERIOD = timedelta(days=30)

_usage = UsageRecord.__table__


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class UsageSnapshot:
    """Point-in-time view of a user's usage record."""
    user_id: str
    generations_count: int
    period_start: Optional[datetime]

    @classmethod
    def from_row(cls, row: UsageRecord) -> "UsageSnapshot":
        return cls(
            user_id=row.user_id,
            generations_count=row.generations_count,
            period_start=as_utc(row.period_start),
        )


class UsageLedger:
    """Per-user rolling generation counter backed by the ``usage`` table."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def current_usage(self, user_id: str) -> UsageSnapshot:
        """Stored record, or ``{0, None}`` when the user has never generated."""
        with get_session_context() as session:
            row = session.get(UsageRecord, user_id)
            if row is None:
                return UsageSnapshot(user_id=user_id, generations_count=0, period_start=None)
            return UsageSnapshot.from_row(row)

    def effective_usage(self, user_id: str) -> UsageSnapshot:
        """Current usage after applying the 30-day staleness reset."""
        now = self.now()
        cutoff = now - USAGE_PERIOD

        with get_session_context() as session:
            row = session.get(UsageRecord, user_id)
            if row is None:
                return UsageSnapshot(user_id=user_id, generations_count=0, period_start=None)

            if as_utc(row.period_start) > cutoff:
                return UsageSnapshot.from_row(row)
            previous_count = row.generations_count

            # Conditional on the stale period_start so concurrent readers
            # reset once; a loser re-reads the winner's fresh period.
            stmt = (
                update(_usage)
                .where(_usage.c.user_id == user_id)
                .where(_usage.c.period_start <= cutoff)
                .values(generations_count=0, period_start=now)
            )

            def _reset():
                try:
                    result = session.execute(stmt)
                    session.commit()
                except Exception:
                    session.rollback()
                    raise
                return result.rowcount

            reset_rows = sqlite_retry(_reset)
            if reset_rows:
                logger.info(
                    "Usage period expired, counter reset: user=%s previous_count=%d",
                    user_id,
                    previous_count,
                )

            session.expire_all()
            row = session.get(UsageRecord, user_id)
            return UsageSnapshot.from_row(row)

    def record_generation(self, user_id: str) -> UsageSnapshot:
        """Atomically count one successful generation.

        Creates ``{1, now}`` for a first-time user, otherwise increments and
        leaves ``period_start`` untouched.
        """
        now = self.now()
        stmt = dialect_insert(_usage).values(
            user_id=user_id,
            generations_count=1,
            period_start=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_usage.c.user_id],
            set_={"generations_count": _usage.c.generations_count + 1},
        )
        snapshot = self._execute_and_read(user_id, stmt)
        logger.info(
            "Generation recorded: user=%s count=%d",
            user_id,
            snapshot.generations_count,
        )
        return snapshot

    def reset_for_new_period(self, user_id: str) -> UsageSnapshot:
        """Force ``{0, now}`` (new subscription activated)."""
        now = self.now()
        stmt = dialect_insert(_usage).values(
            user_id=user_id,
            generations_count=0,
            period_start=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_usage.c.user_id],
            set_={"generations_count": 0, "period_start": now},
        )
        snapshot = self._execute_and_read(user_id, stmt)
        logger.info("Usage reset for new period: user=%s", user_id)
        return snapshot

    def _execute_and_read(self, user_id: str, stmt) -> UsageSnapshot:
        with get_session_context() as session:
            def _write():
                try:
                    session.execute(stmt)
                    session.commit()
                except Exception:
                    session.rollback()
                    raise

            sqlite_retry(_write)
            row = session.get(UsageRecord, user_id)
            return UsageSnapshot.from_row(row)


# Module-level singleton
usage_ledger = UsageLedger()
