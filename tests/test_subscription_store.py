"""
Subscription Record Store Tests
===============================

Coverage:
  - upsert creates, then overwrites in place on the same user
  - updates addressed by subscription id report whether a row matched
  - deletion drops the plan to free
"""

from datetime import datetime, timezone

import pytest

from calmnotes.core.errors import CalmNotesError
from calmnotes.services.subscription_store import (
    ACTIVE,
    CANCELED,
    PAST_DUE,
    SubscriptionStore,
)

PERIOD_END = datetime(2026, 4, 1, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return SubscriptionStore()


def _activate(store, sub_id="sub_1", user_id="user-1", plan="pro"):
    return store.upsert_by_subscription_id(
        subscription_id=sub_id,
        user_id=user_id,
        stripe_customer_id="cus_1",
        plan=plan,
        status=ACTIVE,
        current_period_end=PERIOD_END,
    )


class TestUpsert:
    def test_creates_record(self, store):
        state = _activate(store)
        assert state.subscription_id == "sub_1"
        assert state.plan == "pro"
        assert state.status == ACTIVE
        assert state.current_period_end == PERIOD_END
        assert store.get("user-1") == state

    def test_missing_user_reads_none(self, store):
        assert store.get("nobody") is None
        assert store.get_by_subscription_id("sub_missing") is None

    def test_second_checkout_replaces_subscription_id(self, store):
        _activate(store, sub_id="sub_old")
        state = _activate(store, sub_id="sub_new", plan="team")
        assert state.subscription_id == "sub_new"
        assert state.plan == "team"
        assert store.get_by_subscription_id("sub_old") is None
        assert store.get("user-1").subscription_id == "sub_new"

    def test_vanished_row_after_upsert_raises(self, store, mocker):
        mocker.patch.object(store, "get_by_subscription_id", return_value=None)
        with pytest.raises(CalmNotesError) as exc_info:
            _activate(store)
        assert exc_info.value.code == "DATABASE_UNAVAILABLE"

    def test_replay_is_idempotent(self, store):
        first = _activate(store)
        second = _activate(store)
        assert (first.plan, first.status, first.current_period_end) == (
            second.plan,
            second.status,
            second.current_period_end,
        )


class TestUpdates:
    def test_update_status_and_period_end(self, store):
        _activate(store)
        new_end = datetime(2026, 5, 1, tzinfo=timezone.utc)
        assert store.update_status_by_subscription_id("sub_1", PAST_DUE, current_period_end=new_end)
        state = store.get("user-1")
        assert state.status == PAST_DUE
        assert state.current_period_end == new_end

    def test_update_without_period_end_keeps_it(self, store):
        _activate(store)
        store.update_status_by_subscription_id("sub_1", ACTIVE)
        assert store.get("user-1").current_period_end == PERIOD_END

    def test_update_unknown_subscription_reports_false(self, store):
        assert store.update_status_by_subscription_id("sub_missing", ACTIVE) is False

    def test_mark_canceled_drops_to_free(self, store):
        _activate(store)
        assert store.mark_canceled_by_subscription_id("sub_1")
        state = store.get("user-1")
        assert state.status == CANCELED
        assert state.plan == "free"

    def test_mark_past_due_keeps_plan(self, store):
        _activate(store)
        assert store.mark_past_due_by_subscription_id("sub_1")
        state = store.get("user-1")
        assert state.status == PAST_DUE
        assert state.plan == "pro"

    def test_mark_unknown_subscription_reports_false(self, store):
        assert store.mark_canceled_by_subscription_id("sub_missing") is False
        assert store.mark_past_due_by_subscription_id("sub_missing") is False
