"""
Webhook Reconciler Tests
========================

Coverage:
  - signature verification gate (unsigned / tampered events are refused)
  - checkout activation: upsert + usage reset, replays leave the record alone
  - status mapping (active / past_due / canceled / anything else → canceled)
  - deletion and payment failure, including unknown subscriptions
  - payload validation for required fields
  - end-to-end lifecycle: checkout → update → delete
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from calmnotes.core.errors import CalmNotesError
from calmnotes.services.subscription_store import ACTIVE, CANCELED, PAST_DUE, SubscriptionStore
from calmnotes.services.usage_ledger import UsageLedger
from calmnotes.services.webhook_reconciler import (
    VerifiedWebhookEvent,
    UnverifiedEventError,
    WebhookReconciler,
    map_stripe_status,
    parse_event,
    verify_event,
)

PERIOD_END = datetime(2026, 4, 1, tzinfo=timezone.utc)
PERIOD_END_TS = int(PERIOD_END.timestamp())


@pytest.fixture
def store():
    return SubscriptionStore()


@pytest.fixture
def ledger():
    return UsageLedger()


@pytest.fixture
def period_end_lookup():
    return MagicMock(return_value=PERIOD_END)


@pytest.fixture
def reconciler(store, ledger, period_end_lookup):
    return WebhookReconciler(store=store, ledger=ledger, period_end_lookup=period_end_lookup)


def checkout(user_id="user-1", sub_id="sub_1", plan="pro"):
    metadata = {"userId": user_id}
    if plan is not None:
        metadata["plan"] = plan
    return {
        "id": "cs_test",
        "object": "checkout.session",
        "customer": "cus_1",
        "subscription": sub_id,
        "metadata": metadata,
    }


def subscription(sub_id="sub_1", status="active", period_end=PERIOD_END_TS):
    return {"id": sub_id, "object": "subscription", "status": status, "current_period_end": period_end}


class TestVerification:
    def test_unverified_event_is_refused(self, reconciler):
        forged = VerifiedWebhookEvent({"type": "checkout.session.completed"})
        with pytest.raises(UnverifiedEventError):
            reconciler.apply(forged)

    def test_raw_dict_is_refused(self, reconciler):
        with pytest.raises(UnverifiedEventError):
            reconciler.apply({"type": "customer.subscription.deleted"})

    def test_bad_signature_is_rejected(self):
        with pytest.raises(CalmNotesError) as exc_info:
            verify_event(b'{"id": "evt_1"}', "t=1,v1=deadbeef", "whsec_test_calmnotes")
        assert exc_info.value.code == "WEBHOOK_SIGNATURE_INVALID"

    def test_missing_signature_is_rejected(self):
        with pytest.raises(CalmNotesError) as exc_info:
            verify_event(b'{"id": "evt_1"}', None, "whsec_test_calmnotes")
        assert exc_info.value.code == "WEBHOOK_SIGNATURE_INVALID"

    def test_signed_event_is_verified(self, verified):
        event = verified("customer.subscription.deleted", subscription())
        assert event.is_verified

    def test_verified_event_is_a_plain_dict(self, verified):
        event = verified("checkout.session.completed", checkout())
        assert type(event.event) is dict
        assert event.event["data"]["object"]["metadata"]["userId"] == "user-1"

    def test_malformed_json_is_rejected(self, sign):
        payload = b"not json"
        with pytest.raises(CalmNotesError) as exc_info:
            verify_event(payload, sign(payload), "whsec_test_calmnotes")
        assert exc_info.value.code == "WEBHOOK_SIGNATURE_INVALID"


class TestStatusMapping:
    @pytest.mark.parametrize(
        "stripe_status,expected",
        [
            ("active", ACTIVE),
            ("past_due", PAST_DUE),
            ("canceled", CANCELED),
            ("unpaid", CANCELED),
            ("incomplete_expired", CANCELED),
            ("trialing", CANCELED),
            (None, CANCELED),
        ],
    )
    def test_mapping(self, stripe_status, expected):
        assert map_stripe_status(stripe_status) == expected


class TestParsing:
    def test_unknown_event_type_is_ignored(self):
        assert parse_event({"type": "customer.created", "data": {"object": {}}}) is None

    def test_checkout_without_user_is_invalid(self):
        obj = checkout()
        obj["metadata"] = {}
        with pytest.raises(CalmNotesError) as exc_info:
            parse_event({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": obj}})
        assert exc_info.value.code == "WEBHOOK_PAYLOAD_INVALID"

    def test_checkout_without_subscription_is_invalid(self):
        obj = checkout(sub_id=None)
        with pytest.raises(CalmNotesError):
            parse_event({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": obj}})

    def test_checkout_with_unknown_plan_is_invalid(self):
        with pytest.raises(CalmNotesError):
            parse_event(
                {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": checkout(plan="gold")}}
            )

    def test_checkout_plan_defaults_to_pro(self):
        parsed = parse_event(
            {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": checkout(plan=None)}}
        )
        assert parsed.plan == "pro"

    def test_payment_failed_without_subscription_is_invalid(self):
        with pytest.raises(CalmNotesError):
            parse_event({"id": "evt_1", "type": "invoice.payment_failed", "data": {"object": {"id": "in_1"}}})

    def test_period_end_read_from_subscription_items(self):
        obj = {"id": "sub_1", "status": "active", "items": {"data": [{"current_period_end": PERIOD_END_TS}]}}
        parsed = parse_event({"id": "evt_1", "type": "customer.subscription.updated", "data": {"object": obj}})
        assert parsed.current_period_end == PERIOD_END


class TestCheckoutCompleted:
    def test_creates_active_subscription(self, reconciler, store, verified, period_end_lookup):
        result = reconciler.apply(verified("checkout.session.completed", checkout(plan="team")))

        assert result.applied
        state = store.get("user-1")
        assert state.subscription_id == "sub_1"
        assert state.stripe_customer_id == "cus_1"
        assert state.plan == "team"
        assert state.status == ACTIVE
        assert state.current_period_end == PERIOD_END
        period_end_lookup.assert_called_once_with("sub_1")

    def test_resets_usage(self, reconciler, ledger, verified):
        for _ in range(10):
            ledger.record_generation("user-1")

        reconciler.apply(verified("checkout.session.completed", checkout()))

        assert ledger.current_usage("user-1").generations_count == 0

    def test_replay_does_not_reset_usage_again(self, reconciler, ledger, store, verified):
        event = verified("checkout.session.completed", checkout())
        reconciler.apply(event)
        ledger.record_generation("user-1")
        ledger.record_generation("user-1")

        result = reconciler.apply(event)

        assert not result.applied
        assert result.detail == "replay"
        assert ledger.current_usage("user-1").generations_count == 2
        assert store.get("user-1").status == ACTIVE

    def test_replay_after_payment_failure_keeps_past_due(self, reconciler, store, verified, period_end_lookup):
        event = verified("checkout.session.completed", checkout())
        reconciler.apply(event)
        reconciler.apply(verified("invoice.payment_failed", {"id": "in_1", "subscription": "sub_1"}))

        result = reconciler.apply(event)

        assert not result.applied
        state = store.get("user-1")
        assert state.status == PAST_DUE
        assert state.plan == "pro"
        period_end_lookup.assert_called_once_with("sub_1")

    def test_new_subscription_for_same_user_resets_usage(self, reconciler, ledger, store, verified):
        reconciler.apply(verified("checkout.session.completed", checkout(sub_id="sub_old")))
        ledger.record_generation("user-1")

        reconciler.apply(verified("checkout.session.completed", checkout(sub_id="sub_new")))

        assert store.get("user-1").subscription_id == "sub_new"
        assert ledger.current_usage("user-1").generations_count == 0

    def test_stale_replay_does_not_resurrect_canceled_subscription(self, reconciler, store, verified):
        reconciler.apply(verified("checkout.session.completed", checkout()))
        reconciler.apply(verified("customer.subscription.deleted", subscription()))

        result = reconciler.apply(verified("checkout.session.completed", checkout()))

        assert not result.applied
        state = store.get("user-1")
        assert state.status == CANCELED
        assert state.plan == "free"

    def test_period_end_lookup_failure_propagates(self, store, ledger, verified):
        failing = WebhookReconciler(
            store=store,
            ledger=ledger,
            period_end_lookup=MagicMock(side_effect=RuntimeError("stripe down")),
        )
        with pytest.raises(RuntimeError):
            failing.apply(verified("checkout.session.completed", checkout()))
        assert store.get("user-1") is None


class TestSubscriptionUpdated:
    @pytest.fixture(autouse=True)
    def _active(self, reconciler, verified):
        reconciler.apply(verified("checkout.session.completed", checkout()))

    def test_status_and_period_end_updated(self, reconciler, store, verified):
        new_end = PERIOD_END + timedelta(days=30)
        reconciler.apply(
            verified("customer.subscription.updated", subscription(status="past_due", period_end=int(new_end.timestamp())))
        )
        state = store.get("user-1")
        assert state.status == PAST_DUE
        assert state.current_period_end == new_end

    def test_unrecognized_status_maps_to_canceled(self, reconciler, store, verified):
        reconciler.apply(verified("customer.subscription.updated", subscription(status="unpaid")))
        assert store.get("user-1").status == CANCELED

    def test_unknown_subscription_is_dropped(self, reconciler, store, verified):
        result = reconciler.apply(verified("customer.subscription.updated", subscription(sub_id="sub_other")))
        assert not result.applied
        assert store.get_by_subscription_id("sub_other") is None
        assert store.get("user-1").status == ACTIVE

    def test_replay_is_idempotent(self, reconciler, store, verified):
        event = verified("customer.subscription.updated", subscription(status="past_due"))
        reconciler.apply(event)
        first = store.get("user-1")
        reconciler.apply(event)
        second = store.get("user-1")
        assert (first.status, first.plan, first.current_period_end) == (
            second.status,
            second.plan,
            second.current_period_end,
        )


class TestSubscriptionDeleted:
    def test_cancels_and_drops_to_free(self, reconciler, store, verified):
        reconciler.apply(verified("checkout.session.completed", checkout()))
        reconciler.apply(verified("customer.subscription.deleted", subscription(status="canceled")))
        state = store.get("user-1")
        assert state.status == CANCELED
        assert state.plan == "free"

    def test_unknown_subscription_creates_nothing(self, reconciler, store, verified):
        result = reconciler.apply(verified("customer.subscription.deleted", subscription(sub_id="sub_ghost")))
        assert not result.applied
        assert store.get_by_subscription_id("sub_ghost") is None


class TestInvoicePaymentFailed:
    def test_marks_past_due(self, reconciler, store, verified):
        reconciler.apply(verified("checkout.session.completed", checkout()))
        reconciler.apply(verified("invoice.payment_failed", {"id": "in_1", "subscription": "sub_1"}))
        state = store.get("user-1")
        assert state.status == PAST_DUE
        assert state.plan == "pro"

    def test_unknown_subscription_is_dropped(self, reconciler, verified):
        result = reconciler.apply(verified("invoice.payment_failed", {"id": "in_1", "subscription": "sub_ghost"}))
        assert not result.applied


class TestUnhandledEvents:
    def test_other_event_types_are_acknowledged(self, reconciler, verified):
        result = reconciler.apply(verified("customer.created", {"id": "cus_1"}))
        assert not result.applied
        assert result.detail == "ignored"


class TestLifecycle:
    def test_checkout_update_delete(self, reconciler, store, ledger, verified):
        ledger.record_generation("user-1")

        reconciler.apply(verified("checkout.session.completed", checkout(), "evt_1"))
        assert store.get("user-1").plan == "pro"
        assert ledger.current_usage("user-1").generations_count == 0

        reconciler.apply(verified("customer.subscription.updated", subscription(status="active"), "evt_2"))
        assert store.get("user-1").status == ACTIVE

        reconciler.apply(verified("customer.subscription.deleted", subscription(status="canceled"), "evt_3"))
        state = store.get("user-1")
        assert (state.plan, state.status) == ("free", CANCELED)
