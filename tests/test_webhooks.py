#!/usr/bin/env python3
"""
Payment Webhook Processor Tests
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from accounts.models import SubscriptionStatus
from accounts.webhooks import WebhookProcessor, compute_signature
from tests.conftest import START_TIME, TEST_EMAIL, WEBHOOK_SECRET

PAID_AT = "2025-01-10T08:30:00.000Z"


def _payload(account_id, event="payment.success", reference="ref_001", **data_overrides) -> bytes:
    data = {
        "reference": reference,
        "amount": 150000,
        "paid_at": PAID_AT,
        "gateway_response": "Successful",
        "metadata": {"user_id": account_id, "user_email": TEST_EMAIL},
    }
    data.update(data_overrides)
    return json.dumps({"event": event, "data": data}).encode()


def _sign(raw: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(secret, raw)


@pytest.fixture
def processor(store, notifier, clock):
    return WebhookProcessor(WEBHOOK_SECRET, store, notifier, clock=clock)


# ============================================================================
# SIGNATURE VERIFICATION
# ============================================================================

class TestSignature:

    def test_valid_signature(self, processor):
        raw = b'{"event": "payment.success"}'
        assert processor.verify_signature(raw, _sign(raw))

    def test_signature_over_different_bytes_fails(self, processor):
        raw = b'{"event": "payment.success"}'
        reformatted = b'{"event":"payment.success"}'
        assert not processor.verify_signature(reformatted, _sign(raw))

    def test_missing_signature(self, processor):
        assert not processor.verify_signature(b"{}", None)
        assert not processor.verify_signature(b"{}", "")

    def test_empty_secret_fails_closed(self, store):
        processor = WebhookProcessor("", store)
        raw = b"{}"
        assert not processor.verify_signature(raw, compute_signature("", raw))

    def test_signature_is_sha512_hex(self):
        assert len(_sign(b"{}")) == 128


# ============================================================================
# PAYMENT SUCCESS
# ============================================================================

class TestPaymentSuccess:

    async def test_activates_subscription_for_seven_days(self, processor, make_account, store):
        account = await make_account()
        raw = _payload(account.id)

        assert await processor.process(raw, _sign(raw))

        updated = await store.get_by_id(account.id)
        paid_at = START_TIME.replace(day=10, hour=8, minute=30)
        assert updated.subscription.status == SubscriptionStatus.PAID
        assert updated.subscription.paid_until == paid_at + timedelta(days=7)
        assert updated.subscription.last_payment_reference == "ref_001"
        assert updated.subscription.amount_paid_minor_units == 150000

    async def test_replay_does_not_extend(self, processor, make_account, store, clock):
        account = await make_account()
        raw = _payload(account.id)
        signature = _sign(raw)

        assert await processor.process(raw, signature)
        first = (await store.get_by_id(account.id)).subscription.paid_until

        clock.advance(days=1)
        assert await processor.process(raw, signature)
        assert (await store.get_by_id(account.id)).subscription.paid_until == first

    async def test_new_reference_is_applied(self, processor, make_account, store):
        account = await make_account()
        first = _payload(account.id, reference="ref_001")
        second = _payload(account.id, reference="ref_002", paid_at="2025-01-17T08:30:00Z")

        assert await processor.process(first, _sign(first))
        assert await processor.process(second, _sign(second))

        updated = await store.get_by_id(account.id)
        assert updated.subscription.last_payment_reference == "ref_002"
        assert updated.subscription.paid_until.day == 24

    async def test_missing_paid_at_uses_processing_time(self, processor, make_account, store, clock):
        account = await make_account()
        raw = _payload(account.id, paid_at=None)

        assert await processor.process(raw, _sign(raw))
        updated = await store.get_by_id(account.id)
        assert updated.subscription.paid_until == clock() + timedelta(days=7)

    async def test_missing_metadata_is_rejected(self, processor, make_account, store):
        account = await make_account()
        raw = _payload(account.id, metadata={"user_id": account.id})

        assert not await processor.process(raw, _sign(raw))
        assert (await store.get_by_id(account.id)).subscription.status == SubscriptionStatus.NONE

    async def test_unknown_account_is_rejected(self, processor):
        raw = _payload("does-not-exist")
        assert not await processor.process(raw, _sign(raw))

    async def test_notification_failure_does_not_fail_webhook(self, store, make_account, clock):
        failing = AsyncMock()
        failing.name = "broken"
        failing.notify.side_effect = RuntimeError("smtp down")
        processor = WebhookProcessor(WEBHOOK_SECRET, store, failing, clock=clock)
        account = await make_account()
        raw = _payload(account.id)

        assert await processor.process(raw, _sign(raw))
        failing.notify.assert_awaited_once()

    async def test_confirmation_is_sent(self, processor, make_account, notifier):
        account = await make_account()
        raw = _payload(account.id)

        await processor.process(raw, _sign(raw))

        destination, message = notifier.sent[-1]
        assert destination == TEST_EMAIL
        assert "17/1/2025" in message

    async def test_confirmation_date_uses_display_timezone(self, store, notifier, make_account, clock):
        processor = WebhookProcessor(
            WEBHOOK_SECRET, store, notifier, clock=clock, display_tz=ZoneInfo("Pacific/Honolulu"),
        )
        account = await make_account()
        raw = _payload(account.id)

        await processor.process(raw, _sign(raw))

        _, message = notifier.sent[-1]
        assert "16/1/2025" in message

    async def test_store_outage_is_not_acknowledged(self, processor, make_account, store):
        account = await make_account()
        store.set_available(False)
        raw = _payload(account.id)

        assert not await processor.process(raw, _sign(raw))


# ============================================================================
# REJECTION AND OTHER EVENTS
# ============================================================================

class TestOtherEvents:

    async def test_invalid_signature_mutates_nothing(self, processor, make_account, store):
        account = await make_account()
        raw = _payload(account.id)

        assert not await processor.process(raw, _sign(raw, "wrong-secret"))
        assert (await store.get_by_id(account.id)).subscription.status == SubscriptionStatus.NONE

    async def test_invalid_json_with_valid_signature(self, processor):
        raw = b"not json at all"
        assert not await processor.process(raw, _sign(raw))

    async def test_payment_failed_is_counted_not_applied(self, processor, make_account, store):
        account = await make_account()
        raw = _payload(account.id, event="payment.failed", gateway_response="Declined")

        assert await processor.process(raw, _sign(raw))
        assert await processor.process(raw, _sign(raw))

        assert processor.failed_payments[account.id] == 2
        assert (await store.get_by_id(account.id)).subscription.status == SubscriptionStatus.NONE

    @pytest.mark.parametrize("event", ["subscription.create", "subscription.disable", "charge.dispute.create"])
    async def test_other_events_are_acknowledged(self, processor, event):
        raw = json.dumps({"event": event, "data": {}}).encode()
        assert await processor.process(raw, _sign(raw))


# ============================================================================
# HOSTILE AND OUT-OF-ORDER DELIVERIES
# ============================================================================

class TestHostileDeliveries:

    @pytest.mark.parametrize("signature", ["é" * 128, "☃", "ü" + "a" * 127])
    async def test_non_ascii_signature_is_rejected(self, processor, signature):
        raw = b"{}"
        assert not processor.verify_signature(raw, signature)
        assert not await processor.process(raw, signature)

    async def test_string_metadata_is_rejected(self, processor, make_account, store):
        account = await make_account()
        raw = _payload(account.id, metadata="user=1")

        assert not await processor.process(raw, _sign(raw))
        assert (await store.get_by_id(account.id)).subscription.status == SubscriptionStatus.NONE

    @pytest.mark.parametrize("data", ["user=1", ["ref_001"], 42])
    async def test_non_object_data(self, processor, data):
        success = json.dumps({"event": "payment.success", "data": data}).encode()
        other = json.dumps({"event": "subscription.create", "data": data}).encode()

        assert not await processor.process(success, _sign(success))
        assert await processor.process(other, _sign(other))

    async def test_older_payment_redelivered_after_newer(self, processor, make_account, store):
        account = await make_account()
        first = _payload(account.id, reference="ref_A", paid_at="2025-01-10T08:30:00Z")
        second = _payload(account.id, reference="ref_B", paid_at="2025-01-17T08:30:00Z")

        assert await processor.process(first, _sign(first))
        assert await processor.process(second, _sign(second))
        before = await store.get_by_id(account.id)

        assert await processor.process(first, _sign(first))

        after = await store.get_by_id(account.id)
        assert after.subscription.paid_until == before.subscription.paid_until
        assert after.subscription.paid_until.day == 24
        assert after.subscription.last_payment_reference == "ref_B"

    async def test_failure_counter_is_bounded_and_cleared(self, store, make_account, clock):
        processor = WebhookProcessor(WEBHOOK_SECRET, store, clock=clock, max_tracked_failures=2)
        account = await make_account()

        for account_id in ["acc-1", "acc-2", account.id]:
            raw = _payload(account_id, event="payment.failed")
            assert await processor.process(raw, _sign(raw))
        assert list(processor.failed_payments) == ["acc-2", account.id]

        raw = _payload(account.id)
        assert await processor.process(raw, _sign(raw))
        assert account.id not in processor.failed_payments
