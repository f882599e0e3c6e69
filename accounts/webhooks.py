"""
Payment provider webhook processing

Paystack signs each delivery with HMAC-SHA512 over the raw request body,
sent in the ``x-paystack-signature`` header. The body is only parsed
after the signature has been verified against those exact bytes.

Deliveries are at-least-once and may arrive out of order. A successful
payment is applied once per reference, and a payment older than the one
already applied is acknowledged without touching the account.
"""

import hashlib
import hmac
import json
from collections import OrderedDict
from datetime import datetime, timedelta, tzinfo
from typing import Callable, Optional

from accounts.access_gate import format_date
from accounts.errors import SecurityError, StoreUnavailable, report_error
from accounts.identity_store import IdentityStore
from accounts.models import SUBSCRIPTION_PERIOD, WebhookEvent, WebhookEventType, utcnow
from accounts.notifications import Notifier, notify_safely
from utils.logger import logger

MAX_TRACKED_FAILURES = 10000


def compute_signature(secret: str, raw_payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha512).hexdigest()


class WebhookProcessor:
    """Verifies and applies payment events to account subscriptions"""

    def __init__(
        self,
        secret: str,
        store: IdentityStore,
        notifier: Optional[Notifier] = None,
        period: timedelta = SUBSCRIPTION_PERIOD,
        clock: Callable[[], datetime] = utcnow,
        max_tracked_failures: int = MAX_TRACKED_FAILURES,
        display_tz: Optional[tzinfo] = None,
    ):
        self.secret = secret
        self.store = store
        self.notifier = notifier
        self.period = period
        self.clock = clock
        # Failure counts per account, oldest entries evicted first
        self.failed_payments: "OrderedDict[str, int]" = OrderedDict()
        self.max_tracked_failures = max_tracked_failures
        self.display_tz = display_tz

        if not secret:
            logger.warning("Webhook secret not configured, all webhooks will be rejected")

    def verify_signature(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        """Constant-time check of the supplied signature"""
        if not self.secret or not signature:
            return False
        expected = compute_signature(self.secret, raw_payload).encode("ascii")
        supplied = signature.strip().lower().encode("utf-8", "replace")
        return hmac.compare_digest(expected, supplied)

    async def process(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        """
        Verify and apply one delivery.

        Returns:
            True if the event was accepted (including ignored and replayed
            events), False if it was rejected or could not be applied
        """
        if not self.verify_signature(raw_payload, signature):
            report_error(SecurityError("Webhook signature mismatch"), "webhook")
            return False

        try:
            payload = json.loads(raw_payload)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"Webhook body is not valid JSON: {e}")
            return False
        if not isinstance(payload, dict):
            logger.error("Webhook body is not a JSON object")
            return False

        event = WebhookEvent.from_payload(payload)
        event_type = event.known_type
        logger.info(f"Webhook event: {event.event_type}")

        try:
            if event_type == WebhookEventType.PAYMENT_SUCCESS:
                return await self._handle_payment_success(event)
            if event_type == WebhookEventType.PAYMENT_FAILED:
                return self._handle_payment_failed(event)
            if event_type in (WebhookEventType.SUBSCRIPTION_CREATE, WebhookEventType.SUBSCRIPTION_DISABLE):
                logger.info(f"Acknowledged {event.event_type} (no action)")
                return True
        except StoreUnavailable as e:
            # Not acknowledged, so the provider retries the delivery
            report_error(e, "webhook")
            return False

        logger.info(f"Unhandled webhook event: {event.event_type}")
        return True

    async def _handle_payment_success(self, event: WebhookEvent) -> bool:
        if not event.account_id or not event.account_email:
            logger.warning("Missing user information in payment metadata")
            return False
        if not event.reference:
            logger.warning("Payment event without reference")
            return False

        account = await self.store.get_by_id(event.account_id)
        if account is None or account.id != event.account_id:
            logger.error(f"Payment for unknown account {event.account_id}")
            return False

        subscription = account.subscription
        if subscription.last_payment_reference == event.reference:
            logger.info(f"Payment {event.reference} already applied, skipping")
            return True

        paid_at = event.paid_at or self.clock()
        if subscription.last_payment_at is not None and paid_at < subscription.last_payment_at:
            # Out-of-order redelivery of a payment older than the one applied
            logger.info(
                f"Payment {event.reference} predates {subscription.last_payment_reference}, skipping"
            )
            return True

        account.subscription.activate(
            paid_at=paid_at,
            reference=event.reference,
            amount=event.amount_minor_units,
            period=self.period,
        )
        if not await self.store.update(account):
            logger.error(f"Failed to persist subscription for account {account.id}")
            return False
        self.failed_payments.pop(account.id, None)

        paid_until = account.subscription.paid_until
        logger.info(f"Subscription active for account {account.id} until {paid_until.isoformat()}")

        await notify_safely(
            self.notifier,
            event.account_email,
            f"Your ExamCoach subscription is active until {format_date(paid_until, self.display_tz)}.",
        )
        return True

    def _handle_payment_failed(self, event: WebhookEvent) -> bool:
        key = event.account_id or "unknown"
        self.failed_payments[key] = self.failed_payments.pop(key, 0) + 1
        while len(self.failed_payments) > self.max_tracked_failures:
            self.failed_payments.popitem(last=False)
        logger.warning(
            f"Payment failed for reference {event.reference}: "
            f"{event.gateway_response or 'Unknown'} "
            f"({self.failed_payments[key]} failures for account {key})"
        )
        return True
