"""
Account Data Models

Defines the account record with its embedded trial window and
subscription, the ephemeral login state, and inbound webhook events.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

TRIAL_DURATION = timedelta(hours=48)
SUBSCRIPTION_PERIOD = timedelta(days=7)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Role(str, Enum):
    """Account roles"""
    STANDARD = "standard"
    ADMIN = "admin"
    SUPER_ADMIN = "super-admin"

    @property
    def is_admin(self) -> bool:
        return self in (Role.ADMIN, Role.SUPER_ADMIN)


class SubscriptionStatus(str, Enum):
    """Subscription status states"""
    NONE = "none"
    PAID = "paid"
    EXPIRED = "expired"


class AuthState(str, Enum):
    """Two-factor login states"""
    INITIAL = "initial"
    PASSWORD_VERIFIED = "password_verified"
    FULLY_AUTHENTICATED = "fully_authenticated"


@dataclass
class TrialWindow:
    """
    Free trial granted at the first successful phone verification.

    ``trial_start`` is written once; accounts created before trials existed
    have none and simply show no trial.
    """
    trial_start: Optional[datetime] = None
    duration: timedelta = TRIAL_DURATION

    @property
    def trial_end(self) -> Optional[datetime]:
        if self.trial_start is None:
            return None
        return self.trial_start + self.duration

    def is_on_trial(self, now: datetime) -> bool:
        end = self.trial_end
        return end is not None and now < end

    def is_expired(self, now: datetime) -> bool:
        end = self.trial_end
        return end is not None and now >= end

    def remaining(self, now: datetime) -> Optional[timedelta]:
        end = self.trial_end
        if end is None or now >= end:
            return None
        return end - now

    def start(self, now: datetime) -> None:
        if self.trial_start is not None:
            raise ValueError("Trial already started")
        self.trial_start = now


@dataclass
class Subscription:
    """Paid access activated by a verified payment webhook"""
    status: SubscriptionStatus = SubscriptionStatus.NONE
    paid_until: Optional[datetime] = None
    last_payment_reference: Optional[str] = None
    amount_paid_minor_units: int = 0
    last_payment_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        return (
            self.status == SubscriptionStatus.PAID
            and self.paid_until is not None
            and now < self.paid_until
        )

    def activate(
        self,
        paid_at: datetime,
        reference: str,
        amount: int,
        period: timedelta = SUBSCRIPTION_PERIOD,
    ) -> None:
        """
        Apply a successful payment. Amount and reference are stored as given.

        ``paid_until`` never moves backwards.
        """
        new_until = paid_at + period
        self.status = SubscriptionStatus.PAID
        if self.paid_until is None or new_until > self.paid_until:
            self.paid_until = new_until
        self.last_payment_reference = reference
        self.amount_paid_minor_units = amount
        self.last_payment_at = paid_at


@dataclass
class Account:
    """Identity record keyed by phone number"""
    phone_number: str
    password_hash: str = ""
    id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Role = Role.STANDARD
    is_account_active: bool = True
    is_verified: bool = False
    registration_timestamp: Optional[datetime] = None
    last_login_timestamp: Optional[datetime] = None
    trial: TrialWindow = field(default_factory=TrialWindow)
    subscription: Subscription = field(default_factory=Subscription)

    # Administrative audit trail
    disabled_reason: Optional[str] = None
    disabled_by: Optional[str] = None
    disabled_at: Optional[datetime] = None
    enabled_by: Optional[str] = None
    enabled_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin

    def enable(self, admin_id: str, now: Optional[datetime] = None) -> None:
        self.is_account_active = True
        self.enabled_by = admin_id
        self.enabled_at = now or utcnow()
        self.disabled_reason = None

    def disable(self, reason: str, admin_id: str, now: Optional[datetime] = None) -> None:
        self.is_account_active = False
        self.disabled_reason = reason
        self.disabled_by = admin_id
        self.disabled_at = now or utcnow()

    def to_record(self) -> Dict[str, Any]:
        """Persisted row shape (snake_case, ISO-8601 timestamps)"""
        return {
            "id": self.id,
            "phone_number": self.phone_number,
            "email": self.email,
            "full_name": self.full_name,
            "password_hash": self.password_hash,
            "role": self.role.value,
            "is_account_active": self.is_account_active,
            "is_verified": self.is_verified,
            "registration_timestamp": format_timestamp(self.registration_timestamp),
            "last_login_timestamp": format_timestamp(self.last_login_timestamp),
            "trial_start": format_timestamp(self.trial.trial_start),
            "subscription_status": self.subscription.status.value,
            "paid_until": format_timestamp(self.subscription.paid_until),
            "last_payment_reference": self.subscription.last_payment_reference,
            "amount_paid_minor_units": self.subscription.amount_paid_minor_units,
            "last_payment_at": format_timestamp(self.subscription.last_payment_at),
            "disabled_reason": self.disabled_reason,
            "disabled_by": self.disabled_by,
            "disabled_at": format_timestamp(self.disabled_at),
            "enabled_by": self.enabled_by,
            "enabled_at": format_timestamp(self.enabled_at),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Account":
        """Load a persisted row; legacy rows without trial/subscription data are allowed"""
        try:
            role = Role(data.get("role") or Role.STANDARD.value)
        except ValueError:
            role = Role.STANDARD

        try:
            status = SubscriptionStatus(data.get("subscription_status") or SubscriptionStatus.NONE.value)
        except ValueError:
            status = SubscriptionStatus.NONE

        return cls(
            id=data.get("id"),
            phone_number=data.get("phone_number") or "",
            email=data.get("email") or None,
            full_name=data.get("full_name"),
            password_hash=data.get("password_hash") or "",
            role=role,
            is_account_active=data.get("is_account_active", True),
            is_verified=data.get("is_verified", False),
            registration_timestamp=parse_timestamp(data.get("registration_timestamp")),
            last_login_timestamp=parse_timestamp(data.get("last_login_timestamp")),
            trial=TrialWindow(trial_start=parse_timestamp(data.get("trial_start"))),
            subscription=Subscription(
                status=status,
                paid_until=parse_timestamp(data.get("paid_until")),
                last_payment_reference=data.get("last_payment_reference"),
                amount_paid_minor_units=int(data.get("amount_paid_minor_units") or 0),
                last_payment_at=parse_timestamp(data.get("last_payment_at")),
            ),
            disabled_reason=data.get("disabled_reason"),
            disabled_by=data.get("disabled_by"),
            disabled_at=parse_timestamp(data.get("disabled_at")),
            enabled_by=data.get("enabled_by"),
            enabled_at=parse_timestamp(data.get("enabled_at")),
        )

    def summary(self) -> Dict[str, Any]:
        """Public view of the account (no secrets)"""
        return {
            "id": self.id,
            "phone_number": self.phone_number,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value,
            "is_verified": self.is_verified,
            "is_account_active": self.is_account_active,
        }


class WebhookEventType(str, Enum):
    """Payment provider events the processor understands"""
    PAYMENT_SUCCESS = "payment.success"
    PAYMENT_FAILED = "payment.failed"
    SUBSCRIPTION_CREATE = "subscription.create"
    SUBSCRIPTION_DISABLE = "subscription.disable"


@dataclass
class WebhookEvent:
    """A verified inbound payment event; consumed once, never persisted"""
    event_type: str
    reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    amount_minor_units: int = 0
    account_id: Optional[str] = None
    account_email: Optional[str] = None
    gateway_response: Optional[str] = None

    @property
    def known_type(self) -> Optional[WebhookEventType]:
        try:
            return WebhookEventType(self.event_type)
        except ValueError:
            return None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WebhookEvent":
        """Build from a Paystack-style ``{"event": ..., "data": {...}}`` body"""
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {}
        metadata = data.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        try:
            amount = int(data.get("amount") or 0)
        except (TypeError, ValueError):
            amount = 0
        return cls(
            event_type=str(payload.get("event") or ""),
            reference=_optional_str(data.get("reference")),
            paid_at=parse_timestamp(data.get("paid_at")),
            amount_minor_units=amount,
            account_id=_optional_str(metadata.get("user_id")),
            account_email=_optional_str(metadata.get("user_email")),
            gateway_response=_optional_str(data.get("gateway_response")),
        )


def _optional_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)
