"""
Account access lifecycle for ExamCoach

Registration with duplicate detection, two-factor login, trial and
subscription access decisions, and payment webhook processing.
"""

from accounts.admin import AdminService
from accounts.duplicate_guard import DuplicateKind, DuplicateRegistrationGuard, DuplicateResult
from accounts.errors import (
    AccountError,
    DuplicateAccountError,
    NetworkError,
    NotFoundError,
    OtpError,
    OtpErrorKind,
    RateLimitedError,
    SecurityError,
    SessionExpiredError,
    StoreUnavailable,
    ValidationError,
)
from accounts.identity_store import (
    IdentityStore,
    InMemoryIdentityStore,
    RestIdentityStore,
    create_identity_store,
)
from accounts.models import (
    Account,
    AuthState,
    Role,
    Subscription,
    SubscriptionStatus,
    TrialWindow,
    WebhookEvent,
    WebhookEventType,
)
from accounts.notifications import LogNotifier, Notifier, SendGridNotifier, create_notifier
from accounts.otp import (
    DemoOtpProvider,
    FirebaseOtpProvider,
    OtpProvider,
    OtpRateLimiter,
    ThrottledOtpProvider,
    TwilioOtpProvider,
    create_otp_provider,
)
from accounts.registration import RegistrationService
from accounts.two_factor import LoginSessionRegistry, TwoFactorCoordinator
from accounts.webhooks import WebhookProcessor

__all__ = [
    "Account",
    "AccountError",
    "AdminService",
    "AuthState",
    "DemoOtpProvider",
    "DuplicateAccountError",
    "DuplicateKind",
    "DuplicateRegistrationGuard",
    "DuplicateResult",
    "FirebaseOtpProvider",
    "IdentityStore",
    "InMemoryIdentityStore",
    "LogNotifier",
    "LoginSessionRegistry",
    "NetworkError",
    "NotFoundError",
    "Notifier",
    "OtpError",
    "OtpErrorKind",
    "OtpProvider",
    "OtpRateLimiter",
    "RateLimitedError",
    "RegistrationService",
    "RestIdentityStore",
    "Role",
    "SecurityError",
    "SendGridNotifier",
    "SessionExpiredError",
    "StoreUnavailable",
    "Subscription",
    "SubscriptionStatus",
    "ThrottledOtpProvider",
    "TrialWindow",
    "TwilioOtpProvider",
    "TwoFactorCoordinator",
    "ValidationError",
    "WebhookEvent",
    "WebhookEventType",
    "WebhookProcessor",
    "create_identity_store",
    "create_notifier",
    "create_otp_provider",
]
