"""
Access Gate - content and feature access decisions

Pure functions over an account's trial window and subscription. Nothing
here performs I/O; every check takes ``now`` so callers (and tests)
control the clock.
"""

import logging
from datetime import datetime, tzinfo
from typing import Dict, Optional

from accounts.models import Account, utcnow

logger = logging.getLogger(__name__)

TRIAL_EXPIRED = "Trial expired"
ACCESS_RESTRICTED = "Content access restricted"
TRIAL_EXPIRED_STATUS = "Your free trial has expired. Subscribe to continue."

LOCK_REASON_TRIAL_EXPIRED = "Your free trial has expired. Subscribe to access premium content."
LOCK_REASON_NO_SUBSCRIPTION = "You need an active subscription to access this content."
LOCK_REASON_RESTRICTED = "Content access restricted."

# Features that need a paid subscription; a trial alone is not enough
SUBSCRIPTION_ONLY_FEATURES = {"offline_access", "personalized_plans"}

FEATURES = [
    "basic_quizzes",
    "advanced_quizzes",
    "study_materials",
    "performance_analytics",
    "offline_access",
    "unlimited_attempts",
    "expert_explanations",
    "personalized_plans",
    "achievement_badges",
    "progress_tracking",
]

CONTENT_TYPES = {"quiz", "study_materials", "analytics"}


def format_date(value: datetime, tz: Optional[tzinfo] = None) -> str:
    """Day/month/year without padding, in ``tz`` when given"""
    if tz is not None:
        value = value.astimezone(tz)
    return f"{value.day}/{value.month}/{value.year}"


def _format_time(value: datetime, tz: Optional[tzinfo] = None) -> str:
    if tz is not None:
        value = value.astimezone(tz)
    return value.strftime("%H:%M")


# =============================================================================
# Core decisions
# =============================================================================

def is_on_trial(account: Account, now: Optional[datetime] = None) -> bool:
    return account.trial.is_on_trial(now or utcnow())


def has_active_subscription(account: Account, now: Optional[datetime] = None) -> bool:
    return account.subscription.is_active(now or utcnow())


def has_content_access(account: Account, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return is_on_trial(account, now) or has_active_subscription(account, now)


def needs_subscription(account: Account, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return not is_on_trial(account, now) and not has_active_subscription(account, now)


# =============================================================================
# Display text
# =============================================================================

def trial_display_message(
    account: Account,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Optional[str]:
    """Trial badge text; None for accounts without trial data"""
    trial_end = account.trial.trial_end
    if trial_end is None:
        return None
    if account.trial.is_on_trial(now or utcnow()):
        return f"Free trial ends at {format_date(trial_end, tz)} {_format_time(trial_end, tz)}"
    return TRIAL_EXPIRED


def access_status_message(
    account: Account,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> str:
    """One sentence describing access, dates shown in ``tz``. Never raises."""
    try:
        now = now or utcnow()
        if has_active_subscription(account, now):
            return f"Subscription active until {format_date(account.subscription.paid_until, tz)}"
        if is_on_trial(account, now):
            return trial_display_message(account, now, tz) or ACCESS_RESTRICTED
        if account.trial.is_expired(now):
            return TRIAL_EXPIRED_STATUS
    except Exception as e:
        logger.warning(f"Could not compose access status for {getattr(account, 'id', None)}: {e}")
    return ACCESS_RESTRICTED


def trial_time_remaining_text(account: Account, now: Optional[datetime] = None) -> Optional[str]:
    """e.g. '2 days remaining', '5 hours remaining', '1 minute remaining'"""
    remaining = account.trial.remaining(now or utcnow())
    if remaining is None:
        return None

    hours = int(remaining.total_seconds() // 3600)
    if hours > 24:
        value, unit = remaining.days, "day"
    elif hours > 0:
        value, unit = hours, "hour"
    else:
        value, unit = int(remaining.total_seconds() // 60), "minute"
    return f"{value} {unit}{'s' if value != 1 else ''} remaining"


def content_lock_reason(account: Account, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    subscribed = has_active_subscription(account, now)
    if account.trial.is_expired(now) and not subscribed:
        return LOCK_REASON_TRIAL_EXPIRED
    if not is_on_trial(account, now) and not subscribed:
        return LOCK_REASON_NO_SUBSCRIPTION
    return LOCK_REASON_RESTRICTED


# =============================================================================
# Content and feature gating
# =============================================================================

def can_access(account: Account, content_type: str, now: Optional[datetime] = None) -> bool:
    """Gate for quiz, study_materials and analytics content"""
    if content_type not in CONTENT_TYPES:
        logger.warning(f"Unknown content type requested: {content_type}")
        return False

    granted = has_content_access(account, now)
    logger.info(
        f"Content access: {content_type} - {'GRANTED' if granted else 'DENIED'} "
        f"for account {account.id}"
    )
    return granted


def feature_access(account: Account, now: Optional[datetime] = None) -> Dict[str, bool]:
    now = now or utcnow()
    access = has_content_access(account, now)
    subscribed = has_active_subscription(account, now)
    return {
        feature: access and (subscribed or feature not in SUBSCRIPTION_ONLY_FEATURES)
        for feature in FEATURES
    }


def is_feature_available(account: Account, feature: str, now: Optional[datetime] = None) -> bool:
    return feature_access(account, now).get(feature, False)
