"""
Error taxonomy for the account access lifecycle

Every failure that can reach a caller is one of the classes below. Each
carries a fixed, sanitized ``user_message``; the technical detail is only
ever logged server-side through ``report_error``, keyed by a fingerprint
the caller can quote to support.
"""

import hashlib
import logging
import re
from enum import Enum
from typing import Dict, Optional

from utils.logger import logger


class AccountError(Exception):
    """Base class for all account lifecycle errors"""

    user_message = "Something went wrong. Please try again."
    status_code = 500
    log_level = logging.ERROR

    def __init__(self, detail: str = "", user_message: Optional[str] = None):
        self.detail = detail
        if user_message is not None:
            self.user_message = user_message
        super().__init__(detail or self.user_message)


class ValidationError(AccountError):
    """Malformed input: missing phone, invalid phone/email, weak password"""

    status_code = 422
    log_level = logging.INFO

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(detail or reason, user_message=reason)


class DuplicateAccountError(ValidationError):
    """Phone number or email is already registered"""

    status_code = 409


class NotFoundError(AccountError):
    """No matching account. Surfaced exactly like wrong credentials."""

    user_message = "Invalid credentials"
    status_code = 401
    log_level = logging.WARNING


class RateLimitedError(AccountError):
    """Too many attempts; the caller should wait ``retry_after`` seconds"""

    user_message = "Too many attempts. Please try again later."
    status_code = 429
    log_level = logging.WARNING

    def __init__(self, retry_after: Optional[int] = None, detail: str = ""):
        self.retry_after = retry_after
        super().__init__(detail)


class SecurityError(AccountError):
    """Signature mismatch, tampered payload, or suspected session hijack"""

    user_message = "Request rejected"
    status_code = 403
    log_level = logging.CRITICAL


class SessionExpiredError(AccountError):
    """The second factor was attempted after the password window closed"""

    user_message = "Your login session has expired. Please sign in again."
    status_code = 401
    log_level = logging.WARNING


class StoreUnavailable(AccountError):
    """The Identity Store could not be reached or is not configured"""

    user_message = "Service temporarily unavailable. Please try again later."
    status_code = 503


class NetworkError(AccountError):
    """A remote capability could not be reached"""

    user_message = "Network error. Please check your connection and try again."
    status_code = 503


class OtpErrorKind(str, Enum):
    """Failure kinds reported by OTP delivery providers"""
    INVALID_PHONE_FORMAT = "InvalidPhoneFormat"
    RATE_LIMITED = "RateLimited"
    NETWORK_UNAVAILABLE = "NetworkUnavailable"
    PROVIDER_REJECTED = "ProviderRejected"
    TIMEOUT = "Timeout"


_OTP_MESSAGES = {
    OtpErrorKind.INVALID_PHONE_FORMAT: "Invalid phone number format",
    OtpErrorKind.RATE_LIMITED: "Too many attempts. Please try again later.",
    OtpErrorKind.NETWORK_UNAVAILABLE: "Network error. Please check your connection and try again.",
    OtpErrorKind.PROVIDER_REJECTED: "Could not send verification code. Please try again.",
    OtpErrorKind.TIMEOUT: "Verification service timed out. Please try again.",
}


class OtpError(AccountError):
    """Raised by OTP providers; never fatal to the login attempt"""

    status_code = 502
    log_level = logging.WARNING

    def __init__(self, kind: OtpErrorKind, detail: str = "", retry_after: Optional[int] = None):
        self.kind = kind
        self.retry_after = retry_after
        super().__init__(detail, user_message=_OTP_MESSAGES[kind])

    def to_account_error(self) -> AccountError:
        """Map to the general taxonomy for the HTTP layer"""
        if self.kind == OtpErrorKind.RATE_LIMITED:
            return RateLimitedError(self.retry_after, self.detail)
        if self.kind == OtpErrorKind.INVALID_PHONE_FORMAT:
            return ValidationError(self.user_message, self.detail)
        if self.kind in (OtpErrorKind.NETWORK_UNAVAILABLE, OtpErrorKind.TIMEOUT):
            return NetworkError(self.detail, user_message=self.user_message)
        return self


# ============================================================================
# Server-side reporting
# ============================================================================

_SENSITIVE_PATTERNS = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\+?\d[\d\s-]{7,}\d"), "[PHONE]"),
    (re.compile(r"\b[A-Za-z0-9_-]{20,}\b"), "[TOKEN]"),
]

_error_counts: Dict[str, int] = {}


def sanitize(text: str) -> str:
    """Remove e-mails, phone numbers and long tokens from a log message"""
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def error_fingerprint(exc: BaseException, context: str = "") -> str:
    """Short stable key for correlating a user-visible error with server logs"""
    raw = f"{type(exc).__name__}:{context}:{sanitize(str(exc))[:50]}"
    return hashlib.sha256(raw.encode()).hexdigest()[:12]


def report_error(exc: BaseException, context: str = "") -> str:
    """
    Log an error with its technical detail and return its fingerprint.

    The severity follows the error class; unknown exceptions are logged
    as errors with their traceback.
    """
    fingerprint = error_fingerprint(exc, context)
    _error_counts[fingerprint] = _error_counts.get(fingerprint, 0) + 1

    level = exc.log_level if isinstance(exc, AccountError) else logging.ERROR
    message = sanitize(str(exc))
    logger.log(
        level,
        f"[{fingerprint}] {context or 'error'}: {type(exc).__name__}: {message} "
        f"(seen {_error_counts[fingerprint]}x)",
        exc_info=not isinstance(exc, AccountError),
    )
    return fingerprint


def error_count(fingerprint: str) -> int:
    return _error_counts.get(fingerprint, 0)
