"""
Input validation for registration and login

Phone normalization makes the country assumption for national numbers
explicit: callers pass the default country code (from settings) instead
of it being baked in.
"""

import re
from typing import Optional

from email_validator import EmailNotValidError, validate_email as _check_email

PHONE_REQUIRED = "Phone number is required"
INVALID_PHONE = "Invalid phone number format"
INVALID_EMAIL = "Invalid email address"
INVALID_OTP = "Invalid OTP format. Please enter 6 digits."

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
OTP_PATTERN = re.compile(r"^\d{6}$")


def normalize_phone(raw: str, default_country_code: str) -> str:
    """
    Normalize a phone number to an E.164-like string.

    Examples with default_country_code="+234":
        "+234 812 345 6789" -> "+2348123456789"
        "00234812345678"    -> "+234812345678"
        "08123456789"       -> "+2348123456789"
        "2348123456789"     -> "+2348123456789"
    """
    phone = re.sub(r"[\s\-().]", "", raw or "")
    if not phone:
        return ""

    if phone.startswith("+"):
        return phone
    if phone.startswith("00"):
        return "+" + phone[2:]

    country_digits = default_country_code.lstrip("+")
    if phone.startswith("0"):
        return default_country_code + phone[1:]
    if phone.startswith(country_digits):
        return "+" + phone
    return default_country_code + phone


def validate_phone(phone: str) -> Optional[str]:
    """Return an error message, or None if the phone is valid E.164"""
    if not phone or not phone.strip():
        return PHONE_REQUIRED
    if not E164_PATTERN.match(phone):
        return INVALID_PHONE
    return None


def validate_email(email: Optional[str]) -> Optional[str]:
    """Email is optional; when present it must be syntactically valid"""
    if not email or not email.strip():
        return None
    try:
        _check_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        return INVALID_EMAIL
    return None


def validate_password(password: Optional[str]) -> Optional[str]:
    """Return the first failed password rule, or None"""
    if not password:
        return "Password is required"
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    return None


def validate_otp_code(code: Optional[str]) -> Optional[str]:
    if not code or not OTP_PATTERN.match(code):
        return INVALID_OTP
    return None


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email or not email.strip():
        return None
    return email.strip().lower()
