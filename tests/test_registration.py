#!/usr/bin/env python3
"""
Registration and Signup Verification Tests
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from accounts.duplicate_guard import DuplicateKind, DuplicateResult
from accounts.errors import (
    DuplicateAccountError,
    NotFoundError,
    OtpError,
    OtpErrorKind,
    RateLimitedError,
    ValidationError,
)
from accounts.models import Role
from accounts.passwords import verify_password
from accounts.registration import RegistrationService
from tests.conftest import DEMO_CODE, FAST_ITERATIONS, TEST_EMAIL, TEST_PASSWORD, TEST_PHONE


@pytest.fixture
def registration(store, demo_otp, notifier, clock):
    return RegistrationService(
        store,
        demo_otp,
        notifier,
        clock=clock,
        password_iterations=FAST_ITERATIONS,
    )


# ============================================================================
# REGISTER
# ============================================================================

class TestRegister:

    async def test_creates_unverified_standard_account(self, registration, store, clock):
        account = await registration.register("0812 345 6788", TEST_PASSWORD, " Student@Example.com ", "Ada")

        assert account.id
        assert account.phone_number == TEST_PHONE
        assert account.email == TEST_EMAIL
        assert account.role == Role.STANDARD
        assert not account.is_verified
        assert account.trial.trial_start is None
        assert account.registration_timestamp == clock()

        stored = await store.get_by_phone(TEST_PHONE)
        assert verify_password(TEST_PASSWORD, stored.password_hash)
        assert TEST_PASSWORD not in stored.password_hash

    @pytest.mark.parametrize("phone,email,password,reason", [
        ("", None, TEST_PASSWORD, "Phone number is required"),
        ("12", None, TEST_PASSWORD, "Invalid phone number format"),
        (TEST_PHONE, "not-an-email", TEST_PASSWORD, "Invalid email address"),
        (TEST_PHONE, None, "short", "Password must be at least 8 characters long"),
    ])
    async def test_invalid_input(self, registration, phone, email, password, reason):
        with pytest.raises(ValidationError) as exc_info:
            await registration.register(phone, password, email)
        assert exc_info.value.reason == reason

    async def test_duplicate_phone(self, registration):
        await registration.register(TEST_PHONE, TEST_PASSWORD)

        with pytest.raises(DuplicateAccountError) as exc_info:
            await registration.register(TEST_PHONE, TEST_PASSWORD, "other@example.com")
        assert "phone number already exists" in exc_info.value.user_message

    async def test_duplicate_email(self, registration):
        await registration.register(TEST_PHONE, TEST_PASSWORD, TEST_EMAIL)

        with pytest.raises(DuplicateAccountError) as exc_info:
            await registration.register("+2348000000001", TEST_PASSWORD, TEST_EMAIL)
        assert "email address already exists" in exc_info.value.user_message

    async def test_insert_still_rejects_duplicate_when_check_was_skipped(self, registration, store):
        await registration.register(TEST_PHONE, TEST_PASSWORD)
        registration.guard.check_duplicate = AsyncMock(
            return_value=DuplicateResult(DuplicateKind.NO_DUPLICATE)
        )

        with pytest.raises(DuplicateAccountError):
            await registration.register(TEST_PHONE, TEST_PASSWORD)


# ============================================================================
# PHONE VERIFICATION
# ============================================================================

class TestPhoneVerification:

    async def test_send_code(self, registration, demo_otp):
        account = await registration.register(TEST_PHONE, TEST_PASSWORD)
        await registration.start_phone_verification(account.id)
        assert list(demo_otp.sent_to) == [TEST_PHONE]

    async def test_confirm_starts_trial(self, registration, clock, notifier):
        account = await registration.register(TEST_PHONE, TEST_PASSWORD, TEST_EMAIL)

        verified = await registration.confirm_phone_verification(account.id, DEMO_CODE)

        assert verified.is_verified
        assert verified.trial.trial_start == clock()
        assert verified.trial.trial_end == clock() + timedelta(hours=48)
        assert notifier.sent[-1][0] == TEST_EMAIL

    async def test_second_confirmation_does_not_move_trial(self, registration, store, clock):
        account = await registration.register(TEST_PHONE, TEST_PASSWORD)
        await registration.confirm_phone_verification(account.id, DEMO_CODE)
        started = clock()

        clock.advance(days=3)
        await registration.confirm_phone_verification(account.id, DEMO_CODE)

        stored = await store.get_by_id(account.id)
        assert stored.trial.trial_start == started

    async def test_wrong_code(self, registration, store):
        account = await registration.register(TEST_PHONE, TEST_PASSWORD)

        with pytest.raises(ValidationError):
            await registration.confirm_phone_verification(account.id, "000000")
        assert not (await store.get_by_id(account.id)).is_verified

    async def test_unknown_account(self, registration):
        with pytest.raises(NotFoundError):
            await registration.confirm_phone_verification("missing", DEMO_CODE)

    async def test_provider_rate_limit(self, store, clock):
        otp = AsyncMock()
        otp.send.side_effect = OtpError(OtpErrorKind.RATE_LIMITED, retry_after=120)
        registration = RegistrationService(store, otp, clock=clock, password_iterations=FAST_ITERATIONS)
        account = await registration.register(TEST_PHONE, TEST_PASSWORD)

        with pytest.raises(RateLimitedError) as exc_info:
            await registration.start_phone_verification(account.id)
        assert exc_info.value.retry_after == 120
