#!/usr/bin/env python3
"""
Duplicate Registration Guard Tests
"""

import pytest

from accounts.duplicate_guard import DuplicateKind, DuplicateRegistrationGuard
from tests.conftest import TEST_EMAIL, TEST_PHONE


@pytest.fixture
def guard(store):
    return DuplicateRegistrationGuard(store)


class TestDuplicateGuard:
    """Phone is checked first, then email; store outages fail open"""

    async def test_existing_phone_is_reported(self, guard, make_account):
        await make_account(phone=TEST_PHONE)

        result = await guard.check_duplicate(TEST_PHONE, "new@x.com")

        assert result.kind == DuplicateKind.DUPLICATE_PHONE
        assert "phone number already exists" in result.message

    @pytest.mark.parametrize("phone", ["", "   ", None])
    async def test_missing_phone_is_rejected_before_lookup(self, guard, store, phone):
        store.set_available(False)

        result = await guard.check_duplicate(phone)

        assert result.kind == DuplicateKind.MISSING_PHONE_NUMBER
        assert result.message == "Phone number is required"

    async def test_existing_email_is_reported(self, guard, make_account):
        await make_account(phone=TEST_PHONE, email=TEST_EMAIL)

        result = await guard.check_duplicate("+2348000000001", TEST_EMAIL.upper())

        assert result.kind == DuplicateKind.DUPLICATE_EMAIL
        assert "email address already exists" in result.message

    async def test_phone_takes_precedence_over_email(self, guard, make_account):
        await make_account(phone=TEST_PHONE, email=TEST_EMAIL)

        result = await guard.check_duplicate(TEST_PHONE, TEST_EMAIL)

        assert result.kind == DuplicateKind.DUPLICATE_PHONE

    async def test_empty_email_is_not_checked(self, guard, make_account):
        await make_account(phone=TEST_PHONE, email=None)

        result = await guard.check_duplicate("+2348000000001", "")

        assert result.ok

    async def test_fresh_pair_is_accepted(self, guard, make_account):
        await make_account(phone=TEST_PHONE, email=TEST_EMAIL)

        result = await guard.check_duplicate("+2348000000001", "other@example.com")

        assert result.kind == DuplicateKind.NO_DUPLICATE
        assert not result.is_duplicate

    async def test_store_outage_fails_open(self, guard, store, make_account):
        await make_account(phone=TEST_PHONE)
        store.set_available(False)

        result = await guard.check_duplicate(TEST_PHONE, TEST_EMAIL)

        assert result.kind == DuplicateKind.NO_DUPLICATE

    @pytest.mark.parametrize("phone", ["08123456788", "0812 345 6788", "2348123456788", "002348123456788"])
    async def test_local_formats_match_stored_number(self, guard, make_account, phone):
        await make_account(phone=TEST_PHONE)

        result = await guard.check_duplicate(phone)

        assert result.kind == DuplicateKind.DUPLICATE_PHONE

    async def test_configured_country_code(self, store, make_account):
        await make_account(phone="+447700900123")
        guard = DuplicateRegistrationGuard(store, default_country_code="+44")

        assert (await guard.check_duplicate("07700 900123")).is_duplicate
