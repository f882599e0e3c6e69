#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from accounts.identity_store import InMemoryIdentityStore
from accounts.models import Account, Role
from accounts.notifications import LogNotifier
from accounts.otp import DemoOtpProvider, OtpRateLimiter, ThrottledOtpProvider
from accounts.passwords import hash_password
from config import Settings


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml


# ============================================================================
# CONSTANTS
# ============================================================================

# Keeps password hashing fast in tests
FAST_ITERATIONS = 1000

TEST_PASSWORD = "Secret123"
TEST_PHONE = "+2348123456788"
TEST_EMAIL = "student@example.com"
WEBHOOK_SECRET = "sk_test_webhook_secret"
DEMO_CODE = "123456"
START_TIME = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# CLOCK
# ============================================================================

class FakeClock:
    """Controllable UTC clock, callable like ``utcnow``"""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# CORE FIXTURES
# ============================================================================

@pytest.fixture
def store():
    return InMemoryIdentityStore()


@pytest.fixture
def demo_otp():
    return DemoOtpProvider(DEMO_CODE)


@pytest.fixture
def notifier():
    return LogNotifier()


@pytest.fixture
def make_account(store, clock):
    """Factory inserting an account straight into the store"""

    async def _make(
        phone: str = TEST_PHONE,
        email: str = None,
        password: str = TEST_PASSWORD,
        role: Role = Role.STANDARD,
        **fields,
    ) -> Account:
        account = Account(
            phone_number=phone,
            email=email,
            password_hash=hash_password(password, FAST_ITERATIONS),
            role=role,
            registration_timestamp=clock(),
            **fields,
        )
        return await store.insert(account)

    return _make


# ============================================================================
# API FIXTURES
# ============================================================================

@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        PAYSTACK_WEBHOOK_SECRET=WEBHOOK_SECRET,
        PASSWORD_HASH_ITERATIONS=FAST_ITERATIONS,
        DEMO_OTP_CODE=DEMO_CODE,
    )


@pytest.fixture
def services(test_settings, store, demo_otp, notifier, clock):
    from web_api.dependencies import ServiceContainer

    otp_provider = ThrottledOtpProvider(demo_otp, OtpRateLimiter(clock=clock))
    return ServiceContainer.from_settings(
        test_settings,
        store=store,
        otp_provider=otp_provider,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def app(test_settings, services):
    from web_api.main import create_app

    return create_app(test_settings, services)


@pytest.fixture
async def async_client(app):
    """HTTP client bound to the app without a network"""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
