"""
Two-factor login coordination

A TwoFactorCoordinator drives exactly one login attempt through
Initial -> PasswordVerified -> FullyAuthenticated. Any failure other than
a wrong code, an explicit reset, or an expired password window returns it
to Initial.

Concurrent logins each get their own coordinator through
LoginSessionRegistry; coordinators are never shared between attempts.
"""

import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from accounts.errors import (
    AccountError,
    NotFoundError,
    OtpError,
    SessionExpiredError,
    StoreUnavailable,
    ValidationError,
    sanitize,
)
from accounts.identity_store import IdentityStore
from accounts.models import Account, AuthState, utcnow
from accounts.otp import OtpProvider
from accounts.passwords import verify_password
from accounts.validation import normalize_email, normalize_phone, validate_otp_code
from utils.logger import logger, mask_phone

SECOND_FACTOR_WINDOW = timedelta(minutes=5)
INVALID_CODE = "Invalid verification code"


class TwoFactorCoordinator:
    """Login state machine for a single attempt"""

    def __init__(
        self,
        store: IdentityStore,
        otp_provider: OtpProvider,
        clock: Callable[[], datetime] = utcnow,
        window: timedelta = SECOND_FACTOR_WINDOW,
        default_country_code: str = "+234",
    ):
        self.store = store
        self.otp_provider = otp_provider
        self.clock = clock
        self.window = window
        self.default_country_code = default_country_code

        self._state = AuthState.INITIAL
        self._account: Optional[Account] = None
        self._password_verified_at: Optional[datetime] = None
        self._lock = asyncio.Lock()
        self.last_error: Optional[AccountError] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def account(self) -> Optional[Account]:
        return self._account

    @property
    def password_verified_at(self) -> Optional[datetime]:
        return self._password_verified_at

    def _window_expired(self) -> bool:
        if self._password_verified_at is None:
            return True
        return self.clock() - self._password_verified_at >= self.window

    def is_session_valid(self) -> bool:
        if self._state == AuthState.FULLY_AUTHENTICATED:
            return True
        return self._state == AuthState.PASSWORD_VERIFIED and not self._window_expired()

    @property
    def session_time_remaining(self) -> Optional[timedelta]:
        if self._state != AuthState.PASSWORD_VERIFIED or self._window_expired():
            return None
        return self._password_verified_at + self.window - self.clock()

    def reset(self) -> None:
        self._state = AuthState.INITIAL
        self._account = None
        self._password_verified_at = None

    def _fail(self, error: AccountError, context: str) -> bool:
        self.last_error = error
        logger.log(error.log_level, f"{context} failed: {type(error).__name__}: {sanitize(str(error))}")
        return False

    def _check_second_factor_ready(self, context: str) -> bool:
        if self._state != AuthState.PASSWORD_VERIFIED or self._account is None:
            return self._fail(
                ValidationError("Please sign in with your password first"), context
            )
        if self._window_expired():
            logger.warning(
                f"Second factor window expired for {mask_phone(self._account.phone_number)}"
            )
            self.reset()
            return self._fail(SessionExpiredError(), context)
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _lookup(self, identifier: str) -> Optional[Account]:
        if "@" in identifier:
            email = normalize_email(identifier)
            return await self.store.get_by_email(email) if email else None
        phone = normalize_phone(identifier, self.default_country_code)
        return await self.store.get_by_phone(phone) if phone else None

    async def verify_credentials(self, identifier: str, password: str) -> bool:
        """First factor: phone number or e-mail plus password"""
        async with self._lock:
            self.reset()
            self.last_error = None

            try:
                account = await self._lookup((identifier or "").strip())
            except StoreUnavailable as e:
                return self._fail(e, "verify_credentials")

            if account is None:
                return self._fail(NotFoundError("No account for identifier"), "verify_credentials")
            if not verify_password(password or "", account.password_hash):
                return self._fail(NotFoundError("Password mismatch"), "verify_credentials")
            if not account.is_account_active:
                return self._fail(
                    NotFoundError(f"Login attempt on disabled account {account.id}"),
                    "verify_credentials",
                )

            self._account = account
            self._password_verified_at = self.clock()
            self._state = AuthState.PASSWORD_VERIFIED
            logger.info(f"Password verified for {mask_phone(account.phone_number)}")
            return True

    async def send_second_factor(self) -> bool:
        async with self._lock:
            self.last_error = None
            if not self._check_second_factor_ready("send_second_factor"):
                return False

            try:
                await self.otp_provider.send(self._account.phone_number)
            except OtpError as e:
                return self._fail(e.to_account_error(), "send_second_factor")
            return True

    async def verify_second_factor(self, code: str) -> bool:
        async with self._lock:
            self.last_error = None
            if not self._check_second_factor_ready("verify_second_factor"):
                return False

            reason = validate_otp_code(code)
            if reason:
                return self._fail(ValidationError(reason), "verify_second_factor")

            account = self._account
            try:
                approved = await self.otp_provider.verify(account.phone_number, code)
            except OtpError as e:
                return self._fail(e.to_account_error(), "verify_second_factor")

            if not approved:
                # Wrong code: the user may retry or request a resend
                return self._fail(ValidationError(INVALID_CODE), "verify_second_factor")

            account.last_login_timestamp = self.clock()
            try:
                if not await self.store.update(account):
                    return self._fail(
                        NotFoundError(f"Account {account.id} vanished during login"),
                        "verify_second_factor",
                    )
            except StoreUnavailable as e:
                return self._fail(e, "verify_second_factor")

            self._state = AuthState.FULLY_AUTHENTICATED
            logger.info(f"Login completed for {mask_phone(account.phone_number)}")
            return True

    async def complete_authentication(self) -> Optional[Account]:
        async with self._lock:
            if self._state != AuthState.FULLY_AUTHENTICATED:
                return None
            account = self._account
            self.reset()
            return account


class LoginSessionRegistry:
    """
    One coordinator per in-flight login, addressed by an opaque id.

    Entries older than ``ttl`` are dropped whenever the registry is touched.
    """

    def __init__(
        self,
        factory: Callable[[], TwoFactorCoordinator],
        ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.factory = factory
        self.ttl = ttl
        self.clock = clock
        self._sessions: Dict[str, Tuple[datetime, TwoFactorCoordinator]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [
            login_id
            for login_id, (created_at, _) in self._sessions.items()
            if now - created_at >= self.ttl
        ]
        for login_id in expired:
            del self._sessions[login_id]
        if expired:
            logger.debug(f"Purged {len(expired)} expired login sessions")
        return len(expired)

    def create(self) -> Tuple[str, TwoFactorCoordinator]:
        self.purge_expired()
        login_id = secrets.token_urlsafe(24)
        coordinator = self.factory()
        self._sessions[login_id] = (self.clock(), coordinator)
        return login_id, coordinator

    def get(self, login_id: str) -> Optional[TwoFactorCoordinator]:
        self.purge_expired()
        entry = self._sessions.get(login_id)
        return entry[1] if entry else None

    def discard(self, login_id: str) -> bool:
        return self._sessions.pop(login_id, None) is not None
