"""
Account registration and signup phone verification

The free trial starts at the first successful phone verification and is
never restarted by later verifications.
"""

from datetime import datetime
from typing import Callable, Optional

from accounts.duplicate_guard import DuplicateRegistrationGuard
from accounts.errors import (
    DuplicateAccountError,
    NotFoundError,
    OtpError,
    ValidationError,
)
from accounts.identity_store import DUPLICATE_PHONE_MESSAGE, IdentityStore
from accounts.models import Account, Role, utcnow
from accounts.notifications import Notifier, notify_safely
from accounts.otp import OtpProvider
from accounts.passwords import DEFAULT_ITERATIONS, hash_password
from accounts.validation import (
    normalize_email,
    normalize_phone,
    validate_email,
    validate_otp_code,
    validate_password,
    validate_phone,
)
from utils.logger import logger, mask_phone


class RegistrationService:
    def __init__(
        self,
        store: IdentityStore,
        otp_provider: OtpProvider,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
        default_country_code: str = "+234",
        password_iterations: int = DEFAULT_ITERATIONS,
    ):
        self.store = store
        self.otp_provider = otp_provider
        self.notifier = notifier
        self.clock = clock
        self.default_country_code = default_country_code
        self.password_iterations = password_iterations
        self.guard = DuplicateRegistrationGuard(store, default_country_code)

    async def register(
        self,
        phone: str,
        password: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> Account:
        """
        Create an unverified standard account.

        Raises:
            ValidationError: Bad input, or the phone/email is taken
            StoreUnavailable: The insert itself could not reach the store
        """
        phone_number = normalize_phone(phone or "", self.default_country_code)
        reason = validate_phone(phone_number) or validate_email(email) or validate_password(password)
        if reason:
            raise ValidationError(reason)

        email = normalize_email(email)
        duplicate = await self.guard.check_duplicate(phone_number, email)
        if not duplicate.ok:
            if duplicate.is_duplicate:
                raise DuplicateAccountError(duplicate.message)
            raise ValidationError(duplicate.message)

        account = Account(
            phone_number=phone_number,
            email=email,
            full_name=(full_name or "").strip() or None,
            password_hash=hash_password(password, self.password_iterations),
            role=Role.STANDARD,
            registration_timestamp=self.clock(),
        )
        try:
            account = await self.store.insert(account)
        except DuplicateAccountError as e:
            # Lost a race with another registration between check and insert
            logger.warning(f"Duplicate detected at insert for {mask_phone(phone_number)}")
            raise DuplicateAccountError(e.reason or DUPLICATE_PHONE_MESSAGE) from e

        logger.info(f"Registered account {account.id} ({mask_phone(phone_number)})")
        return account

    async def _load(self, account_id: str) -> Account:
        account = await self.store.get_by_id(account_id)
        if account is None:
            raise NotFoundError(f"Unknown account {account_id}")
        return account

    async def start_phone_verification(self, account_id: str) -> None:
        account = await self._load(account_id)
        try:
            await self.otp_provider.send(account.phone_number)
        except OtpError as e:
            raise e.to_account_error() from e

    async def confirm_phone_verification(self, account_id: str, code: str) -> Account:
        """
        Check the signup code and mark the account verified.

        Raises:
            ValidationError: Malformed or wrong code
            NotFoundError: Unknown account
        """
        reason = validate_otp_code(code)
        if reason:
            raise ValidationError(reason)

        account = await self._load(account_id)
        try:
            approved = await self.otp_provider.verify(account.phone_number, code)
        except OtpError as e:
            raise e.to_account_error() from e
        if not approved:
            raise ValidationError("Invalid verification code")

        account.is_verified = True
        trial_started = False
        if account.trial.trial_start is None:
            account.trial.start(self.clock())
            trial_started = True

        if not await self.store.update(account):
            raise NotFoundError(f"Account {account_id} vanished during verification")

        if trial_started:
            trial_end = account.trial.trial_end
            logger.info(f"Trial started for account {account.id}, ends {trial_end.isoformat()}")
            await notify_safely(
                self.notifier,
                account.email,
                "Welcome to ExamCoach! Your 48-hour free trial has started.",
            )
        return account
