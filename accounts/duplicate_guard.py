"""
Duplicate registration guard

Checks a candidate phone/email pair against the identity store before
an account is created. The phone number is checked first because it is
the key used for authentication.

If the store cannot be reached the guard lets registration proceed
(fail-open) and logs the condition. A collision that slips through is
still caught by the store's insert-if-absent.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from accounts.errors import StoreUnavailable, report_error
from accounts.identity_store import (
    DUPLICATE_EMAIL_MESSAGE,
    DUPLICATE_PHONE_MESSAGE,
    IdentityStore,
)
from accounts.validation import PHONE_REQUIRED, normalize_phone
from utils.logger import logger, mask_phone


class DuplicateKind(str, Enum):
    NO_DUPLICATE = "NoDuplicate"
    MISSING_PHONE_NUMBER = "MissingPhoneNumber"
    DUPLICATE_PHONE = "DuplicatePhone"
    DUPLICATE_EMAIL = "DuplicateEmail"


@dataclass
class DuplicateResult:
    kind: DuplicateKind
    message: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.kind in (DuplicateKind.DUPLICATE_PHONE, DuplicateKind.DUPLICATE_EMAIL)

    @property
    def ok(self) -> bool:
        return self.kind == DuplicateKind.NO_DUPLICATE


class DuplicateRegistrationGuard:
    """Phone numbers are normalized the same way registration stores them"""

    def __init__(self, store: IdentityStore, default_country_code: str = "+234"):
        self.store = store
        self.default_country_code = default_country_code

    async def check_duplicate(self, phone_number: str, email: Optional[str] = None) -> DuplicateResult:
        phone = normalize_phone(phone_number or "", self.default_country_code)
        if not phone:
            return DuplicateResult(DuplicateKind.MISSING_PHONE_NUMBER, PHONE_REQUIRED)

        try:
            if await self.store.get_by_phone(phone) is not None:
                logger.info(f"Registration rejected: phone {mask_phone(phone)} already registered")
                return DuplicateResult(DuplicateKind.DUPLICATE_PHONE, DUPLICATE_PHONE_MESSAGE)

            candidate_email = (email or "").strip()
            if candidate_email and await self.store.get_by_email(candidate_email) is not None:
                logger.info("Registration rejected: email already registered")
                return DuplicateResult(DuplicateKind.DUPLICATE_EMAIL, DUPLICATE_EMAIL_MESSAGE)
        except StoreUnavailable as e:
            # Fail open: registration stays available while the store is degraded
            report_error(e, "duplicate_check")
            logger.warning("Duplicate check skipped, identity store unavailable")
            return DuplicateResult(DuplicateKind.NO_DUPLICATE)

        return DuplicateResult(DuplicateKind.NO_DUPLICATE)
