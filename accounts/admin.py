"""
Administrative account operations

Every mutation is performed on behalf of an acting admin, who must be an
existing, active admin account at the time of the call. Creating admins
from the command line is the one exception: there is no acting admin yet.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional

from accounts import access_gate
from accounts.errors import NotFoundError, SecurityError, ValidationError
from accounts.identity_store import IdentityStore
from accounts.models import Account, Role, utcnow
from accounts.passwords import DEFAULT_ITERATIONS, hash_password, verify_password
from accounts.validation import (
    normalize_email,
    normalize_phone,
    validate_email,
    validate_password,
    validate_phone,
)
from utils.logger import logger, mask_phone


class AdminService:
    def __init__(
        self,
        store: IdentityStore,
        clock: Callable[[], datetime] = utcnow,
        default_country_code: str = "+234",
        password_iterations: int = DEFAULT_ITERATIONS,
    ):
        self.store = store
        self.clock = clock
        self.default_country_code = default_country_code
        self.password_iterations = password_iterations

    async def authenticate_admin(self, phone: str, password: str) -> Optional[Account]:
        phone_number = normalize_phone(phone or "", self.default_country_code)
        account = await self.store.get_by_phone(phone_number) if phone_number else None

        if account is None or not verify_password(password or "", account.password_hash):
            logger.warning(f"Admin login failed for {mask_phone(phone_number)}")
            return None
        if not account.is_admin or not account.is_account_active:
            logger.warning(f"Admin login refused for non-admin or disabled {mask_phone(phone_number)}")
            return None

        logger.info(f"Admin authenticated: {account.id}")
        return account

    async def require_active_admin(self, acting_admin_id: str) -> Account:
        """
        Load the acting admin.

        Raises:
            SecurityError: If the account is missing, disabled or not an admin
        """
        admin = await self.store.get_by_id(acting_admin_id) if acting_admin_id else None
        if admin is None or not admin.is_admin or not admin.is_account_active:
            raise SecurityError(f"Acting principal {acting_admin_id} is not an active admin")
        return admin

    async def _load_target(self, account_id: str) -> Account:
        account = await self.store.get_by_id(account_id)
        if account is None:
            raise NotFoundError(f"Unknown account {account_id}")
        return account

    async def enable(self, account_id: str, acting_admin_id: str) -> Account:
        admin = await self.require_active_admin(acting_admin_id)
        account = await self._load_target(account_id)

        account.enable(admin.id, self.clock())
        if not await self.store.update(account):
            raise NotFoundError(f"Account {account_id} vanished during enable")
        logger.info(f"Account {account.id} enabled by admin {admin.id}")
        return account

    async def disable(self, account_id: str, reason: str, acting_admin_id: str) -> Account:
        admin = await self.require_active_admin(acting_admin_id)
        account = await self._load_target(account_id)

        account.disable(reason, admin.id, self.clock())
        if not await self.store.update(account):
            raise NotFoundError(f"Account {account_id} vanished during disable")
        logger.info(f"Account {account.id} disabled by admin {admin.id}: {reason}")
        return account

    async def list_accounts(self) -> List[Account]:
        """All accounts, newest registration first"""
        accounts = await self.store.list_accounts()
        floor = datetime.min.replace(tzinfo=self.clock().tzinfo)
        return sorted(
            accounts,
            key=lambda a: a.registration_timestamp or floor,
            reverse=True,
        )

    async def user_statistics(self) -> Dict[str, int]:
        accounts = await self.store.list_accounts()
        now = self.clock()
        return {
            "total_users": len(accounts),
            "active_users": sum(1 for a in accounts if a.is_account_active),
            "disabled_users": sum(1 for a in accounts if not a.is_account_active),
            "verified_users": sum(1 for a in accounts if a.is_verified),
            "admin_users": sum(1 for a in accounts if a.is_admin),
            "trial_users": sum(1 for a in accounts if access_gate.is_on_trial(a, now)),
            "subscribed_users": sum(1 for a in accounts if access_gate.has_active_subscription(a, now)),
        }

    async def ensure_default_admin(
        self,
        phone: Optional[str],
        password: Optional[str],
        email: Optional[str] = None,
    ) -> Optional[Account]:
        """Seed the configured super-admin if it does not exist yet"""
        if not phone or not password:
            return None

        phone_number = normalize_phone(phone, self.default_country_code)
        existing = await self.store.get_by_phone(phone_number)
        if existing is not None:
            return existing

        admin = Account(
            phone_number=phone_number,
            email=normalize_email(email),
            full_name="Administrator",
            password_hash=hash_password(password, self.password_iterations),
            role=Role.SUPER_ADMIN,
            is_verified=True,
            registration_timestamp=self.clock(),
        )
        admin = await self.store.insert(admin)
        logger.info(f"Default admin created: {mask_phone(phone_number)}")
        return admin

    async def create_admin_user(
        self,
        phone: str,
        full_name: str,
        email: str,
        password: str,
        role: Role = Role.ADMIN,
        acting_admin_id: Optional[str] = None,
    ) -> Account:
        """
        Create a verified, active admin account.

        Called with ``acting_admin_id`` from the API, where only a
        super-admin may create admins; the command-line tool omits it.

        Raises:
            ValidationError: Bad input or a non-admin role
            DuplicateAccountError: If the phone or email is already taken
            SecurityError: If the acting account is not an active super-admin
        """
        if acting_admin_id is not None:
            admin = await self.require_active_admin(acting_admin_id)
            if admin.role != Role.SUPER_ADMIN:
                raise SecurityError(f"Admin {admin.id} is not a super-admin")

        phone_number = normalize_phone(phone or "", self.default_country_code)
        if not role.is_admin:
            raise ValidationError("Role must be admin or super-admin")
        if not full_name or not full_name.strip():
            raise ValidationError("Full name is required")
        if not email or not email.strip():
            raise ValidationError("Email is required")
        reason = validate_phone(phone_number) or validate_email(email) or validate_password(password)
        if reason:
            raise ValidationError(reason)

        account = Account(
            phone_number=phone_number,
            email=normalize_email(email),
            full_name=full_name.strip(),
            password_hash=hash_password(password, self.password_iterations),
            role=role,
            is_verified=True,
            registration_timestamp=self.clock(),
        )
        account = await self.store.insert(account)
        logger.info(f"Admin user created: {account.id} ({mask_phone(phone_number)}, {role.value})")
        return account

    async def delete_account_by_phone(self, phone: str, acting_admin_id: str) -> bool:
        """Permanently remove an account; returns False if no account has that phone"""
        admin = await self.require_active_admin(acting_admin_id)
        phone_number = normalize_phone(phone or "", self.default_country_code)
        account = await self.store.get_by_phone(phone_number) if phone_number else None
        if account is None:
            logger.info(f"No account to delete for {mask_phone(phone_number)}")
            return False
        if account.id == admin.id:
            raise SecurityError(f"Admin {admin.id} attempted to delete own account")

        deleted = await self.store.delete(account.id)
        if deleted:
            logger.info(f"Account {account.id} deleted by admin {admin.id}")
        return deleted
