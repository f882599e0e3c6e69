"""
Service wiring and request dependencies for the ExamCoach access API

All services are built once at startup into a ServiceContainer stored on
``app.state``; routes receive it through ``get_services``.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from accounts.admin import AdminService
from accounts.identity_store import IdentityStore, create_identity_store
from accounts.models import Role, utcnow
from accounts.notifications import Notifier, create_notifier
from accounts.otp import OtpProvider, create_otp_provider
from accounts.registration import RegistrationService
from accounts.two_factor import LoginSessionRegistry, TwoFactorCoordinator
from accounts.webhooks import WebhookProcessor
from config import Settings
from utils.logger import logger

security_scheme = HTTPBearer(auto_error=False)


@dataclass
class SessionToken:
    account_id: str
    is_admin: bool
    expires_at: datetime


class TokenRegistry:
    """Opaque bearer tokens for authenticated accounts, kept in process"""

    def __init__(self, ttl: timedelta = timedelta(hours=12), clock: Callable[[], datetime] = utcnow):
        self.ttl = ttl
        self.clock = clock
        self._tokens: Dict[str, SessionToken] = {}

    def issue(self, account_id: str, is_admin: bool = False) -> str:
        token = secrets.token_urlsafe(32)
        self._tokens[token] = SessionToken(account_id, is_admin, self.clock() + self.ttl)
        return token

    def resolve(self, token: str) -> Optional[SessionToken]:
        session = self._tokens.get(token)
        if session is None:
            return None
        if self.clock() >= session.expires_at:
            del self._tokens[token]
            return None
        return session

    def revoke(self, token: str) -> bool:
        return self._tokens.pop(token, None) is not None


@dataclass
class ServiceContainer:
    """Every long-lived service the API uses, created once per process"""
    settings: Settings
    store: IdentityStore
    otp_provider: OtpProvider
    notifier: Notifier
    registration: RegistrationService
    admin: AdminService
    webhooks: WebhookProcessor
    logins: LoginSessionRegistry
    tokens: TokenRegistry
    clock: Callable[[], datetime] = field(default=utcnow)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[IdentityStore] = None,
        otp_provider: Optional[OtpProvider] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "ServiceContainer":
        store = store or create_identity_store(settings)
        otp_provider = otp_provider or create_otp_provider(settings)
        notifier = notifier or create_notifier(settings)
        country_code = settings.DEFAULT_COUNTRY_CODE
        iterations = settings.PASSWORD_HASH_ITERATIONS

        def new_coordinator() -> TwoFactorCoordinator:
            return TwoFactorCoordinator(
                store,
                otp_provider,
                clock=clock,
                window=settings.second_factor_window,
                default_country_code=country_code,
            )

        return cls(
            settings=settings,
            store=store,
            otp_provider=otp_provider,
            notifier=notifier,
            registration=RegistrationService(
                store,
                otp_provider,
                notifier,
                clock=clock,
                default_country_code=country_code,
                password_iterations=iterations,
            ),
            admin=AdminService(
                store,
                clock=clock,
                default_country_code=country_code,
                password_iterations=iterations,
            ),
            webhooks=WebhookProcessor(
                settings.PAYSTACK_WEBHOOK_SECRET,
                store,
                notifier,
                period=settings.subscription_period,
                clock=clock,
                display_tz=settings.display_timezone,
            ),
            logins=LoginSessionRegistry(
                new_coordinator,
                ttl=timedelta(minutes=settings.SESSION_TTL_MINUTES),
                clock=clock,
            ),
            tokens=TokenRegistry(clock=clock),
            clock=clock,
        )

    async def close(self) -> None:
        await self.store.close()


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def get_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    services: ServiceContainer = Depends(get_services),
) -> SessionToken:
    """
    FastAPI dependency resolving the bearer token to a session.

    The account is reloaded on every request, so a token stops working as
    soon as its account is disabled or removed, and admin rights follow the
    stored role rather than the role at login.

    Raises HTTPException 401 if the token is missing, unknown or expired,
    or if its account no longer exists or is disabled.
    """
    session = services.tokens.resolve(credentials.credentials) if credentials else None
    if session is None:
        raise _unauthorized()

    account = await services.store.get_by_id(session.account_id)
    if account is None or not account.is_account_active:
        services.tokens.revoke(credentials.credentials)
        logger.warning(f"Token for inactive account {session.account_id} revoked")
        raise _unauthorized()

    return SessionToken(
        account_id=session.account_id,
        is_admin=session.is_admin and account.is_admin,
        expires_at=session.expires_at,
    )


async def require_admin(session: SessionToken = Depends(get_session)) -> SessionToken:
    if not session.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return session


async def require_super_admin(
    session: SessionToken = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
) -> SessionToken:
    account = await services.store.get_by_id(session.account_id)
    if account is None or account.role != Role.SUPER_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super-admin access required",
        )
    return session


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": "Bearer"},
    )
