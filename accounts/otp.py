"""
One-time code delivery providers

Supports multiple interchangeable backends:
- Demo (no SMS sent, fixed code) for development
- Twilio Verify (carrier SMS)
- Firebase Identity Toolkit (federated identity)

Every provider exposes the same two operations, ``send`` and ``verify``.
Failures are raised as OtpError with a kind the coordinator can surface
to the user; they are never fatal to the login attempt.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional

import httpx

from accounts.errors import OtpError, OtpErrorKind
from accounts.models import utcnow
from utils.logger import logger, mask_phone


class OtpProvider(ABC):
    """Abstract one-time code provider"""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def send(self, phone_number: str) -> None:
        """
        Send a code to ``phone_number``.

        Raises:
            OtpError: On any delivery failure
        """
        pass

    @abstractmethod
    async def verify(self, phone_number: str, code: str) -> bool:
        """
        Check a code previously sent to ``phone_number``.

        Returns:
            True if the provider accepts the code, False if it is wrong

        Raises:
            OtpError: If the provider could not answer
        """
        pass


class DemoOtpProvider(OtpProvider):
    """Sends nothing; accepts only the configured demo code"""

    def __init__(self, demo_code: str = "123456", history_size: int = 100):
        self.demo_code = demo_code
        # Most recent destinations only
        self.sent_to: Deque[str] = deque(maxlen=history_size)

    @property
    def name(self) -> str:
        return "demo"

    async def send(self, phone_number: str) -> None:
        self.sent_to.append(phone_number)
        logger.info(f"[DEMO] No SMS sent to {mask_phone(phone_number)}; use the demo code")

    async def verify(self, phone_number: str, code: str) -> bool:
        return code == self.demo_code


class TwilioOtpProvider(OtpProvider):
    """Twilio Verify v2 provider"""

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        verify_service_sid: Optional[str],
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.verify_service_sid = verify_service_sid
        self._client = None

    @property
    def name(self) -> str:
        return "twilio"

    @property
    def is_configured(self) -> bool:
        return all([self.account_sid, self.auth_token, self.verify_service_sid])

    def _get_client(self):
        if not self.is_configured:
            raise OtpError(OtpErrorKind.PROVIDER_REJECTED, "Twilio not configured")
        if self._client is None:
            from twilio.rest import Client
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def _service(self):
        return self._get_client().verify.v2.services(self.verify_service_sid)

    @staticmethod
    def _map_error(error: Exception) -> OtpError:
        from twilio.base.exceptions import TwilioRestException

        if isinstance(error, TwilioRestException):
            if error.status == 429:
                return OtpError(OtpErrorKind.RATE_LIMITED, str(error), retry_after=60)
            if error.code in (60200, 21211, 21614):
                return OtpError(OtpErrorKind.INVALID_PHONE_FORMAT, str(error))
            return OtpError(OtpErrorKind.PROVIDER_REJECTED, str(error))
        if isinstance(error, TimeoutError):
            return OtpError(OtpErrorKind.TIMEOUT, str(error))
        return OtpError(OtpErrorKind.NETWORK_UNAVAILABLE, str(error))

    async def send(self, phone_number: str) -> None:
        service = self._service()
        try:
            # The Twilio SDK is blocking; keep it off the event loop
            await asyncio.to_thread(
                service.verifications.create, to=phone_number, channel="sms"
            )
        except OtpError:
            raise
        except Exception as e:
            raise self._map_error(e) from e
        logger.info(f"Twilio verification sent to {mask_phone(phone_number)}")

    async def verify(self, phone_number: str, code: str) -> bool:
        service = self._service()
        try:
            check = await asyncio.to_thread(
                service.verification_checks.create, to=phone_number, code=code
            )
        except OtpError:
            raise
        except Exception as e:
            raise self._map_error(e) from e
        return check.status == "approved"


class FirebaseOtpProvider(OtpProvider):
    """
    Firebase Identity Toolkit provider.

    ``send`` returns a session handle that ``verify`` must present; it is
    kept per phone number until used.
    """

    BASE_URL = "https://identitytoolkit.googleapis.com/v1/accounts"

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._sessions: Dict[str, str] = {}

    @property
    def name(self) -> str:
        return "firebase"

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _post(self, action: str, body: Dict[str, str]) -> httpx.Response:
        if not self.is_configured:
            raise OtpError(OtpErrorKind.PROVIDER_REJECTED, "Firebase not configured")
        url = f"{self.BASE_URL}:{action}?key={self.api_key}"
        try:
            return await self._get_client().post(url, json=body)
        except httpx.TimeoutException as e:
            raise OtpError(OtpErrorKind.TIMEOUT, str(e)) from e
        except httpx.HTTPError as e:
            raise OtpError(OtpErrorKind.NETWORK_UNAVAILABLE, str(e)) from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("error", {}).get("message", "")
        except ValueError:
            return response.text

    async def send(self, phone_number: str) -> None:
        response = await self._post("sendVerificationCode", {"phoneNumber": phone_number})
        if response.status_code != 200:
            message = self._error_message(response)
            if message.startswith("TOO_MANY_ATTEMPTS_TRY_LATER"):
                raise OtpError(OtpErrorKind.RATE_LIMITED, message, retry_after=3600)
            if message.startswith("INVALID_PHONE_NUMBER"):
                raise OtpError(OtpErrorKind.INVALID_PHONE_FORMAT, message)
            raise OtpError(OtpErrorKind.PROVIDER_REJECTED, message)

        self._sessions[phone_number] = response.json().get("sessionInfo", "")
        logger.info(f"Firebase verification sent to {mask_phone(phone_number)}")

    async def verify(self, phone_number: str, code: str) -> bool:
        session_info = self._sessions.get(phone_number)
        if not session_info:
            return False

        response = await self._post(
            "signInWithPhoneNumber", {"sessionInfo": session_info, "code": code}
        )
        if response.status_code == 200:
            self._sessions.pop(phone_number, None)
            return True

        message = self._error_message(response)
        if message.startswith(("INVALID_CODE", "SESSION_EXPIRED", "INVALID_SESSION_INFO")):
            return False
        if message.startswith("TOO_MANY_ATTEMPTS_TRY_LATER"):
            raise OtpError(OtpErrorKind.RATE_LIMITED, message, retry_after=3600)
        raise OtpError(OtpErrorKind.PROVIDER_REJECTED, message)


class OtpRateLimiter:
    """Rate limiting for code delivery, per phone number"""

    def __init__(
        self,
        max_per_minute: int = 2,
        max_per_hour: int = 5,
        max_per_day: int = 10,
        clock: Callable[[], datetime] = utcnow,
        sweep_threshold: int = 10000,
    ):
        self._attempts: Dict[str, List[datetime]] = {}
        self._blocked: Dict[str, datetime] = {}
        self._clock = clock
        self.sweep_threshold = sweep_threshold

        self.max_per_minute = max_per_minute
        self.max_per_hour = max_per_hour
        self.max_per_day = max_per_day
        self.block_duration = timedelta(hours=24)

    def check(self, identifier: str) -> Optional[int]:
        """
        Check whether another send is allowed.

        Returns:
            None if allowed, otherwise the number of seconds to wait
        """
        now = self._clock()

        block_until = self._blocked.get(identifier)
        if block_until is not None:
            if now < block_until:
                return int((block_until - now).total_seconds()) + 1
            del self._blocked[identifier]

        attempts = [t for t in self._attempts.get(identifier, []) if now - t < timedelta(days=1)]
        if attempts:
            self._attempts[identifier] = attempts
        else:
            self._attempts.pop(identifier, None)

        minute = [t for t in attempts if now - t < timedelta(minutes=1)]
        hour = [t for t in attempts if now - t < timedelta(hours=1)]

        if len(minute) >= self.max_per_minute:
            return int((min(minute) + timedelta(minutes=1) - now).total_seconds()) + 1
        if len(hour) >= self.max_per_hour:
            return int((min(hour) + timedelta(hours=1) - now).total_seconds()) + 1
        if len(attempts) >= self.max_per_day:
            self._blocked[identifier] = now + self.block_duration
            return int(self.block_duration.total_seconds())
        return None

    def record(self, identifier: str) -> None:
        now = self._clock()
        self._attempts.setdefault(identifier, []).append(now)
        if len(self._attempts) > self.sweep_threshold:
            self._sweep(now)

    def _sweep(self, now: datetime) -> None:
        """Forget numbers with no attempt in the last day and expired blocks"""
        self._attempts = {
            key: attempts
            for key, attempts in self._attempts.items()
            if now - attempts[-1] < timedelta(days=1)
        }
        self._blocked = {key: until for key, until in self._blocked.items() if now < until}


class ThrottledOtpProvider(OtpProvider):
    """Applies OtpRateLimiter to another provider's ``send``"""

    def __init__(self, inner: OtpProvider, limiter: OtpRateLimiter):
        self.inner = inner
        self.limiter = limiter

    @property
    def name(self) -> str:
        return self.inner.name

    async def send(self, phone_number: str) -> None:
        retry_after = self.limiter.check(phone_number)
        if retry_after is not None:
            logger.warning(f"OTP send throttled for {mask_phone(phone_number)} ({retry_after}s)")
            raise OtpError(OtpErrorKind.RATE_LIMITED, "Local send limit reached", retry_after)
        await self.inner.send(phone_number)
        self.limiter.record(phone_number)

    async def verify(self, phone_number: str, code: str) -> bool:
        return await self.inner.verify(phone_number, code)


def create_otp_provider(settings) -> OtpProvider:
    """Select the OTP backend from configuration, wrapped in the send throttle"""
    backend = settings.OTP_PROVIDER.lower()

    if backend == "twilio":
        provider: OtpProvider = TwilioOtpProvider(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_VERIFY_SERVICE_SID,
        )
    elif backend == "firebase":
        provider = FirebaseOtpProvider(settings.FIREBASE_API_KEY)
    else:
        if backend != "demo":
            logger.warning(f"Unknown OTP_PROVIDER '{backend}', using demo provider")
        provider = DemoOtpProvider(settings.DEMO_OTP_CODE)

    limiter = OtpRateLimiter(
        max_per_minute=settings.OTP_MAX_PER_MINUTE,
        max_per_hour=settings.OTP_MAX_PER_HOUR,
        max_per_day=settings.OTP_MAX_PER_DAY,
    )
    logger.info(f"OTP provider: {provider.name}")
    return ThrottledOtpProvider(provider, limiter)
