"""
Identity Store backends

The Identity Store is the single source of truth for account records.
Two interchangeable backends are provided:
- InMemoryIdentityStore: local development and tests
- RestIdentityStore: Supabase/PostgREST table over HTTP

Both raise StoreUnavailable for infrastructure failures so callers can
tell "store down" apart from "not found" (which is just ``None``).
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from accounts.errors import DuplicateAccountError, StoreUnavailable
from accounts.models import Account, utcnow
from utils.logger import logger, mask_phone

DUPLICATE_PHONE_MESSAGE = (
    "A user with this phone number already exists. "
    "Please use a different phone number or try logging in instead."
)
DUPLICATE_EMAIL_MESSAGE = (
    "A user with this email address already exists. "
    "Please use a different email address or try logging in instead."
)


class IdentityStore(ABC):
    """
    Abstract account store.

    All operations are remote calls in production and must be awaited.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def get_by_phone(self, phone: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def get_by_id(self, account_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def insert(self, account: Account) -> Account:
        """
        Insert a new account if its phone/email are free.

        Raises:
            DuplicateAccountError: If the phone or email is already taken
            StoreUnavailable: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def update(self, account: Account) -> bool:
        """Persist the full account; returns False if it does not exist"""
        pass

    @abstractmethod
    async def delete(self, account_id: str) -> bool:
        """Remove the account; returns False if it does not exist"""
        pass

    @abstractmethod
    async def list_accounts(self) -> List[Account]:
        pass

    async def close(self) -> None:
        """Release any held connections"""
        return None


class InMemoryIdentityStore(IdentityStore):
    """
    Process-local store holding persisted row shapes.

    Reads always rebuild an Account from its record, so callers can never
    mutate stored state without going through ``update``.
    """

    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._by_phone: Dict[str, str] = {}
        self._by_email: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._available = True

    @property
    def name(self) -> str:
        return "memory"

    def set_available(self, available: bool) -> None:
        """Simulate an outage (every call raises StoreUnavailable while False)"""
        self._available = available

    def _check_available(self) -> None:
        if not self._available:
            raise StoreUnavailable("In-memory identity store marked unavailable")

    def _load(self, account_id: Optional[str]) -> Optional[Account]:
        if account_id is None or account_id not in self._rows:
            return None
        return Account.from_record(dict(self._rows[account_id]))

    async def get_by_phone(self, phone: str) -> Optional[Account]:
        self._check_available()
        return self._load(self._by_phone.get(phone))

    async def get_by_email(self, email: str) -> Optional[Account]:
        self._check_available()
        return self._load(self._by_email.get(email.strip().lower()))

    async def get_by_id(self, account_id: str) -> Optional[Account]:
        self._check_available()
        return self._load(account_id)

    async def insert(self, account: Account) -> Account:
        self._check_available()
        async with self._lock:
            if account.phone_number in self._by_phone:
                raise DuplicateAccountError(DUPLICATE_PHONE_MESSAGE)
            email_key = account.email.strip().lower() if account.email else None
            if email_key and email_key in self._by_email:
                raise DuplicateAccountError(DUPLICATE_EMAIL_MESSAGE)

            if not account.id:
                account.id = uuid.uuid4().hex
            if account.registration_timestamp is None:
                account.registration_timestamp = utcnow()

            self._rows[account.id] = account.to_record()
            self._by_phone[account.phone_number] = account.id
            if email_key:
                self._by_email[email_key] = account.id

        logger.debug(f"Inserted account {account.id} ({mask_phone(account.phone_number)})")
        return self._load(account.id)

    async def update(self, account: Account) -> bool:
        self._check_available()
        async with self._lock:
            if not account.id or account.id not in self._rows:
                return False

            previous = self._rows[account.id]
            if previous.get("email"):
                self._by_email.pop(previous["email"].strip().lower(), None)
            self._by_phone.pop(previous["phone_number"], None)

            self._rows[account.id] = account.to_record()
            self._by_phone[account.phone_number] = account.id
            if account.email:
                self._by_email[account.email.strip().lower()] = account.id
        return True

    async def delete(self, account_id: str) -> bool:
        self._check_available()
        async with self._lock:
            row = self._rows.pop(account_id, None)
            if row is None:
                return False
            self._by_phone.pop(row["phone_number"], None)
            if row.get("email"):
                self._by_email.pop(row["email"].strip().lower(), None)
        logger.debug(f"Deleted account {account_id}")
        return True

    async def list_accounts(self) -> List[Account]:
        self._check_available()
        return [Account.from_record(dict(row)) for row in self._rows.values()]

    def clear(self) -> None:
        self._rows.clear()
        self._by_phone.clear()
        self._by_email.clear()


class RestIdentityStore(IdentityStore):
    """
    Supabase (PostgREST) backed store.

    Uses the table's REST endpoint directly with the anon/service key.
    """

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        table: str = "users",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.table = table
        self.timeout = timeout
        self._client = client

    @property
    def name(self) -> str:
        return "rest"

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    @property
    def _endpoint(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key or "",
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _request(
        self,
        method: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        if not self.is_configured:
            raise StoreUnavailable("REST identity store is not configured")

        try:
            response = await self._get_client().request(
                method,
                self._endpoint,
                params=params,
                json=json,
                headers=self._headers(),
            )
        except httpx.TimeoutException as e:
            raise StoreUnavailable(f"Identity store timed out: {e}") from e
        except httpx.HTTPError as e:
            raise StoreUnavailable(f"Identity store request failed: {e}") from e

        if response.status_code >= 500:
            raise StoreUnavailable(f"Identity store error {response.status_code}")
        return response

    async def _select_one(self, column: str, value: str) -> Optional[Account]:
        response = await self._request(
            "GET",
            params={column: f"eq.{value}", "select": "*", "limit": "1"},
        )
        if response.status_code != 200:
            raise StoreUnavailable(f"Identity store lookup failed: {response.status_code}")
        rows = response.json()
        return Account.from_record(rows[0]) if rows else None

    async def get_by_phone(self, phone: str) -> Optional[Account]:
        return await self._select_one("phone_number", phone)

    async def get_by_email(self, email: str) -> Optional[Account]:
        return await self._select_one("email", email.strip().lower())

    async def get_by_id(self, account_id: str) -> Optional[Account]:
        return await self._select_one("id", account_id)

    async def insert(self, account: Account) -> Account:
        if not account.id:
            account.id = uuid.uuid4().hex
        if account.registration_timestamp is None:
            account.registration_timestamp = utcnow()
        if account.email:
            account.email = account.email.strip().lower()

        response = await self._request("POST", json=account.to_record())
        if response.status_code == 409:
            # Unique constraint violation; the message names the column
            if "email" in response.text:
                raise DuplicateAccountError(DUPLICATE_EMAIL_MESSAGE)
            raise DuplicateAccountError(DUPLICATE_PHONE_MESSAGE)
        if response.status_code not in (200, 201):
            raise StoreUnavailable(f"Identity store insert failed: {response.status_code}")

        rows = response.json()
        return Account.from_record(rows[0]) if rows else account

    async def update(self, account: Account) -> bool:
        if not account.id:
            return False
        record = account.to_record()
        record.pop("id")
        response = await self._request("PATCH", params={"id": f"eq.{account.id}"}, json=record)
        if response.status_code not in (200, 204):
            raise StoreUnavailable(f"Identity store update failed: {response.status_code}")
        if response.status_code == 200:
            return bool(response.json())
        return True

    async def delete(self, account_id: str) -> bool:
        response = await self._request("DELETE", params={"id": f"eq.{account_id}"})
        if response.status_code not in (200, 204):
            raise StoreUnavailable(f"Identity store delete failed: {response.status_code}")
        if response.status_code == 200:
            return bool(response.json())
        return True

    async def list_accounts(self) -> List[Account]:
        response = await self._request("GET", params={"select": "*"})
        if response.status_code != 200:
            raise StoreUnavailable(f"Identity store listing failed: {response.status_code}")
        return [Account.from_record(row) for row in response.json()]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_identity_store(settings) -> IdentityStore:
    """Select the identity store backend from configuration"""
    backend = settings.IDENTITY_STORE.lower()
    if backend == "rest":
        store = RestIdentityStore(
            base_url=settings.SUPABASE_URL,
            api_key=settings.SUPABASE_ANON_KEY,
            table=settings.SUPABASE_TABLE,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        if not store.is_configured:
            logger.warning("REST identity store selected but SUPABASE_URL/SUPABASE_ANON_KEY not set")
        return store
    if backend != "memory":
        logger.warning(f"Unknown IDENTITY_STORE '{backend}', using in-memory store")
    return InMemoryIdentityStore()
