#!/usr/bin/env python3
"""
Identity Store Tests

The REST store runs against an httpx MockTransport standing in for a
PostgREST table.
"""

import json
from datetime import timedelta

import httpx
import pytest

from accounts.errors import DuplicateAccountError, StoreUnavailable
from accounts.identity_store import (
    InMemoryIdentityStore,
    RestIdentityStore,
    create_identity_store,
)
from accounts.models import Account, SubscriptionStatus
from config import Settings
from tests.conftest import START_TIME, TEST_EMAIL, TEST_PHONE


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class TestInMemoryStore:

    async def test_insert_assigns_id_and_reads_back(self, store):
        inserted = await store.insert(Account(phone_number=TEST_PHONE, email=TEST_EMAIL))

        assert inserted.id
        assert (await store.get_by_phone(TEST_PHONE)).id == inserted.id
        assert (await store.get_by_email(TEST_EMAIL.upper())).id == inserted.id
        assert (await store.get_by_id(inserted.id)).phone_number == TEST_PHONE
        assert await store.get_by_phone("+2348000000001") is None

    async def test_insert_if_absent(self, store):
        await store.insert(Account(phone_number=TEST_PHONE, email=TEST_EMAIL))

        with pytest.raises(DuplicateAccountError):
            await store.insert(Account(phone_number=TEST_PHONE))
        with pytest.raises(DuplicateAccountError):
            await store.insert(Account(phone_number="+2348000000001", email=TEST_EMAIL))

    async def test_accounts_without_email_do_not_collide(self, store):
        await store.insert(Account(phone_number=TEST_PHONE))
        await store.insert(Account(phone_number="+2348000000001"))
        assert len(await store.list_accounts()) == 2

    async def test_reads_are_copies(self, store):
        inserted = await store.insert(Account(phone_number=TEST_PHONE))
        loaded = await store.get_by_id(inserted.id)
        loaded.is_verified = True

        assert not (await store.get_by_id(inserted.id)).is_verified

    async def test_round_trip_preserves_access_fields(self, store):
        account = Account(phone_number=TEST_PHONE)
        account.trial.start(START_TIME)
        account.subscription.activate(START_TIME, "ref_1", 5000)
        inserted = await store.insert(account)

        loaded = await store.get_by_id(inserted.id)
        assert loaded.trial.trial_start == START_TIME
        assert loaded.subscription.status == SubscriptionStatus.PAID
        assert loaded.subscription.paid_until == START_TIME + timedelta(days=7)

    async def test_update_reindexes_email(self, store):
        inserted = await store.insert(Account(phone_number=TEST_PHONE, email=TEST_EMAIL))
        inserted.email = "new@example.com"

        assert await store.update(inserted)
        assert await store.get_by_email(TEST_EMAIL) is None
        assert (await store.get_by_email("new@example.com")).id == inserted.id

    async def test_update_unknown_account(self, store):
        assert not await store.update(Account(phone_number=TEST_PHONE, id="ghost"))

    async def test_delete_frees_phone_and_email(self, store):
        inserted = await store.insert(Account(phone_number=TEST_PHONE, email=TEST_EMAIL))

        assert await store.delete(inserted.id)
        assert await store.get_by_id(inserted.id) is None
        assert await store.get_by_phone(TEST_PHONE) is None
        assert await store.get_by_email(TEST_EMAIL) is None
        assert not await store.delete(inserted.id)

        await store.insert(Account(phone_number=TEST_PHONE, email=TEST_EMAIL))

    async def test_unavailable(self, store):
        store.set_available(False)
        with pytest.raises(StoreUnavailable):
            await store.get_by_phone(TEST_PHONE)


# ============================================================================
# REST STORE
# ============================================================================

def _rest_store(handler) -> RestIdentityStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RestIdentityStore("https://db.example.co", "anon-key", client=client)


class TestRestStore:

    async def test_lookup_by_phone(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["apikey"] = request.headers["apikey"]
            seen["path"] = request.url.path
            return httpx.Response(200, json=[{"id": "acc-1", "phone_number": TEST_PHONE}])

        account = await _rest_store(handler).get_by_phone(TEST_PHONE)

        assert account.id == "acc-1"
        assert seen["path"] == "/rest/v1/users"
        assert seen["params"]["phone_number"] == f"eq.{TEST_PHONE}"
        assert seen["apikey"] == "anon-key"

    async def test_not_found_is_none(self):
        store = _rest_store(lambda request: httpx.Response(200, json=[]))
        assert await store.get_by_id("missing") is None

    async def test_insert_posts_record(self):
        def handler(request):
            body = json.loads(request.content)
            assert request.method == "POST"
            assert request.headers["Prefer"] == "return=representation"
            return httpx.Response(201, json=[body])

        inserted = await _rest_store(handler).insert(Account(phone_number=TEST_PHONE, email="A@B.COM"))
        assert inserted.id
        assert inserted.email == "a@b.com"

    async def test_conflict_is_duplicate(self):
        store = _rest_store(lambda request: httpx.Response(409, text='duplicate key "users_email_key"'))
        with pytest.raises(DuplicateAccountError) as exc_info:
            await store.insert(Account(phone_number=TEST_PHONE, email=TEST_EMAIL))
        assert "email address" in exc_info.value.user_message

    async def test_update_patches_by_id(self):
        def handler(request):
            assert request.method == "PATCH"
            assert request.url.params["id"] == "eq.acc-1"
            assert "id" not in json.loads(request.content)
            return httpx.Response(200, json=[{"id": "acc-1"}])

        assert await _rest_store(handler).update(Account(phone_number=TEST_PHONE, id="acc-1"))

    @pytest.mark.parametrize("status,rows,expected", [
        (200, [{"id": "acc-1"}], True),
        (200, [], False),
        (204, None, True),
    ])
    async def test_delete_by_id(self, status, rows, expected):
        def handler(request):
            assert request.method == "DELETE"
            assert request.url.params["id"] == "eq.acc-1"
            return httpx.Response(status, json=rows)

        assert await _rest_store(handler).delete("acc-1") is expected

    async def test_rejected_delete_is_store_unavailable(self):
        store = _rest_store(lambda request: httpx.Response(403, json={"message": "denied"}))
        with pytest.raises(StoreUnavailable):
            await store.delete("acc-1")

    @pytest.mark.parametrize("failure", ["server_error", "connect", "timeout"])
    async def test_infrastructure_failures_are_store_unavailable(self, failure):
        def handler(request):
            if failure == "connect":
                raise httpx.ConnectError("refused", request=request)
            if failure == "timeout":
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(503)

        with pytest.raises(StoreUnavailable):
            await _rest_store(handler).get_by_phone(TEST_PHONE)

    async def test_unconfigured_is_store_unavailable(self):
        with pytest.raises(StoreUnavailable):
            await RestIdentityStore(None, None).get_by_phone(TEST_PHONE)


class TestStoreSelection:

    def test_memory_default(self):
        assert isinstance(create_identity_store(Settings(_env_file=None)), InMemoryIdentityStore)

    def test_rest(self):
        store = create_identity_store(Settings(
            _env_file=None,
            IDENTITY_STORE="rest",
            SUPABASE_URL="https://db.example.co/",
            SUPABASE_ANON_KEY="key",
        ))
        assert isinstance(store, RestIdentityStore)
        assert store.base_url == "https://db.example.co"
