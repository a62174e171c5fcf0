"""Tests for the backend client, query builder and response shape."""

import json
import time

import httpx
import pytest

from safeplate.backend import (
    SESSION_STORAGE_KEY,
    BackendClient,
    BackendError,
    QueryBuilder,
    Session,
    create_backend_client,
    error_message,
    handle_response,
)
from safeplate.config import SafeplateConfig
from safeplate.storage import MemoryStorage

BASE_URL = "https://demo.supabase.co"


def _token_payload(user_id: str = "u1", expires_in: int = 3600) -> dict:
    return {
        "access_token": f"token-{user_id}",
        "refresh_token": f"refresh-{user_id}",
        "token_type": "bearer",
        "expires_in": expires_in,
        "user": {"id": user_id, "email": f"{user_id}@example.com"},
    }


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, routes=None):
        self.requests: list[httpx.Request] = []
        self.routes = routes or {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(200, json=[])
        if callable(handler):
            return handler(request)
        return handler


def _client(recorder: Recorder, storage=None) -> BackendClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return BackendClient(BASE_URL, "anon-key", storage=storage, http_client=http)


class TestHandleResponse:
    def test_data_passes_through(self):
        result = handle_response(data=[1, 2], count=2)
        assert result.ok
        assert result.data == [1, 2]
        assert result.count == 2

    def test_error_nulls_data(self):
        result = handle_response(data={"x": 1}, error={"message": "boom", "code": "42P01"})
        assert not result.ok
        assert result.data is None
        assert result.error.message == "boom"
        assert result.error.code == "42P01"

    def test_error_payload_variants(self):
        assert BackendError.from_payload({"error_description": "bad grant"}).message == "bad grant"
        assert BackendError.from_payload({"msg": "weak password"}).message == "weak password"
        assert BackendError.from_payload("plain text").message == "plain text"
        assert BackendError.from_payload(None).message == "An unexpected error occurred"

    def test_error_message_helper(self):
        assert error_message(None, "fallback") == "fallback"
        assert error_message(BackendError("real"), "fallback") == "real"


class TestQueryBuilder:
    def _builder(self) -> QueryBuilder:
        return QueryBuilder(client=None, table="restaurants")

    def test_select_and_filters(self):
        q = (
            self._builder()
            .select("""
                *,
                restaurant_reviews(rating)
            """, count="exact")
            .eq("is_active", True)
            .gte("latitude", 35.5)
            .in_("cuisine_types", ["thai", "new american"])
            .order("name")
            .limit(20)
        )
        assert q.params == [
            ("select", "*,restaurant_reviews(rating)"),
            ("is_active", "eq.true"),
            ("latitude", "gte.35.5"),
            ("cuisine_types", 'in.(thai,"new american")'),
            ("order", "name.asc"),
            ("limit", "20"),
        ]
        assert q.build_headers() == {"Prefer": "count=exact"}

    def test_eq_none_is_null_check(self):
        q = self._builder().eq("family_member_id", None)
        assert q.params == [("family_member_id", "is.null")]

    def test_range_replaces_limit(self):
        q = self._builder().limit(5).range(20, 39)
        assert ("offset", "20") in q.params
        assert ("limit", "20") in q.params
        assert ("limit", "5") not in q.params

    def test_or_and_ilike_use_star_wildcards(self):
        q = self._builder().ilike("name", "%pho%").or_("name.ilike.%a%,brand.ilike.%a%")
        assert q.params == [
            ("name", "ilike.*pho*"),
            ("or", "(name.ilike.*a*,brand.ilike.*a*)"),
        ]

    def test_array_operators(self):
        q = self._builder().overlaps("allergen_friendly", ["gluten", "dairy"]).contains("tags", ["x"])
        assert q.params == [
            ("allergen_friendly", "ov.{gluten,dairy}"),
            ("tags", "cs.{x}"),
        ]

    def test_mutations_set_method_and_prefer(self):
        q = self._builder().insert({"name": "x"}).select().single()
        assert q.method == "POST"
        headers = q.build_headers()
        assert headers["Prefer"] == "return=representation"
        assert headers["Accept"] == "application/vnd.pgrst.object+json"
        assert self._builder().update({"a": 1}).method == "PATCH"
        assert self._builder().delete().method == "DELETE"


class TestRestRequests:
    @pytest.mark.asyncio
    async def test_anonymous_headers_and_count(self):
        recorder = Recorder({
            ("GET", "/rest/v1/products"): httpx.Response(
                200, json=[{"id": "p1"}], headers={"Content-Range": "0-0/42"}
            ),
        })
        async with _client(recorder) as client:
            result = await client.table("products").select("*", count="exact").eq("barcode", "49").execute()

        assert result.ok
        assert result.data == [{"id": "p1"}]
        assert result.count == 42
        request = recorder.requests[0]
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"
        assert request.headers["x-application-name"] == "restricted-diet-app"
        assert request.headers["prefer"] == "count=exact"
        assert request.url.params["barcode"] == "eq.49"

    @pytest.mark.asyncio
    async def test_error_response_is_mapped(self):
        recorder = Recorder({
            ("GET", "/rest/v1/products"): httpx.Response(
                400, json={"message": "column does not exist", "code": "42703"}
            ),
        })
        async with _client(recorder) as client:
            result = await client.table("products").select("nope").execute()
        assert result.data is None
        assert result.error.message == "column does not exist"
        assert result.error.code == "42703"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(Recorder({("GET", "/rest/v1/products"): boom})) as client:
            result = await client.table("products").select().execute()
        assert result.error.message.startswith("Network error:")

    @pytest.mark.asyncio
    async def test_maybe_single_unwraps(self):
        recorder = Recorder({("GET", "/rest/v1/products"): httpx.Response(200, json=[])})
        async with _client(recorder) as client:
            result = await client.table("products").select().maybe_single().execute()
        assert result.ok
        assert result.data is None

    @pytest.mark.asyncio
    async def test_rpc(self):
        recorder = Recorder({
            ("POST", "/rest/v1/rpc/nearby"): httpx.Response(200, json={"ok": True}),
        })
        async with _client(recorder) as client:
            result = await client.rpc("nearby", {"lat": 1})
        assert result.data == {"ok": True}
        assert json.loads(recorder.requests[0].content) == {"lat": 1}


class TestAuth:
    @pytest.mark.asyncio
    async def test_sign_in_persists_session_and_emits(self):
        storage = MemoryStorage()
        recorder = Recorder({
            ("POST", "/auth/v1/token"): httpx.Response(200, json=_token_payload()),
        })
        events = []
        async with _client(recorder, storage) as client:
            client.on_auth_state_change(lambda event, session: events.append(event))
            result = await client.sign_in_with_password("u1@example.com", "secret")

            assert result.ok
            assert result.data["user"]["id"] == "u1"
            assert recorder.requests[0].url.params["grant_type"] == "password"
            stored = await storage.get_object(SESSION_STORAGE_KEY)
            assert stored["access_token"] == "token-u1"
            assert events == ["SIGNED_IN"]

            # Later table calls carry the user's token
            await client.table("products").select().execute()
            assert recorder.requests[-1].headers["authorization"] == "Bearer token-u1"

    @pytest.mark.asyncio
    async def test_bad_credentials(self):
        recorder = Recorder({
            ("POST", "/auth/v1/token"): httpx.Response(
                400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
            ),
        })
        async with _client(recorder) as client:
            result = await client.sign_in_with_password("x@example.com", "wrong")
        assert result.error.message == "Invalid login credentials"

    @pytest.mark.asyncio
    async def test_session_restored_from_storage(self):
        storage = MemoryStorage()
        session = Session(
            access_token="stored-token",
            refresh_token="r",
            expires_at=int(time.time()) + 3600,
            user={"id": "u7"},
        )
        await storage.set_object(SESSION_STORAGE_KEY, {
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "token_type": session.token_type,
            "expires_at": session.expires_at,
            "user": session.user,
        })
        events = []
        async with _client(Recorder(), storage) as client:
            client.on_auth_state_change(lambda event, s: events.append((event, s.user_id if s else None)))
            restored = await client.get_session()
            again = await client.get_session()
        assert restored.user_id == "u7"
        assert again is restored
        assert events == [("INITIAL_SESSION", "u7")]

    @pytest.mark.asyncio
    async def test_expired_session_is_refreshed(self):
        storage = MemoryStorage()
        await storage.set_object(SESSION_STORAGE_KEY, {
            "access_token": "old", "refresh_token": "refresh-u1",
            "token_type": "bearer", "expires_at": int(time.time()) - 10, "user": {"id": "u1"},
        })
        recorder = Recorder({
            ("POST", "/auth/v1/token"): httpx.Response(200, json=_token_payload()),
        })
        async with _client(recorder, storage) as client:
            session = await client.get_session()
        assert session.access_token == "token-u1"
        body = json.loads(recorder.requests[0].content)
        assert body == {"refresh_token": "refresh-u1"}

    @pytest.mark.asyncio
    async def test_failed_refresh_signs_out(self):
        storage = MemoryStorage()
        await storage.set_object(SESSION_STORAGE_KEY, {
            "access_token": "old", "refresh_token": "gone",
            "token_type": "bearer", "expires_at": int(time.time()) - 10, "user": {"id": "u1"},
        })
        recorder = Recorder({
            ("POST", "/auth/v1/token"): httpx.Response(400, json={"error_description": "revoked"}),
        })
        async with _client(recorder, storage) as client:
            assert await client.get_session() is None
        assert await storage.get_item(SESSION_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_sign_out_drops_session_even_on_server_error(self):
        storage = MemoryStorage()
        recorder = Recorder({
            ("POST", "/auth/v1/token"): httpx.Response(200, json=_token_payload()),
            ("POST", "/auth/v1/logout"): httpx.Response(500, text="oops"),
        })
        events = []
        async with _client(recorder, storage) as client:
            await client.sign_in_with_password("u1@example.com", "pw")
            client.on_auth_state_change(lambda event, s: events.append(event))
            result = await client.sign_out()
            assert result.error is not None
            assert await client.get_session() is None
        assert await storage.get_item(SESSION_STORAGE_KEY) is None
        assert events == ["SIGNED_OUT"]

    @pytest.mark.asyncio
    async def test_sign_up_without_confirmation_session(self):
        recorder = Recorder({
            ("POST", "/auth/v1/signup"): httpx.Response(200, json={"id": "new", "email": "n@example.com"}),
        })
        events = []
        async with _client(recorder) as client:
            client.on_auth_state_change(lambda event, s: events.append(event))
            result = await client.sign_up("n@example.com", "pw")
        assert result.data["user"]["id"] == "new"
        assert result.data["session"] is None
        assert "SIGNED_IN" not in events

    @pytest.mark.asyncio
    async def test_listener_failure_is_contained(self):
        recorder = Recorder({
            ("POST", "/auth/v1/token"): httpx.Response(200, json=_token_payload()),
        })

        def bad_listener(event, session):
            raise RuntimeError("listener bug")

        async with _client(recorder) as client:
            client.on_auth_state_change(bad_listener)
            result = await client.sign_in_with_password("u1@example.com", "pw")
        assert result.ok

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        async with _client(Recorder()) as client:
            events = []
            unsubscribe = client.on_auth_state_change(lambda e, s: events.append(e))
            unsubscribe()
            await client.sign_out()
        assert events == []


class TestCreateBackendClient:
    def test_missing_credentials(self):
        with pytest.raises(ValueError, match="Missing backend environment variables"):
            create_backend_client(SafeplateConfig())

    @pytest.mark.asyncio
    async def test_from_config(self):
        config = SafeplateConfig()
        config.backend.url = BASE_URL + "/"
        config.backend.anon_key = "k"
        client = create_backend_client(config)
        assert client.url == BASE_URL
        await client.aclose()

    def test_constructor_rejects_empty(self):
        with pytest.raises(ValueError):
            BackendClient("", "key")
