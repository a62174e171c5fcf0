"""Hosted backend client: REST table access plus password authentication."""

from __future__ import annotations

import inspect
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Union

import httpx

from ..storage.base import KeyValueStorage
from .query import QueryBuilder
from .response import BackendError, BackendResponse, handle_response

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "@safeplate/auth-session"

# Refresh a stored session this many seconds before it expires
_REFRESH_MARGIN = 60

AuthCallback = Callable[[str, "Session | None"], Union[None, Awaitable[None]]]


@dataclass
class Session:
    """Authenticated session returned by the auth endpoints."""

    access_token: str
    refresh_token: str = ""
    token_type: str = "bearer"
    expires_at: int = 0
    user: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        uid = self.user.get("id")
        return str(uid) if uid else None

    @property
    def expired(self) -> bool:
        return bool(self.expires_at) and self.expires_at - _REFRESH_MARGIN <= time.time()

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Session:
        expires_at = payload.get("expires_at")
        if not expires_at and payload.get("expires_in"):
            expires_at = int(time.time()) + int(payload["expires_in"])
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token", ""),
            token_type=payload.get("token_type", "bearer"),
            expires_at=int(expires_at or 0),
            user=payload.get("user") or {},
        )


class BackendClient:
    """Async client for the hosted backend.

    Sessions are persisted through the given storage adapter so a restart
    resumes the signed-in user.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        storage: KeyValueStorage | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        application_name: str = "restricted-diet-app",
    ) -> None:
        if not url:
            raise ValueError("Missing backend URL (set SUPABASE_URL)")
        if not anon_key:
            raise ValueError("Missing backend anon key (set SUPABASE_ANON_KEY)")
        self.url = url.rstrip("/")
        self._anon_key = anon_key
        self._storage = storage
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._application_name = application_name
        self._session: Session | None = None
        self._session_loaded = False
        self._listeners: list[AuthCallback] = []

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- tables --------------------------------------------------------------

    def table(self, name: str) -> QueryBuilder:
        return QueryBuilder(self, name)

    # alias matching the hosted SDK spelling
    from_ = table

    async def rpc(self, function: str, params: dict[str, Any] | None = None) -> BackendResponse:
        return await self.rest_request("POST", f"rpc/{function}", json_body=params or {})

    async def rest_request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> BackendResponse:
        session = await self.get_session()
        req_headers = self._base_headers(session.access_token if session else None)
        req_headers.update(headers or {})
        try:
            response = await self._http.request(
                method,
                f"{self.url}/rest/v1/{path}",
                params=params,
                headers=req_headers,
                json=json_body,
            )
        except httpx.HTTPError as exc:
            return handle_response(error={"message": f"Network error: {exc}"})

        payload = _json_or_none(response)
        if response.is_error:
            return handle_response(
                error=payload if payload is not None else response.text or response.reason_phrase
            )
        return handle_response(data=payload, count=_parse_count(response))

    # -- auth ----------------------------------------------------------------

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        """Register an auth event listener; returns the unsubscribe callable."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def get_session(self) -> Session | None:
        """Return the current session, restoring and refreshing it if needed."""
        if not self._session_loaded:
            self._session_loaded = True
            self._session = await self._restore_session()
            await self._emit("INITIAL_SESSION", self._session)
        if self._session is not None and self._session.expired and self._session.refresh_token:
            refreshed = await self.refresh_session()
            if refreshed.error:
                return None
        return self._session

    async def sign_up(self, email: str, password: str) -> BackendResponse:
        result = await self._auth_request("POST", "signup", json_body={"email": email, "password": password})
        if result.error:
            return result
        payload = result.data or {}
        user = payload.get("user") or (payload if payload.get("id") else None)
        session = None
        if payload.get("access_token"):
            session = Session.from_payload(payload)
            await self._set_session(session, "SIGNED_IN")
        return handle_response(data={"user": user, "session": session})

    async def sign_in_with_password(self, email: str, password: str) -> BackendResponse:
        result = await self._auth_request(
            "POST",
            "token",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
        )
        if result.error:
            return result
        session = Session.from_payload(result.data)
        await self._set_session(session, "SIGNED_IN")
        return handle_response(data={"user": session.user, "session": session})

    async def refresh_session(self) -> BackendResponse:
        if self._session is None or not self._session.refresh_token:
            return handle_response(error={"message": "No session to refresh"})
        result = await self._auth_request(
            "POST",
            "token",
            params={"grant_type": "refresh_token"},
            json_body={"refresh_token": self._session.refresh_token},
            authenticated=False,
        )
        if result.error:
            await self._set_session(None, "SIGNED_OUT")
            return result
        session = Session.from_payload(result.data)
        await self._set_session(session, "TOKEN_REFRESHED")
        return handle_response(data={"user": session.user, "session": session})

    async def sign_out(self) -> BackendResponse:
        session = await self.get_session()
        error = None
        if session is not None:
            result = await self._auth_request("POST", "logout")
            error = result.error
        # The local session is dropped even when the server call fails
        await self._set_session(None, "SIGNED_OUT")
        return handle_response(error=error)

    async def reset_password_for_email(self, email: str) -> BackendResponse:
        result = await self._auth_request("POST", "recover", json_body={"email": email}, authenticated=False)
        return handle_response(error=result.error)

    async def get_user(self) -> BackendResponse:
        session = await self.get_session()
        if session is None:
            return handle_response(error={"message": "Auth session missing"})
        return await self._auth_request("GET", "user")

    async def update_user(self, attributes: dict[str, Any]) -> BackendResponse:
        session = await self.get_session()
        if session is None:
            return handle_response(error={"message": "Auth session missing"})
        result = await self._auth_request("PUT", "user", json_body=attributes)
        if result.error:
            return result
        session.user = result.data or session.user
        await self._set_session(session, "USER_UPDATED")
        return result

    # -- internals -----------------------------------------------------------

    def _base_headers(self, access_token: str | None) -> dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
            "x-application-name": self._application_name,
        }

    async def _auth_request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        authenticated: bool = True,
    ) -> BackendResponse:
        token = self._session.access_token if (authenticated and self._session) else None
        try:
            response = await self._http.request(
                method,
                f"{self.url}/auth/v1/{path}",
                params=params,
                headers=self._base_headers(token),
                json=json_body,
            )
        except httpx.HTTPError as exc:
            return handle_response(error={"message": f"Network error: {exc}"})
        payload = _json_or_none(response)
        if response.is_error:
            return handle_response(
                error=payload if payload is not None else response.text or response.reason_phrase
            )
        return handle_response(data=payload)

    async def _restore_session(self) -> Session | None:
        if self._storage is None:
            return None
        try:
            data = await self._storage.get_object(SESSION_STORAGE_KEY)
        except Exception:
            logger.exception("Failed to restore auth session")
            return None
        if not isinstance(data, dict) or not data.get("access_token"):
            return None
        try:
            return Session(**data)
        except TypeError:
            logger.warning("Stored auth session has an unexpected shape, ignoring it")
            return None

    async def _set_session(self, session: Session | None, event: str) -> None:
        self._session = session
        self._session_loaded = True
        if self._storage is not None:
            try:
                if session is None:
                    await self._storage.remove_item(SESSION_STORAGE_KEY)
                else:
                    await self._storage.set_object(SESSION_STORAGE_KEY, asdict(session))
            except Exception:
                logger.exception("Failed to persist auth session")
        await self._emit(event, session)

    async def _emit(self, event: str, session: Session | None) -> None:
        for callback in list(self._listeners):
            try:
                result = callback(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth state listener failed for %s", event)


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return None


def _parse_count(response: httpx.Response) -> int | None:
    # Content-Range: 0-9/42 (or */0 for empty results)
    content_range = response.headers.get("content-range", "")
    if "/" not in content_range:
        return None
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


def error_message(error: BackendError | None, default: str) -> str:
    return error.message if error and error.message else default
