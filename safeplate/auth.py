"""Authentication context: signed-in identity plus the user's profile row."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from .backend.client import BackendClient, Session
from .backend.response import BackendResponse, handle_response
from .models import AccountType

logger = logging.getLogger(__name__)

IdentityCallback = Callable[[str, Union[Session, None]], Union[None, Awaitable[None]]]


def _unexpected(action: str) -> BackendResponse:
    return handle_response(error={"message": f"An unexpected error occurred during {action}"})


class AuthContext:
    """Tracks the current session and keeps the user's profile in sync.

    Construct it explicitly and call :meth:`initialize` (or use ``async with``)
    to restore a persisted session and start following auth events.
    """

    def __init__(self, client: BackendClient) -> None:
        self._client = client
        self.user: dict[str, Any] | None = None
        self.session: Session | None = None
        self.user_profile: dict[str, Any] | None = None
        self.loading = True
        self._listeners: list[IdentityCallback] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def client(self) -> BackendClient:
        return self._client

    @property
    def user_id(self) -> str | None:
        if not self.user:
            return None
        uid = self.user.get("id")
        return str(uid) if uid else None

    async def __aenter__(self) -> AuthContext:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    async def initialize(self) -> None:
        """Restore the persisted session and subscribe to auth events."""
        if self._unsubscribe is None:
            self._unsubscribe = self._client.on_auth_state_change(self._on_auth_state_change)
        try:
            session = await self._client.get_session()
            # INITIAL_SESSION only fires on the client's first get_session
            if session is not self.session:
                await self._apply_session(session)
        except Exception:
            logger.exception("Error getting initial session")
        finally:
            self.loading = False

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def subscribe(self, callback: IdentityCallback) -> Callable[[], None]:
        """Call back on every identity change, after the profile is refreshed."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # -- authentication ------------------------------------------------------

    async def sign_up(
        self,
        email: str,
        password: str,
        profile: dict[str, Any] | None = None,
    ) -> BackendResponse:
        try:
            auth = await self._client.sign_up(email, password)
            if auth.error:
                return auth
            user = (auth.data or {}).get("user")
            if not user:
                return handle_response(error={"message": "Failed to create user account"})

            profile = dict(profile or {})
            row = {
                "id": user["id"],
                "email": user.get("email", email),
                "full_name": profile.get("full_name"),
                "phone_number": profile.get("phone_number"),
                "account_type": profile.get("account_type") or AccountType.INDIVIDUAL.value,
                **profile,
            }
            created = await self._client.table("user_profiles").insert(row).select().single().execute()
            if created.error:
                logger.error("Error creating user profile: %s", created.error.message)
                # The auth user exists even though the profile row does not
                return BackendResponse(data={"user": user, "profile": None}, error=created.error)
            return handle_response(data={"user": user, "profile": created.data})
        except Exception:
            logger.exception("Error in sign_up")
            return _unexpected("sign up")

    async def sign_in(self, email: str, password: str) -> BackendResponse:
        try:
            return await self._client.sign_in_with_password(email, password)
        except Exception:
            logger.exception("Error in sign_in")
            return _unexpected("sign in")

    async def sign_out(self) -> BackendResponse:
        try:
            return await self._client.sign_out()
        except Exception:
            logger.exception("Error in sign_out")
            return _unexpected("sign out")

    async def reset_password(self, email: str) -> BackendResponse:
        try:
            return await self._client.reset_password_for_email(email)
        except Exception:
            logger.exception("Error in reset_password")
            return _unexpected("password reset")

    async def update_password(self, password: str) -> BackendResponse:
        try:
            result = await self._client.update_user({"password": password})
            return handle_response(error=result.error)
        except Exception:
            logger.exception("Error in update_password")
            return _unexpected("password update")

    # -- profile -------------------------------------------------------------

    async def update_profile(self, updates: dict[str, Any]) -> BackendResponse:
        user_id = self.user_id
        if user_id is None:
            return handle_response(
                error={"message": "User must be authenticated to update profile"}
            )
        try:
            result = await (
                self._client.table("user_profiles")
                .update(updates)
                .eq("id", user_id)
                .select()
                .single()
                .execute()
            )
            if result.ok:
                self.user_profile = result.data
            return result
        except Exception:
            logger.exception("Error in update_profile")
            return _unexpected("profile update")

    async def refresh_profile(self) -> None:
        if self.user_id is not None:
            await self._fetch_profile(self.user_id)

    async def _fetch_profile(self, user_id: str) -> dict[str, Any] | None:
        try:
            result = await (
                self._client.table("user_profiles").select("*").eq("id", user_id).single().execute()
            )
        except Exception:
            logger.exception("Error fetching user profile")
            return None
        if result.error:
            logger.error("Error fetching user profile: %s", result.error.message)
            return None
        self.user_profile = result.data
        return result.data

    # -- events --------------------------------------------------------------

    async def _on_auth_state_change(self, event: str, session: Session | None) -> None:
        logger.info("Auth state changed: %s", event)
        await self._apply_session(session, event)

    async def _apply_session(self, session: Session | None, event: str = "INITIAL_SESSION") -> None:
        previous = self.user_id
        self.session = session
        self.user = session.user if session else None
        if self.user_id != previous:
            self.user_profile = None
        if self.user_id is not None:
            await self._fetch_profile(self.user_id)
        else:
            self.user_profile = None
        self.loading = False
        if event != "TOKEN_REFRESHED" or previous != self.user_id:
            await self._notify(event, session)

    async def _notify(self, event: str, session: Session | None) -> None:
        for callback in list(self._listeners):
            try:
                result = callback(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth listener failed for %s", event)
