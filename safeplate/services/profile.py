"""User profile and dietary restriction management."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from ..backend.response import BackendResponse, handle_response
from ..models import CRITICAL_SEVERITIES, Severity
from .base import StatefulService, TableService

if TYPE_CHECKING:
    from ..auth import AuthContext
    from ..backend.client import BackendClient

logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()]")

_PROFILE_WITH_RESTRICTIONS = """
    *,
    restrictions:user_restrictions(
        *,
        dietary_restriction:dietary_restrictions(*)
    )
"""


def is_valid_phone_number(phone: str) -> bool:
    return bool(_PHONE_RE.match(_PHONE_STRIP_RE.sub("", phone)))


class UserProfileTable(TableService):
    table_name = "user_profiles"

    async def get_user_with_restrictions(self, user_id: str) -> BackendResponse:
        return await (
            self._client.table(self.table_name)
            .select(_PROFILE_WITH_RESTRICTIONS)
            .eq("id", user_id)
            .single()
            .execute()
        )

    async def update_profile(self, user_id: str, updates: dict[str, Any]) -> BackendResponse:
        phone = updates.get("emergency_contact_phone")
        if phone and not is_valid_phone_number(phone):
            return handle_response(error={"message": "Emergency contact phone number is invalid"})
        return await self.update(user_id, updates)


class DietaryRestrictionsTable(TableService):
    table_name = "dietary_restrictions"

    async def get_all(self) -> BackendResponse:
        return await self._client.table(self.table_name).select("*").order("name").execute()

    async def search(self, query: str) -> BackendResponse:
        return await (
            self._client.table(self.table_name)
            .select("*")
            .or_(f"name.ilike.%{query}%,common_names.cs.{{{query}}}")
            .order("name")
            .execute()
        )

    async def add_user_restriction(self, values: dict[str, Any]) -> BackendResponse:
        if values.get("severity") == Severity.LIFE_THREATENING.value:
            logger.warning("Life-threatening restriction added for user %s", values.get("user_id"))
        return await self._client.table("user_restrictions").insert(values).select().single().execute()

    async def update_user_restriction(self, restriction_id: str, updates: dict[str, Any]) -> BackendResponse:
        return await (
            self._client.table("user_restrictions")
            .update(updates)
            .eq("id", restriction_id)
            .select()
            .single()
            .execute()
        )

    async def remove_user_restriction(self, restriction_id: str) -> BackendResponse:
        # Restrictions are deactivated, never deleted
        return await self.update_user_restriction(restriction_id, {"is_active": False})

    async def get_user_restrictions(self, user_id: str) -> BackendResponse:
        return await (
            self._client.table("user_restrictions")
            .select("*, dietary_restriction:dietary_restrictions(*)")
            .eq("user_id", user_id)
            .eq("is_active", True)
            .order("severity", ascending=False)
            .execute()
        )


class UserProfileService(StatefulService):
    """Profile of the signed-in user together with their restrictions."""

    def __init__(self, client: BackendClient, auth: AuthContext) -> None:
        super().__init__()
        self._auth = auth
        self._profiles = UserProfileTable(client)
        self._restrictions = DietaryRestrictionsTable(client)
        self.user_profile: dict[str, Any] | None = auth.user_profile
        self.user_with_restrictions: dict[str, Any] | None = None
        self.available_restrictions: list[dict[str, Any]] = []
        self.user_restrictions: list[dict[str, Any]] = []

    # -- loading -------------------------------------------------------------

    async def load(self) -> None:
        """Load the profile with embedded restrictions for the current user."""
        user_id = self._auth.user_id
        if user_id is None:
            return
        self._begin()
        try:
            response = await self._profiles.get_user_with_restrictions(user_id)
            if response.error:
                self._fail(response.error.message)
                return
            if response.data:
                self.user_with_restrictions = response.data
                self.user_profile = response.data
        except Exception:
            logger.exception("Failed to load user profile")
            self._fail("Failed to load user profile")
        finally:
            self.loading = False

    async def refresh_profile(self) -> None:
        await self.load()

    async def load_available_restrictions(self) -> None:
        try:
            response = await self._restrictions.get_all()
        except Exception:
            logger.warning("Error loading available restrictions", exc_info=True)
            return
        if response.error:
            logger.warning("Failed to load available restrictions: %s", response.error.message)
            return
        self.available_restrictions = response.data or []

    async def load_user_restrictions(self) -> None:
        """Load only the active restrictions, most severe first."""
        user_id = self._auth.user_id
        if user_id is None:
            return
        self._begin()
        try:
            response = await self._restrictions.get_user_restrictions(user_id)
            if response.error:
                self._fail(response.error.message)
                return
            self.user_restrictions = response.data or []
        except Exception:
            logger.exception("Error loading restrictions")
            self._fail("Failed to load dietary restrictions")
        finally:
            self.loading = False

    # -- mutations -----------------------------------------------------------

    async def update_profile(self, updates: dict[str, Any]) -> bool:
        user_id = self._auth.user_id
        if user_id is None:
            self._fail("User must be authenticated")
            return False
        self._begin()
        try:
            response = await self._profiles.update_profile(user_id, updates)
            if response.error:
                self._fail(response.error.message)
                return False
            if response.data:
                self.user_profile = response.data
                if self.user_with_restrictions is not None:
                    self.user_with_restrictions = {**self.user_with_restrictions, **response.data}
            return True
        except Exception:
            logger.exception("Failed to update profile")
            self._fail("Failed to update profile")
            return False
        finally:
            self.loading = False

    async def add_restriction(
        self,
        restriction_id: str,
        severity: Severity | str,
        notes: str | None = None,
    ) -> bool:
        user_id = self._auth.user_id
        if user_id is None:
            self._fail("User must be authenticated")
            return False
        values = {
            "user_id": user_id,
            "restriction_id": restriction_id,
            "severity": Severity(severity).value,
            "notes": notes or None,
            "is_active": True,
        }
        return await self._mutate_restriction(
            self._restrictions.add_user_restriction(values),
            "Failed to add dietary restriction",
        )

    async def update_restriction(self, restriction_id: str, updates: dict[str, Any]) -> bool:
        return await self._mutate_restriction(
            self._restrictions.update_user_restriction(restriction_id, updates),
            "Failed to update dietary restriction",
        )

    async def remove_restriction(self, restriction_id: str) -> bool:
        return await self._mutate_restriction(
            self._restrictions.remove_user_restriction(restriction_id),
            "Failed to remove dietary restriction",
        )

    async def search_restrictions(self, query: str) -> list[dict[str, Any]]:
        try:
            response = await self._restrictions.search(query)
        except Exception:
            logger.warning("Error searching restrictions", exc_info=True)
            return []
        if response.error:
            logger.warning("Failed to search restrictions: %s", response.error.message)
            return []
        return response.data or []

    async def _mutate_restriction(self, call, failure: str) -> bool:
        self._begin()
        try:
            response = await call
            if response.error:
                self._fail(response.error.message)
                return False
            await self.load()
            return self.error is None
        except Exception:
            logger.exception(failure)
            self._fail(failure)
            return False
        finally:
            self.loading = False

    # -- safety helpers ------------------------------------------------------

    @property
    def restrictions(self) -> list[dict[str, Any]]:
        if not self.user_with_restrictions:
            return []
        return list(self.user_with_restrictions.get("restrictions") or [])

    @property
    def critical_restrictions(self) -> list[dict[str, Any]]:
        return [
            r for r in self.restrictions
            if r.get("is_active") and r.get("severity") in CRITICAL_SEVERITIES
        ]

    @property
    def has_life_threatening_restrictions(self) -> bool:
        return any(
            r.get("is_active") and r.get("severity") == Severity.LIFE_THREATENING.value
            for r in self.restrictions
        )

    @property
    def has_severe_restrictions(self) -> bool:
        return bool(self.critical_restrictions)

    def active_restriction_names(self) -> list[str]:
        """Names of active restrictions, in the form the offline cache keys on."""
        names = []
        for r in self.restrictions:
            if not r.get("is_active"):
                continue
            detail = r.get("dietary_restriction") or {}
            name = detail.get("name") or r.get("restriction_id")
            if name:
                names.append(str(name).strip().lower().replace(" ", "_"))
        return names
