"""Family member profiles and their dietary restrictions (family accounts only)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..backend.response import BackendResponse, handle_response
from ..models import AccountType, Severity
from .base import StatefulService, TableService

if TYPE_CHECKING:
    from ..auth import AuthContext
    from ..backend.client import BackendClient

logger = logging.getLogger(__name__)

_MEMBER_WITH_RESTRICTIONS = """
    *,
    restrictions:family_member_restrictions(
        *,
        dietary_restriction:dietary_restrictions(*)
    )
"""

# Medical condition keywords that mark a member as critical
_CRITICAL_CONDITION_KEYWORDS = ("allergy", "anaphylaxis")


class FamilyMembersTable(TableService):
    table_name = "family_members"

    async def get_family_members(self, family_admin_id: str) -> BackendResponse:
        return await (
            self._client.table(self.table_name)
            .select("*")
            .eq("family_admin_id", family_admin_id)
            .eq("is_active", True)
            .order("created_at")
            .execute()
        )

    async def get_member_with_restrictions(self, member_id: str) -> BackendResponse:
        return await (
            self._client.table(self.table_name)
            .select(_MEMBER_WITH_RESTRICTIONS)
            .eq("id", member_id)
            .single()
            .execute()
        )

    async def create_family_member(self, values: dict[str, Any]) -> BackendResponse:
        admin = await (
            self._client.table("user_profiles")
            .select("account_type")
            .eq("id", values["family_admin_id"])
            .single()
            .execute()
        )
        if admin.error or (admin.data or {}).get("account_type") != AccountType.FAMILY.value:
            return handle_response(
                error={"message": "Only family account holders can add family members"}
            )
        return await self.create(values)

    async def deactivate_family_member(self, member_id: str) -> BackendResponse:
        return await self.update(member_id, {"is_active": False})


class FamilyMemberRestrictionsTable(TableService):
    table_name = "family_member_restrictions"


def critical_conditions(member: dict[str, Any]) -> list[str]:
    """Medical conditions of a member that mention an allergy or anaphylaxis."""
    return [
        c for c in member.get("medical_conditions") or []
        if any(k in c.lower() for k in _CRITICAL_CONDITION_KEYWORDS)
    ]


class FamilyMembersService(StatefulService):
    """Manage the family members of a family account holder."""

    def __init__(self, client: BackendClient, auth: AuthContext) -> None:
        super().__init__()
        self._auth = auth
        self._members = FamilyMembersTable(client)
        self._restrictions = FamilyMemberRestrictionsTable(client)
        self.family_members: list[dict[str, Any]] = []
        self.selected_member: dict[str, Any] | None = None

    @property
    def is_family_account(self) -> bool:
        profile = self._auth.user_profile or {}
        return profile.get("account_type") == AccountType.FAMILY.value

    # -- members -------------------------------------------------------------

    async def load(self) -> None:
        user_id = self._auth.user_id
        if user_id is None or not self.is_family_account:
            return
        self._begin()
        try:
            response = await self._members.get_family_members(user_id)
            if response.error:
                self._fail(response.error.message)
                return
            self.family_members = response.data or []
        except Exception:
            logger.exception("Failed to load family members")
            self._fail("Failed to load family members")
        finally:
            self.loading = False

    async def refresh(self) -> None:
        await self.load()
        if self.selected_member:
            await self.select_member(self.selected_member["id"])

    async def add_member(self, member: dict[str, Any]) -> bool:
        user_id = self._auth.user_id
        if user_id is None or not self.is_family_account:
            self._fail("Only family account holders can add family members")
            return False
        values = {**member, "family_admin_id": user_id}
        if not await self._call(self._members.create_family_member(values), "Failed to add family member"):
            return False
        await self.load()
        return True

    async def update_member(self, member_id: str, updates: dict[str, Any]) -> bool:
        if not self.is_family_account:
            self._fail("Only family account holders can update family members")
            return False
        if not await self._call(self._members.update(member_id, updates), "Failed to update family member"):
            return False
        await self.load()
        if self._is_selected(member_id):
            await self.select_member(member_id)
        return True

    async def remove_member(self, member_id: str) -> bool:
        """Deactivate a member; rows are never hard-deleted."""
        if not self.is_family_account:
            self._fail("Only family account holders can remove family members")
            return False
        ok = await self._call(
            self._members.deactivate_family_member(member_id), "Failed to remove family member"
        )
        if not ok:
            return False
        if self._is_selected(member_id):
            self.selected_member = None
        await self.load()
        return True

    async def select_member(self, member_id: str) -> None:
        self._begin()
        try:
            response = await self._members.get_member_with_restrictions(member_id)
            if response.error:
                self._fail(response.error.message)
                return
            self.selected_member = response.data
        except Exception:
            logger.exception("Failed to load family member details")
            self._fail("Failed to load family member details")
        finally:
            self.loading = False

    def clear_selected_member(self) -> None:
        self.selected_member = None

    # -- member restrictions -------------------------------------------------

    async def add_member_restriction(
        self,
        member_id: str,
        restriction_id: str,
        severity: Severity | str,
        notes: str | None = None,
    ) -> bool:
        if not self.is_family_account:
            self._fail("Only family account holders can manage restrictions")
            return False
        values = {
            "family_member_id": member_id,
            "restriction_id": restriction_id,
            "severity": Severity(severity).value,
            "notes": notes or None,
            "is_active": True,
        }
        if not await self._call(self._restrictions.create(values), "Failed to add dietary restriction"):
            return False
        if self._is_selected(member_id):
            await self.select_member(member_id)
        return True

    async def update_member_restriction(self, restriction_id: str, updates: dict[str, Any]) -> bool:
        if not self.is_family_account:
            self._fail("Only family account holders can manage restrictions")
            return False
        ok = await self._call(
            self._restrictions.update(restriction_id, updates), "Failed to update dietary restriction"
        )
        if ok and self.selected_member:
            await self.select_member(self.selected_member["id"])
        return ok

    async def remove_member_restriction(self, restriction_id: str) -> bool:
        if not self.is_family_account:
            self._fail("Only family account holders can manage restrictions")
            return False
        ok = await self._call(
            self._restrictions.update(restriction_id, {"is_active": False}),
            "Failed to remove dietary restriction",
        )
        if ok and self.selected_member:
            await self.select_member(self.selected_member["id"])
        return ok

    # -- safety helpers ------------------------------------------------------

    @property
    def members_with_life_threatening_restrictions(self) -> list[dict[str, Any]]:
        return [m for m in self.family_members if critical_conditions(m)]

    @property
    def members_with_severe_restrictions(self) -> list[dict[str, Any]]:
        return [m for m in self.family_members if m.get("medical_conditions")]

    @property
    def total_critical_restrictions(self) -> int:
        return sum(len(critical_conditions(m)) for m in self.family_members)

    # -- internals -----------------------------------------------------------

    def _is_selected(self, member_id: str) -> bool:
        return bool(self.selected_member) and self.selected_member.get("id") == member_id

    async def _call(self, call, failure: str) -> bool:
        self._begin()
        try:
            response = await call
            if response.error:
                self._fail(response.error.message)
                return False
            return True
        except Exception:
            logger.exception(failure)
            self._fail(failure)
            return False
        finally:
            self.loading = False
