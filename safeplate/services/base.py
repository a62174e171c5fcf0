"""Shared plumbing for backend-backed services."""

from __future__ import annotations

import logging
from typing import Any

from ..backend.client import BackendClient
from ..backend.response import BackendResponse

logger = logging.getLogger(__name__)


class TableService:
    """Generic CRUD helpers over a single table."""

    table_name: str = ""

    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def find_by_id(self, row_id: str) -> BackendResponse:
        return await self._client.table(self.table_name).select("*").eq("id", row_id).single().execute()

    async def find_many(self, filters: dict[str, Any] | None = None) -> BackendResponse:
        query = self._client.table(self.table_name).select("*")
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        return await query.execute()

    async def create(self, values: dict[str, Any]) -> BackendResponse:
        return await self._client.table(self.table_name).insert(values).select().single().execute()

    async def update(self, row_id: str, updates: dict[str, Any]) -> BackendResponse:
        return await (
            self._client.table(self.table_name).update(updates).eq("id", row_id).select().single().execute()
        )

    async def delete(self, row_id: str) -> BackendResponse:
        return await self._client.table(self.table_name).delete().eq("id", row_id).execute()


class StatefulService:
    """Tracks ``loading`` and ``error`` the way UI code expects to read them."""

    def __init__(self) -> None:
        self.loading = False
        self.error: str | None = None

    def _begin(self) -> None:
        self.loading = True
        self.error = None

    def _fail(self, message: str) -> None:
        self.error = message
        self.loading = False
        logger.error("%s error: %s", type(self).__name__, message)
