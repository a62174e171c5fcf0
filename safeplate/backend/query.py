"""Fluent table query builder speaking the PostgREST URL dialect."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Iterable

from .response import BackendResponse

if TYPE_CHECKING:
    from .client import BackendClient


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_list(values: Iterable[Any]) -> str:
    return ",".join(
        json.dumps(v) if isinstance(v, str) and ("," in v or " " in v) else _format_value(v)
        for v in values
    )


class QueryBuilder:
    """Builds and executes one request against a table.

    Filter methods return the builder so calls can be chained::

        await client.table("restaurants").select("*").eq("is_active", True).limit(20).execute()
    """

    def __init__(self, client: BackendClient, table: str) -> None:
        self._client = client
        self._table = table
        self._method = "GET"
        self._params: list[tuple[str, str]] = []
        self._headers: dict[str, str] = {}
        self._body: Any = None
        self._prefer: list[str] = []
        self._single = False
        self._maybe_single = False

    @property
    def table_name(self) -> str:
        return self._table

    @property
    def method(self) -> str:
        return self._method

    @property
    def params(self) -> list[tuple[str, str]]:
        return list(self._params)

    # -- verbs ---------------------------------------------------------------

    def select(self, columns: str = "*", *, count: str | None = None) -> QueryBuilder:
        # Collapse whitespace so multi-line embedded selects stay valid
        cleaned = "".join(columns.split())
        self._params.append(("select", cleaned))
        if count:
            self._prefer.append(f"count={count}")
        return self

    def insert(self, values: dict[str, Any] | list[dict[str, Any]]) -> QueryBuilder:
        self._method = "POST"
        self._body = values
        self._prefer.append("return=representation")
        return self

    def update(self, values: dict[str, Any]) -> QueryBuilder:
        self._method = "PATCH"
        self._body = values
        self._prefer.append("return=representation")
        return self

    def delete(self) -> QueryBuilder:
        self._method = "DELETE"
        self._prefer.append("return=representation")
        return self

    # -- filters -------------------------------------------------------------

    def _filter(self, column: str, op: str, value: str) -> QueryBuilder:
        self._params.append((column, f"{op}.{value}"))
        return self

    def eq(self, column: str, value: Any) -> QueryBuilder:
        if value is None:
            return self._filter(column, "is", "null")
        return self._filter(column, "eq", _format_value(value))

    def neq(self, column: str, value: Any) -> QueryBuilder:
        return self._filter(column, "neq", _format_value(value))

    def gt(self, column: str, value: Any) -> QueryBuilder:
        return self._filter(column, "gt", _format_value(value))

    def gte(self, column: str, value: Any) -> QueryBuilder:
        return self._filter(column, "gte", _format_value(value))

    def lt(self, column: str, value: Any) -> QueryBuilder:
        return self._filter(column, "lt", _format_value(value))

    def lte(self, column: str, value: Any) -> QueryBuilder:
        return self._filter(column, "lte", _format_value(value))

    def in_(self, column: str, values: Iterable[Any]) -> QueryBuilder:
        return self._filter(column, "in", f"({_format_list(values)})")

    def ilike(self, column: str, pattern: str) -> QueryBuilder:
        return self._filter(column, "ilike", pattern.replace("%", "*"))

    def overlaps(self, column: str, values: Iterable[Any]) -> QueryBuilder:
        return self._filter(column, "ov", "{" + _format_list(values) + "}")

    def contains(self, column: str, values: Iterable[Any]) -> QueryBuilder:
        return self._filter(column, "cs", "{" + _format_list(values) + "}")

    def or_(self, conditions: str) -> QueryBuilder:
        self._params.append(("or", f"({conditions.replace('%', '*')})"))
        return self

    # -- modifiers -----------------------------------------------------------

    def order(self, column: str, *, ascending: bool = True) -> QueryBuilder:
        direction = "asc" if ascending else "desc"
        self._params.append(("order", f"{column}.{direction}"))
        return self

    def limit(self, count: int) -> QueryBuilder:
        self._params = [p for p in self._params if p[0] != "limit"]
        self._params.append(("limit", str(count)))
        return self

    def range(self, start: int, end: int) -> QueryBuilder:
        """Inclusive row range, as offset/limit."""
        self._params = [p for p in self._params if p[0] not in ("limit", "offset")]
        self._params.append(("offset", str(start)))
        self._params.append(("limit", str(end - start + 1)))
        return self

    def single(self) -> QueryBuilder:
        self._single = True
        self._headers["Accept"] = "application/vnd.pgrst.object+json"
        return self

    def maybe_single(self) -> QueryBuilder:
        """Like single() but an empty result is data=None rather than an error."""
        self._maybe_single = True
        return self

    # -- execution -----------------------------------------------------------

    def build_headers(self) -> dict[str, str]:
        headers = dict(self._headers)
        if self._prefer:
            headers["Prefer"] = ",".join(self._prefer)
        return headers

    async def execute(self) -> BackendResponse:
        response = await self._client.rest_request(
            self._method,
            self._table,
            params=self._params,
            headers=self.build_headers(),
            json_body=self._body,
        )
        if self._maybe_single and response.ok and isinstance(response.data, list):
            response.data = response.data[0] if response.data else None
        return response
