"""In-process storage, used for guest sessions and tests."""

from __future__ import annotations

from .base import KeyValueStorage


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    async def get_all_keys(self) -> list[str]:
        return list(self._data)
