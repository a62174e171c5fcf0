"""Async key-value storage interface."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Abstract base for device-local string storage.

    Every method may raise; callers decide whether a failure is fatal.
    """

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    @abstractmethod
    async def get_all_keys(self) -> list[str]:
        ...

    async def get_object(self, key: str) -> Any:
        """Return the JSON value stored under key, or None if absent or malformed."""
        value = await self.get_item(key)
        if not value:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Failed to parse stored object under %s", key)
            return None

    async def set_object(self, key: str, value: Any) -> None:
        await self.set_item(key, json.dumps(value, ensure_ascii=False))

    def close(self) -> None:
        pass
