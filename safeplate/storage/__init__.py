"""Persistent key-value storage adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import KeyValueStorage
from .memory import MemoryStorage
from .schema import ensure_schema
from .sqlite import SQLiteStorage

if TYPE_CHECKING:
    from ..config import SafeplateConfig


def create_storage(config: SafeplateConfig) -> KeyValueStorage:
    """Create a storage adapter based on configuration."""
    backend_name = config.storage.backend

    match backend_name:
        case "sqlite":
            return SQLiteStorage(config.storage.path)
        case "memory":
            return MemoryStorage()
        case _:
            raise ValueError(
                f"Unknown storage backend: {backend_name!r} "
                f"(choose sqlite or memory)"
            )


__all__ = [
    "KeyValueStorage",
    "MemoryStorage",
    "SQLiteStorage",
    "create_storage",
    "ensure_schema",
]
