"""Hosted backend access (REST tables and authentication)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .client import SESSION_STORAGE_KEY, BackendClient, Session, error_message
from .query import QueryBuilder
from .response import BackendError, BackendResponse, handle_response

if TYPE_CHECKING:
    from ..config import SafeplateConfig
    from ..storage.base import KeyValueStorage


def create_backend_client(
    config: SafeplateConfig,
    storage: KeyValueStorage | None = None,
) -> BackendClient:
    """Create a backend client from configuration.

    Raises ValueError when the URL or anon key is missing.
    """
    bck = config.backend
    if not bck.url or not bck.anon_key:
        raise ValueError(
            "Missing backend environment variables: set SUPABASE_URL and "
            "SUPABASE_ANON_KEY (or [backend] url / anon_key in the config file)"
        )
    return BackendClient(
        bck.url,
        bck.anon_key,
        storage=storage,
        timeout=bck.timeout,
        application_name=bck.application_name,
    )


__all__ = [
    "SESSION_STORAGE_KEY",
    "BackendClient",
    "BackendError",
    "BackendResponse",
    "QueryBuilder",
    "Session",
    "create_backend_client",
    "error_message",
    "handle_response",
]
