"""Uniform {data, error} response shape for backend calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BackendError:
    message: str
    details: Any = None
    hint: str | None = None
    code: str | None = None

    @classmethod
    def from_payload(cls, payload: Any, default: str = "An unexpected error occurred") -> BackendError:
        """Build an error from a PostgREST or auth error body."""
        if isinstance(payload, BackendError):
            return payload
        if isinstance(payload, dict):
            message = (
                payload.get("message")
                or payload.get("error_description")
                or payload.get("msg")
                or payload.get("error")
                or default
            )
            code = payload.get("code") or payload.get("error_code")
            return cls(
                message=str(message),
                details=payload.get("details"),
                hint=payload.get("hint"),
                code=str(code) if code is not None else None,
            )
        if isinstance(payload, str) and payload:
            return cls(message=payload)
        return cls(message=default)


@dataclass
class BackendResponse(Generic[T]):
    data: T | None = None
    error: BackendError | None = None
    count: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def handle_response(
    data: Any = None,
    error: Any = None,
    count: int | None = None,
) -> BackendResponse:
    """Normalise a raw result into a BackendResponse, logging any error."""
    if error is not None:
        err = BackendError.from_payload(error)
        logger.error("Backend error: %s", err.message)
        return BackendResponse(data=None, error=err, count=count)
    return BackendResponse(data=data, error=None, count=count)
