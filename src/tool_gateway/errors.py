"""Gateway error taxonomy.

Errors are distinguished by an `ErrorKind` tag rather than by subclass, so
callers branch on `err.kind` and read `status`/`retry_after` directly.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    DELEGATION_DENIED = "delegation_denied"
    CIRCUIT_OPEN = "circuit_open"
    INVALID_ARGUMENTS = "invalid_arguments"
    UPSTREAM_FAILURE = "upstream_failure"


_DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.DELEGATION_DENIED: 403,
    ErrorKind.CIRCUIT_OPEN: 503,
    ErrorKind.INVALID_ARGUMENTS: 422,
    ErrorKind.UPSTREAM_FAILURE: 502,
}


class GatewayError(Exception):
    """Single tagged error raised at gateway seams."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status if status is not None else _DEFAULT_STATUS[kind]
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"error": self.kind.value, "message": self.message}
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload
