"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(slots=True, frozen=True)
class Admission:
    """Answer to "may this backend be called right now"."""

    allowed: bool
    state: CircuitState


@dataclass(slots=True, frozen=True)
class CircuitStatus:
    """Read-only snapshot of one backend's circuit."""

    state: CircuitState
    failures: int
    last_failure_at: float | None = None
    last_success_at: float | None = None


@dataclass(slots=True, frozen=True)
class HealthRecord:
    """Last known liveness of a backend."""

    healthy: bool
    last_checked_at: float
    last_error: str | None = None


@dataclass(slots=True, frozen=True)
class ToolEntry:
    """One tool in the catalogue exposed for discovery."""

    backend_id: str
    backend_name: str
    tool_name: str
    description: str


@dataclass(slots=True, frozen=True)
class SearchResult:
    """A ranked discovery hit."""

    backend_id: str
    backend_name: str
    tool_name: str
    description: str
    score: float


@dataclass(slots=True)
class DispatchTrace:
    """Trace record for a routed tool call."""

    backend_id: str
    tool_name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    ok: bool
    circuit_state: CircuitState
    error_kind: str | None = None
