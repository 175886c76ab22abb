"""Per-backend circuit breaker guarding the dispatch path."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from tool_gateway.config import CircuitBreakerConfig
from tool_gateway.types import Admission, CircuitState, CircuitStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _CircuitEntry:
    config: CircuitBreakerConfig
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    last_failure_at: float | None = None
    last_success_at: float | None = None


class CircuitBreaker:
    """Three-state admission gate keyed by backend id.

    State machine:
    - `closed`: calls pass. `failure_threshold` consecutive failures open it.
    - `open`: calls are rejected until `reset_timeout_ms` has passed since the
      last failure; the first check after that moves it to `half-open`.
    - `half-open`: calls pass as recovery probes. A success closes the circuit,
      a failure reopens it immediately.

    Half-open admission is advisory: concurrent callers are all let through.
    A backend that was never tracked is `closed`. Every operation runs under
    one lock because both the dispatcher and the probe loop mutate entries.
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._circuits: dict[str, _CircuitEntry] = {}
        self._pending_configs: dict[str, CircuitBreakerConfig] = {}

    def configure(self, backend_id: str, config: CircuitBreakerConfig) -> None:
        with self._lock:
            entry = self._circuits.get(backend_id)
            if entry is None:
                # Applied when the entry is created on first failure.
                self._pending_configs[backend_id] = config
            else:
                entry.config = config

    def can_execute(self, backend_id: str) -> Admission:
        """Check if a request to this backend should be allowed."""
        with self._lock:
            entry = self._circuits.get(backend_id)
            if entry is None:
                return Admission(allowed=True, state=CircuitState.CLOSED)

            self._maybe_half_open(backend_id, entry)
            if entry.state is CircuitState.OPEN:
                return Admission(allowed=False, state=CircuitState.OPEN)
            return Admission(allowed=True, state=entry.state)

    def record_success(self, backend_id: str) -> None:
        with self._lock:
            entry = self._circuits.get(backend_id)
            if entry is None:
                return
            if entry.state is not CircuitState.CLOSED:
                logger.info("circuit closed for backend %s", backend_id)
            entry.failures = 0
            entry.last_success_at = self._clock()
            entry.state = CircuitState.CLOSED

    def record_failure(self, backend_id: str) -> None:
        with self._lock:
            entry = self._circuits.get(backend_id)
            if entry is None:
                config = self._pending_configs.pop(backend_id, self.default_config)
                entry = _CircuitEntry(config=config)
                self._circuits[backend_id] = entry

            entry.failures += 1
            entry.last_failure_at = self._clock()

            if entry.state is CircuitState.HALF_OPEN:
                entry.state = CircuitState.OPEN
                logger.warning("recovery probe failed, circuit reopened for backend %s", backend_id)
            elif (
                entry.state is CircuitState.CLOSED
                and entry.failures >= entry.config.failure_threshold
            ):
                entry.state = CircuitState.OPEN
                logger.warning(
                    "circuit opened for backend %s after %d consecutive failures",
                    backend_id,
                    entry.failures,
                )

    def get_status(self, backend_id: str) -> CircuitStatus:
        with self._lock:
            entry = self._circuits.get(backend_id)
            if entry is None:
                return CircuitStatus(state=CircuitState.CLOSED, failures=0)

            self._maybe_half_open(backend_id, entry)
            return CircuitStatus(
                state=entry.state,
                failures=entry.failures,
                last_failure_at=entry.last_failure_at,
                last_success_at=entry.last_success_at,
            )

    def retry_after_seconds(self, backend_id: str) -> float:
        """Seconds until an open circuit accepts a probe; 0 when not open."""
        with self._lock:
            entry = self._circuits.get(backend_id)
            if entry is None or entry.state is not CircuitState.OPEN:
                return 0.0
            remaining = entry.config.reset_timeout_ms / 1000.0 - self._elapsed(entry)
            return max(0.0, remaining)

    def reset(self, backend_id: str) -> None:
        with self._lock:
            self._circuits.pop(backend_id, None)
            self._pending_configs.pop(backend_id, None)

    def tracked(self) -> list[str]:
        with self._lock:
            return list(self._circuits)

    def _maybe_half_open(self, backend_id: str, entry: _CircuitEntry) -> None:
        if entry.state is not CircuitState.OPEN:
            return
        if self._elapsed(entry) * 1000.0 >= entry.config.reset_timeout_ms:
            entry.state = CircuitState.HALF_OPEN
            logger.info("circuit half-open for backend %s", backend_id)

    def _elapsed(self, entry: _CircuitEntry) -> float:
        if entry.last_failure_at is None:
            return float("inf")
        return self._clock() - entry.last_failure_at
