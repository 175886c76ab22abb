"""Backend health tracking and the periodic liveness probe loop."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable

from tool_gateway.config import HealthProbeConfig
from tool_gateway.registry.circuit_breaker import CircuitBreaker
from tool_gateway.types import HealthRecord

logger = logging.getLogger(__name__)

STALE_AFTER_SECONDS = 5 * 60

ProbeFn = Callable[[str], Awaitable[bool]]


class HealthTracker:
    """Last-known up/down status per backend.

    A record older than `STALE_AFTER_SECONDS` reads as healthy, so a backend
    is not blackholed forever when whatever was probing it stops running.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, HealthRecord] = {}

    def mark_healthy(self, backend_id: str) -> None:
        with self._lock:
            self._records[backend_id] = HealthRecord(healthy=True, last_checked_at=self._clock())

    def mark_unhealthy(self, backend_id: str, error: str) -> None:
        with self._lock:
            self._records[backend_id] = HealthRecord(
                healthy=False,
                last_checked_at=self._clock(),
                last_error=error,
            )

    def is_healthy(self, backend_id: str) -> bool:
        with self._lock:
            record = self._records.get(backend_id)
            if record is None:
                return True
            if self._clock() - record.last_checked_at > STALE_AFTER_SECONDS:
                return True
            return record.healthy

    def get(self, backend_id: str) -> HealthRecord | None:
        with self._lock:
            return self._records.get(backend_id)

    def snapshot(self) -> dict[str, HealthRecord]:
        with self._lock:
            return dict(self._records)


class HealthProbe:
    """Periodically probes registered backends and feeds the results forward.

    Every outcome lands in the `HealthTracker` and, when one is bound, the
    `CircuitBreaker`, so an open circuit can close again without live traffic.
    Probe errors never propagate out of `probe_all()`.

    The background task awaits each round before sleeping again, so timer
    ticks never overlap even when probes are slower than the interval.
    """

    def __init__(
        self,
        probe_fn: ProbeFn,
        *,
        tracker: HealthTracker,
        circuit_breaker: CircuitBreaker | None = None,
        config: HealthProbeConfig | None = None,
    ) -> None:
        self.probe_fn = probe_fn
        self.tracker = tracker
        self.circuit_breaker = circuit_breaker
        self.config = config or HealthProbeConfig()
        self._backends: set[str] = set()
        self._task: asyncio.Task[None] | None = None

    def register(self, backend_id: str) -> None:
        self._backends.add(backend_id)

    def unregister(self, backend_id: str) -> None:
        self._backends.discard(backend_id)

    @property
    def size(self) -> int:
        return len(self._backends)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def backends(self) -> list[str]:
        return sorted(self._backends)

    def start(self) -> None:
        """Start the periodic loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "health probe started for %d backends every %d ms",
            self.size,
            self.config.interval_ms,
        )

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("health probe stopped")

    async def probe_all(self) -> dict[str, bool]:
        """Probe every registered backend once and return who passed."""
        backend_ids = list(self._backends)
        if not backend_ids:
            return {}

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def _bounded(backend_id: str) -> bool:
            async with semaphore:
                return await self._probe_one(backend_id)

        outcomes = await asyncio.gather(*(_bounded(backend_id) for backend_id in backend_ids))
        return dict(zip(backend_ids, outcomes, strict=True))

    async def _run(self) -> None:
        interval = self.config.interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            await self.probe_all()

    async def _probe_one(self, backend_id: str) -> bool:
        timeout = self.config.probe_timeout_ms / 1000.0
        try:
            ok = await asyncio.wait_for(self.probe_fn(backend_id), timeout=timeout)
        except asyncio.TimeoutError:
            self._record_failure(backend_id, "Probe timed out")
            return False
        except Exception as exc:
            self._record_failure(backend_id, str(exc) or "Probe failed")
            return False

        if ok:
            self.tracker.mark_healthy(backend_id)
            if self.circuit_breaker is not None:
                self.circuit_breaker.record_success(backend_id)
            return True

        self._record_failure(backend_id, "Probe returned unhealthy")
        return False

    def _record_failure(self, backend_id: str, error: str) -> None:
        logger.warning("health probe failed for backend %s: %s", backend_id, error)
        self.tracker.mark_unhealthy(backend_id, error)
        if self.circuit_breaker is not None:
            self.circuit_breaker.record_failure(backend_id)
