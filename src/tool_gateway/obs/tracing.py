"""Dispatch tracing and summary metrics."""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

from tool_gateway.types import DispatchTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    trace: DispatchTrace


class TraceStore:
    """Bounded in-memory trace storage for API-level observability."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: deque[TraceRecord] = deque(maxlen=max_records)

    def add(self, trace: DispatchTrace) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            trace=trace,
        )
        self._records.append(record)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        for record in self._records:
            if record.trace_id == trace_id:
                return record
        raise KeyError(f"Trace not found: {trace_id}")

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        return list(self._records)[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate dispatch metrics for dashboard display."""
        records = [record.trace for record in self._records]
        total = len(records)
        if total == 0:
            return {
                "total_calls": 0,
                "error_rate": 0.0,
                "circuit_rejections": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
            }

        latencies = sorted(trace.latency_ms for trace in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        errors = sum(1 for trace in records if not trace.ok)
        rejections = sum(1 for trace in records if trace.error_kind == "circuit_open")

        return {
            "total_calls": total,
            "error_rate": errors / total,
            "circuit_rejections": rejections,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
        }


class Timer:
    """Simple context timer used by the dispatcher."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
