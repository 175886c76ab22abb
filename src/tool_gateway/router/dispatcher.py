"""Routes tool calls to backends behind the circuit breaker."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from tool_gateway.errors import ErrorKind, GatewayError
from tool_gateway.identity.policy import enforce_tool_policy
from tool_gateway.obs.tracing import Timer, TraceStore
from tool_gateway.registry.catalogue import ToolRegistry
from tool_gateway.registry.circuit_breaker import CircuitBreaker
from tool_gateway.registry.health import HealthTracker
from tool_gateway.types import CircuitState, DispatchTrace

logger = logging.getLogger(__name__)


class ToolDispatcher:
    """Consults the breaker before each call and reports the outcome back.

    A rejected admission is a routing decision, surfaced to the caller as a
    `CIRCUIT_OPEN` error with `retry_after`. Argument validation errors are
    the caller's fault and are not counted against the backend.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        circuit_breaker: CircuitBreaker,
        tracker: HealthTracker,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.registry = registry
        self.circuit_breaker = circuit_breaker
        self.tracker = tracker
        self.trace_store = trace_store or TraceStore()

    def dispatch(
        self,
        backend_id: str,
        tool_name: str,
        payload: dict[str, Any],
        *,
        scopes: list[str] | None = None,
    ) -> str:
        backend = self.registry.get_backend(backend_id)
        if backend is None:
            raise GatewayError(ErrorKind.NOT_FOUND, f"Backend not found: {backend_id}")
        spec = backend.get_tool(tool_name)
        if spec is None:
            raise GatewayError(ErrorKind.NOT_FOUND, f"Unknown tool: {backend_id}/{tool_name}")
        if not enforce_tool_policy(scopes, backend_id, tool_name):
            raise GatewayError(
                ErrorKind.FORBIDDEN,
                f"Scopes do not allow {backend_id}/{tool_name}",
            )

        admission = self.circuit_breaker.can_execute(backend_id)
        if not admission.allowed:
            self._trace(backend_id, tool_name, payload, "", 0.0, admission.state, ErrorKind.CIRCUIT_OPEN)
            raise GatewayError(
                ErrorKind.CIRCUIT_OPEN,
                f"Circuit open for backend {backend_id}",
                retry_after=self.circuit_breaker.retry_after_seconds(backend_id),
            )
        if not self.tracker.is_healthy(backend_id):
            logger.debug("dispatching to backend %s last seen unhealthy", backend_id)

        timer = Timer()
        try:
            with timer:
                output = spec.invoke(payload)
        except ValidationError as exc:
            self._trace(
                backend_id, tool_name, payload, "", timer.elapsed_ms, admission.state,
                ErrorKind.INVALID_ARGUMENTS,
            )
            raise GatewayError(ErrorKind.INVALID_ARGUMENTS, str(exc)) from exc
        except Exception as exc:
            logger.warning("tool call %s/%s failed: %s", backend_id, tool_name, exc)
            self.circuit_breaker.record_failure(backend_id)
            self.tracker.mark_unhealthy(backend_id, str(exc) or type(exc).__name__)
            self._trace(
                backend_id, tool_name, payload, "", timer.elapsed_ms, admission.state,
                ErrorKind.UPSTREAM_FAILURE,
            )
            raise GatewayError(
                ErrorKind.UPSTREAM_FAILURE,
                f"Tool call failed ({backend_id}/{tool_name}): {exc}",
            ) from exc

        self.circuit_breaker.record_success(backend_id)
        self.tracker.mark_healthy(backend_id)
        self._trace(backend_id, tool_name, payload, output, timer.elapsed_ms, admission.state, None)
        return output

    async def probe(self, backend_id: str) -> bool:
        """Liveness check handed to `HealthProbe`."""
        backend = self.registry.get_backend(backend_id)
        if backend is None:
            return False
        if backend.health_check is None:
            return True
        return await backend.health_check()

    def _trace(
        self,
        backend_id: str,
        tool_name: str,
        payload: dict[str, Any],
        output: str,
        latency_ms: float,
        state: CircuitState,
        error_kind: ErrorKind | None,
    ) -> None:
        self.trace_store.add(
            DispatchTrace(
                backend_id=backend_id,
                tool_name=tool_name,
                input_payload=payload,
                output_preview=output[:320],
                latency_ms=latency_ms,
                ok=error_kind is None,
                circuit_state=state,
                error_kind=error_kind.value if error_kind is not None else None,
            )
        )
