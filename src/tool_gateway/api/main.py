"""FastAPI entrypoint for discovery, dispatch, circuit and agent endpoints."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, NoReturn

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from tool_gateway.config import (
    CircuitBreakerConfig,
    GatewayConfig,
    HealthProbeConfig,
)
from tool_gateway.discovery.search import ToolSearchIndex
from tool_gateway.errors import ErrorKind, GatewayError
from tool_gateway.identity.agents import (
    AgentIdentity,
    AgentService,
    CreateAgentRequest,
    InMemoryIdentityStore,
)
from tool_gateway.identity.policy import enforce_tool_policy
from tool_gateway.obs.tracing import TraceStore
from tool_gateway.registry.builtin import register_builtin_backends
from tool_gateway.registry.catalogue import ToolRegistry
from tool_gateway.registry.circuit_breaker import CircuitBreaker
from tool_gateway.registry.health import HealthProbe, HealthTracker
from tool_gateway.router.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)


def _load_config() -> GatewayConfig:
    return GatewayConfig(
        breaker=CircuitBreakerConfig(
            failure_threshold=int(os.getenv("TOOL_GATEWAY_FAILURE_THRESHOLD", "5")),
            reset_timeout_ms=int(os.getenv("TOOL_GATEWAY_RESET_TIMEOUT_MS", "30000")),
        ),
        probe=HealthProbeConfig(
            interval_ms=int(os.getenv("TOOL_GATEWAY_PROBE_INTERVAL_MS", "60000")),
        ),
        log_level=os.getenv("TOOL_GATEWAY_LOG_LEVEL", "INFO"),
    )


class DiscoverRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1)
    scopes: list[str] | None = None


class ToolCallRequest(BaseModel):
    backend_id: str = Field(min_length=1)
    tool_name: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)
    agent_id: str | None = None


_config = _load_config()
logging.basicConfig(level=_config.log_level)

_registry = ToolRegistry()
_search_index = ToolSearchIndex()
_registry.on_change(_search_index.index)

_breaker = CircuitBreaker(_config.breaker)
_tracker = HealthTracker()
_trace_store = TraceStore()
_dispatcher = ToolDispatcher(_registry, _breaker, _tracker, _trace_store)
_probe = HealthProbe(
    _dispatcher.probe,
    tracker=_tracker,
    circuit_breaker=_breaker,
    config=_config.probe,
)
for _backend_id in register_builtin_backends(_registry):
    _probe.register(_backend_id)

_agents = AgentService(InMemoryIdentityStore())


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    _probe.start()
    try:
        yield
    finally:
        _probe.stop()


app = FastAPI(title="Tool Gateway", version="0.1.0", lifespan=_lifespan)


def _raise_http(exc: GatewayError) -> NoReturn:
    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(max(1, round(exc.retry_after)))}
    raise HTTPException(status_code=exc.status, detail=exc.to_dict(), headers=headers) from exc


def _agent_payload(identity: AgentIdentity) -> dict[str, Any]:
    return {
        "identity_id": identity.identity_id,
        "name": identity.name,
        "tenant_id": identity.tenant_id,
        "status": identity.status,
        "expires_at": identity.expires_at,
        "created_at": identity.created_at,
        "metadata": identity.metadata.model_dump(),
    }


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "backends": len(_registry.backend_ids()),
        "tools_indexed": _search_index.size,
        "probe_running": _probe.running,
    }


@app.get("/v1/servers/health")
def servers_health() -> dict[str, Any]:
    items = []
    for backend_id in _registry.backend_ids():
        record = _tracker.get(backend_id)
        status = _breaker.get_status(backend_id)
        items.append(
            {
                "backend_id": backend_id,
                "healthy": _tracker.is_healthy(backend_id),
                "last_checked_at": record.last_checked_at if record else None,
                "last_error": record.last_error if record else None,
                "circuit": status.state.value,
                "failures": status.failures,
            }
        )
    return {"items": items}


@app.post("/v1/servers/probe")
async def probe_now() -> dict[str, Any]:
    return {"results": await _probe.probe_all()}


@app.get("/v1/servers/{backend_id}/circuit")
def circuit_status(backend_id: str) -> dict[str, Any]:
    status = _breaker.get_status(backend_id)
    payload = asdict(status)
    payload["state"] = status.state.value
    return payload


@app.post("/v1/servers/{backend_id}/circuit/reset")
def circuit_reset(backend_id: str) -> dict[str, Any]:
    _breaker.reset(backend_id)
    return {"backend_id": backend_id, "state": _breaker.get_status(backend_id).state.value}


@app.post("/v1/tools/discover")
def discover(request: DiscoverRequest) -> dict[str, Any]:
    top_k = min(request.top_k or _config.search.default_top_k, _config.search.max_top_k)
    results = _search_index.search(request.query, top_k)
    if request.scopes is not None:
        results = [
            hit
            for hit in results
            if enforce_tool_policy(request.scopes, hit.backend_id, hit.tool_name)
        ]
    return {"results": [asdict(hit) for hit in results]}


@app.post("/v1/tools/call")
def call_tool(request: ToolCallRequest) -> dict[str, Any]:
    scopes: list[str] | None = None
    try:
        if request.agent_id is not None:
            identity = _agents.get_agent(request.agent_id)
            if identity is None or identity.status != "active":
                raise GatewayError(ErrorKind.NOT_FOUND, f"Agent not found: {request.agent_id}")
            scopes = identity.metadata.scopes
        output = _dispatcher.dispatch(
            request.backend_id,
            request.tool_name,
            request.arguments,
            scopes=scopes,
        )
    except GatewayError as exc:
        _raise_http(exc)
    return {"backend_id": request.backend_id, "tool_name": request.tool_name, "output": output}


@app.post("/v1/agents")
def create_agent(request: CreateAgentRequest) -> dict[str, Any]:
    try:
        identity = _agents.create_agent(request)
    except GatewayError as exc:
        _raise_http(exc)
    return _agent_payload(identity)


@app.get("/v1/agents/{identity_id}")
def get_agent(identity_id: str) -> dict[str, Any]:
    identity = _agents.get_agent(identity_id)
    if identity is None:
        raise HTTPException(status_code=404, detail=f"Agent not found: {identity_id}")
    return _agent_payload(identity)


@app.delete("/v1/agents/{identity_id}")
def revoke_agent(identity_id: str) -> dict[str, Any]:
    if not _agents.revoke_agent(identity_id):
        raise HTTPException(status_code=404, detail=f"Agent not found: {identity_id}")
    return {"identity_id": identity_id, "status": "revoked"}


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Trace not found: {trace_id}") from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
