"""Configuration models for the gateway decision layer."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CircuitBreakerConfig(BaseModel):
    """Configures when a backend circuit opens and when it may be re-probed."""

    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: int = Field(default=30_000, ge=0)


class HealthProbeConfig(BaseModel):
    """Configures the periodic liveness probe loop."""

    interval_ms: int = Field(default=60_000, gt=0)
    probe_timeout_ms: int = Field(default=10_000, gt=0)
    max_concurrency: int = Field(default=32, ge=1)


class SearchConfig(BaseModel):
    """Configures tool discovery ranking limits."""

    default_top_k: int = Field(default=10, ge=1)
    max_top_k: int = Field(default=50, ge=1)


class GatewayConfig(BaseModel):
    """Top-level settings used by the API process."""

    breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    probe: HealthProbeConfig = Field(default_factory=HealthProbeConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    log_level: str = "INFO"
