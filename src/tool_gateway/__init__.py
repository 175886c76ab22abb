"""Tool Gateway decision layer package."""

from .config import CircuitBreakerConfig, HealthProbeConfig, SearchConfig

__all__ = ["CircuitBreakerConfig", "HealthProbeConfig", "SearchConfig"]
