"""
Simulation configuration for the resilience engine.

The configuration is a plain value object: the engine reads it every tick
and never mutates it. Numeric fields are deliberately not range-checked
here; the engine clamps malformed values where it derives pacing from them.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .distributions import Milliseconds

# Trailing window for derived metrics
HISTORY_WINDOW_MS = Milliseconds(2000)


class RetryStrategy(Enum):
    """How a failed attempt is rescheduled."""

    OFF = "off"
    FIXED = "fixed"  # 100 * 2^n ms
    JITTER = "jitter"  # fixed delay scaled by U[0.5, 1.5)


@dataclass(frozen=True)
class SimulationConfig:
    """Externally supplied parameters for one simulated pipeline.

    Attributes:
        rps: Offered traffic in requests per second.
        service_latency_base: Base latency (ms) of the downstream dependency.
        service_failure_rate: Probability that a downstream attempt fails.
        timeout_ms: Per-request deadline, measured from arrival.
        retry_strategy: Retry policy for failed or timed-out attempts.
        max_retries: Upper bound on retries per request.
        circuit_breaker_enabled: Whether the breaker guards the dependency.
        rate_limiter_enabled: Whether admission consumes tokens.
        rate_limit_rps: Token refill rate, also the bucket capacity.
        bulkhead_enabled: Whether requests are split across two lanes.
        backpressure_enabled: Whether admission is bounded by occupancy.
        queue_size: Occupancy bound used by backpressure.
        breaker_failure_threshold: Consecutive failures that trip the breaker.
        breaker_cooldown_ms: Time spent open before probing (half-open).
    """

    rps: float = 10.0
    service_latency_base: float = 100.0
    service_failure_rate: float = 0.05
    timeout_ms: float = 800.0
    retry_strategy: RetryStrategy = RetryStrategy.OFF
    max_retries: int = 3
    circuit_breaker_enabled: bool = False
    rate_limiter_enabled: bool = False
    rate_limit_rps: float = 15.0
    bulkhead_enabled: bool = False
    backpressure_enabled: bool = False
    queue_size: int = 50
    breaker_failure_threshold: int = 5
    breaker_cooldown_ms: float = 3000.0

    def __post_init__(self) -> None:
        for name, kind in _NUMERIC_FIELDS.items():
            self._coerce_number(name, kind)

        if self.retry_strategy is False:
            # YAML 1.1 reads a bare ``off`` as a boolean
            object.__setattr__(self, "retry_strategy", RetryStrategy.OFF)
        elif not isinstance(self.retry_strategy, RetryStrategy):
            try:
                strategy = RetryStrategy(str(self.retry_strategy).lower())
            except ValueError:
                choices = ", ".join(s.value for s in RetryStrategy)
                raise ValueError(
                    f"Unknown retry strategy {self.retry_strategy!r} (expected one of: {choices})"
                ) from None
            object.__setattr__(self, "retry_strategy", strategy)

    def _coerce_number(self, name: str, kind: type) -> None:
        """Convert a numeric field in place; range checks are left to the engine."""
        value = getattr(self, name)
        try:
            object.__setattr__(self, name, kind(value))
        except (TypeError, ValueError, OverflowError):
            raise ValueError(
                f"Configuration field {name} must be a number, got {value!r}"
            ) from None

    @property
    def bucket_capacity(self) -> float:
        """Token bucket capacity, never negative."""
        return max(0.0, float(self.rate_limit_rps))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimulationConfig":
        """Build a config from a mapping.

        Accepts snake_case field names as well as the camelCase keys used by
        the browser front end (``timeoutMs``, ``serviceBLatencyBase``, ...).

        Raises:
            ValueError: If a key does not name a configuration field.
        """
        return cls(**normalize_keys(data))

    def to_dict(self) -> dict[str, Any]:
        """Export as plain data (enum values as strings)."""
        data = dataclasses.asdict(self)
        data["retry_strategy"] = self.retry_strategy.value
        return data


_CAMEL_CASE_KEYS = {
    "serviceBLatencyBase": "service_latency_base",
    "serviceBFailureRate": "service_failure_rate",
    "timeoutMs": "timeout_ms",
    "retryStrategy": "retry_strategy",
    "maxRetries": "max_retries",
    "circuitBreakerEnabled": "circuit_breaker_enabled",
    "rateLimiterEnabled": "rate_limiter_enabled",
    "rateLimitRPS": "rate_limit_rps",
    "bulkheadEnabled": "bulkhead_enabled",
    "backpressureEnabled": "backpressure_enabled",
    "queueSize": "queue_size",
}

_NUMERIC_FIELDS: dict[str, type] = {
    "rps": float,
    "service_latency_base": float,
    "service_failure_rate": float,
    "timeout_ms": float,
    "max_retries": int,
    "rate_limit_rps": float,
    "queue_size": int,
    "breaker_failure_threshold": int,
    "breaker_cooldown_ms": float,
}


DEFAULT_SIMULATION_CONFIG = SimulationConfig()


def normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Map camelCase keys to field names, rejecting unknown keys."""
    field_names = {f.name for f in dataclasses.fields(SimulationConfig)}
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        name = _CAMEL_CASE_KEYS.get(key, key)
        if name not in field_names:
            raise ValueError(f"Unknown configuration key: {key!r}")
        normalized[name] = value
    return normalized


def with_overrides(config: SimulationConfig, **changes: Any) -> SimulationConfig:
    """Return a copy of *config* with the given fields replaced."""
    return dataclasses.replace(config, **changes)


def load_config(path: str | Path) -> SimulationConfig:
    """Load a scenario from a YAML file.

    The mapping may sit at the top level or under a ``simulation:`` key.
    An empty file yields the defaults.

    Raises:
        ValueError: If the document is not a mapping or names unknown keys.
    """
    with open(path, "r") as f:
        document = yaml.safe_load(f)

    if document is None:
        return SimulationConfig()
    if isinstance(document, dict) and isinstance(document.get("simulation"), dict):
        document = document["simulation"]
    if not isinstance(document, dict):
        raise ValueError(f"Scenario file {path} must contain a mapping")
    return SimulationConfig.from_dict(document)
