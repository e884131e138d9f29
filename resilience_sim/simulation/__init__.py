"""
Tick-driven simulation of a resilient request pipeline.

This package models one request path through rate limiting, bulkhead
lanes, a failing dependency, deadlines, retries and a circuit breaker,
and exposes an immutable snapshot of the pipeline after every tick.
"""

from .distributions import Milliseconds, seconds, Distribution, Uniform
from .config import (
    HISTORY_WINDOW_MS,
    DEFAULT_SIMULATION_CONFIG,
    RetryStrategy,
    SimulationConfig,
    load_config,
    with_overrides,
)
from .request import Lane, Request, RequestStatus, ServiceCall
from .token_bucket import TokenBucket
from .circuit_breaker import BreakerState, CircuitBreaker
from .metrics import CompletedSample, MetricsHistory, MetricsWindow, SimulationMetrics
from .snapshot import RequestView, SimulationSnapshot, empty_snapshot
from .engine import ResilienceEngine
from .simulator import RunSummary, SimulationResult, Simulator

__all__ = [
    # Time units
    "Milliseconds",
    "seconds",
    # Distributions
    "Distribution",
    "Uniform",
    # Configuration
    "HISTORY_WINDOW_MS",
    "DEFAULT_SIMULATION_CONFIG",
    "RetryStrategy",
    "SimulationConfig",
    "load_config",
    "with_overrides",
    # Requests
    "Lane",
    "Request",
    "RequestStatus",
    "ServiceCall",
    # Subsystems
    "TokenBucket",
    "BreakerState",
    "CircuitBreaker",
    "CompletedSample",
    "MetricsHistory",
    "MetricsWindow",
    "SimulationMetrics",
    # Snapshots
    "RequestView",
    "SimulationSnapshot",
    "empty_snapshot",
    # Engine
    "ResilienceEngine",
    # Headless driver
    "RunSummary",
    "SimulationResult",
    "Simulator",
]
