"""
Immutable snapshots of engine state.

Snapshots are detached copies: nothing in them aliases the engine's
mutable request objects, so consumers may hold on to them freely.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from .circuit_breaker import BreakerState
from .distributions import Milliseconds
from .metrics import SimulationMetrics
from .request import Lane, Request, RequestStatus, ServiceCall


@dataclass(frozen=True)
class RequestView:
    """Read-only copy of a request at snapshot time."""

    request_id: int
    position: float
    lane: Lane
    status: RequestStatus
    start_time: Milliseconds
    retry_count: int
    next_retry_time: Milliseconds | None
    call: ServiceCall | None

    @classmethod
    def of(cls, request: Request) -> "RequestView":
        # ServiceCall is frozen, sharing it is safe
        return cls(
            request_id=request.request_id,
            position=request.position,
            lane=request.lane,
            status=request.status,
            start_time=request.start_time,
            retry_count=request.retry_count,
            next_retry_time=request.next_retry_time,
            call=request.call,
        )


@dataclass(frozen=True)
class SimulationSnapshot:
    """State of the pipeline after a tick.

    Attributes:
        requests: Active (non-terminal) requests.
        metrics: Metrics derived from the completed-sample window.
        breaker_state: Circuit breaker state.
        breaker_failures: Circuit breaker failure counter.
        tokens: Tokens currently in the rate-limit bucket.
    """

    requests: tuple[RequestView, ...] = ()
    metrics: SimulationMetrics = field(default_factory=SimulationMetrics)
    breaker_state: BreakerState = BreakerState.CLOSED
    breaker_failures: int = 0
    tokens: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Export as plain data, enums rendered as their string values."""
        return {
            "requests": [_request_to_dict(view) for view in self.requests],
            "metrics": asdict(self.metrics),
            "breaker_state": self.breaker_state.value,
            "breaker_failures": self.breaker_failures,
            "tokens": self.tokens,
        }


def _request_to_dict(view: RequestView) -> dict[str, Any]:
    data = asdict(view)
    data["lane"] = view.lane.value
    data["status"] = view.status.value
    return data


def empty_snapshot() -> SimulationSnapshot:
    """Snapshot shown before an engine exists."""
    return SimulationSnapshot()
