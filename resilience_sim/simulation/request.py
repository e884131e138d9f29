"""
Request model for the resilience simulator.

A request is created on admission, advanced by the engine every tick and
dropped from the active set the moment it reaches a terminal status.
"""

from dataclasses import dataclass
from enum import Enum

from .distributions import Milliseconds

# Pipeline positions (progress proxy, not distance)
ENTRY_POSITION = 50.0
GATEWAY_POSITION = 150.0  # retries re-enter here
SERVICE_POSITION = 400.0


class RequestStatus(Enum):
    """Lifecycle status of a request."""

    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self not in (RequestStatus.PENDING, RequestStatus.RETRYING)


class Lane(Enum):
    """Isolation lane a request travels in."""

    DEFAULT = "default"
    BULKHEAD_1 = "bulkhead_1"
    BULKHEAD_2 = "bulkhead_2"  # impaired lane


@dataclass(frozen=True)
class ServiceCall:
    """One downstream attempt, sampled once when the request reaches the service.

    Attributes:
        started_at: Tick time at which the call began.
        target_latency: Sampled latency (ms) before the outcome is observable.
        will_fail: Pre-sampled outcome of this attempt.
    """

    started_at: Milliseconds
    target_latency: float
    will_fail: bool

    @property
    def completes_at(self) -> Milliseconds:
        return Milliseconds(self.started_at + self.target_latency)

    def is_resolved(self, now: Milliseconds) -> bool:
        """Whether the sampled latency has elapsed at *now*."""
        return now - self.started_at >= self.target_latency


@dataclass
class Request:
    """Mutable, engine-owned state of one in-flight request.

    Attributes:
        request_id: Unique identifier within an engine run.
        start_time: Arrival time; deadlines and latency are measured from it.
        lane: Lane assigned at admission.
        position: Simulated progress along the pipeline.
        status: Current status (``PENDING`` or ``RETRYING`` while active).
        retry_count: Retries already scheduled.
        next_retry_time: When a retrying request resumes (``RETRYING`` only).
        call: In-progress downstream attempt, if any.
    """

    request_id: int
    start_time: Milliseconds
    lane: Lane = Lane.DEFAULT
    position: float = ENTRY_POSITION
    status: RequestStatus = RequestStatus.PENDING
    retry_count: int = 0
    next_retry_time: Milliseconds | None = None
    call: ServiceCall | None = None

    def __post_init__(self) -> None:
        if self.status.is_terminal:
            raise ValueError(f"Cannot construct a request in terminal status {self.status.value}")
        if (self.status == RequestStatus.RETRYING) != (self.next_retry_time is not None):
            raise ValueError("next_retry_time must be set exactly when status is retrying")
        if self.retry_count < 0:
            raise ValueError(f"retry_count must be non-negative, got {self.retry_count}")

    @property
    def at_service(self) -> bool:
        return self.position >= SERVICE_POSITION

    def advance(self, distance: float) -> None:
        """Move toward the service boundary without overshooting it."""
        if self.position < SERVICE_POSITION:
            self.position = min(self.position + distance, SERVICE_POSITION)

    def schedule_retry(self, at: Milliseconds) -> None:
        """Park the request until *at*; the current attempt is discarded."""
        self.retry_count += 1
        self.status = RequestStatus.RETRYING
        self.next_retry_time = at
        self.call = None

    def resume(self) -> None:
        """Re-enter the pipeline at the gateway after a retry delay."""
        self.status = RequestStatus.PENDING
        self.next_retry_time = None
        self.position = GATEWAY_POSITION
        self.call = None

    def finish(self, status: RequestStatus) -> None:
        """Mark the request terminal. The engine drops it immediately after."""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self.status = status
        self.next_retry_time = None
        self.call = None

    def __repr__(self) -> str:
        return (
            f"Request({self.request_id}, {self.status.value}, lane={self.lane.value}, "
            f"x={self.position:.1f}, retries={self.retry_count})"
        )
