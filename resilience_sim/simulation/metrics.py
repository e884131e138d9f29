"""
Metrics collection for the resilience simulator.

Terminal outcomes are kept in a short trailing window; every derived
metric in a snapshot comes from that window alone.
"""

from collections import deque
from dataclasses import dataclass, field

from .config import HISTORY_WINDOW_MS
from .distributions import Milliseconds
from .request import RequestStatus


@dataclass(frozen=True)
class CompletedSample:
    """Immutable record of one terminal outcome."""

    status: RequestStatus
    latency: float
    timestamp: Milliseconds


@dataclass(frozen=True)
class SimulationMetrics:
    """Point-in-time metrics derived from the completed-sample window.

    Attributes:
        success: Successful requests in the window.
        failed: Failed requests (dependency failure or breaker fail-fast).
        rejected: Requests refused at admission.
        timed_out: Requests that exceeded their deadline.
        throughput: Completed requests per second over the window.
        avg_latency: Mean latency (ms) of successful requests, 0 if none.
        queue_length: Requests currently active in the pipeline.
    """

    success: int = 0
    failed: int = 0
    rejected: int = 0
    timed_out: int = 0
    throughput: float = 0.0
    avg_latency: float = 0.0
    queue_length: int = 0

    @property
    def total(self) -> int:
        return self.success + self.failed + self.rejected + self.timed_out

    @property
    def error_count(self) -> int:
        """Every non-successful outcome in the window."""
        return self.failed + self.timed_out + self.rejected

    def success_ratio(self) -> float | None:
        """Fraction of windowed outcomes that succeeded, or None if empty."""
        if self.total == 0:
            return None
        return self.success / self.total


class MetricsWindow:
    """Time-pruned sequence of completed samples.

    Args:
        window_ms: Trailing duration kept by :meth:`prune`.
    """

    def __init__(self, window_ms: Milliseconds = HISTORY_WINDOW_MS):
        self.window_ms = window_ms
        self._samples: deque[CompletedSample] = deque()

    @property
    def samples(self) -> tuple[CompletedSample, ...]:
        return tuple(self._samples)

    def record(self, status: RequestStatus, latency: float, now: Milliseconds) -> None:
        """Append a terminal outcome and drop anything that fell out of the window."""
        self._samples.append(CompletedSample(status=status, latency=latency, timestamp=now))
        self.prune(now)

    def prune(self, now: Milliseconds) -> None:
        """Keep only samples with ``now - timestamp < window_ms``."""
        while self._samples and now - self._samples[0].timestamp >= self.window_ms:
            self._samples.popleft()

    def compute(self, queue_length: int) -> SimulationMetrics:
        """Derive metrics from the samples currently in the window."""
        counts = {status: 0 for status in RequestStatus}
        latency_sum = 0.0
        for sample in self._samples:
            counts[sample.status] += 1
            if sample.status == RequestStatus.SUCCESS:
                latency_sum += sample.latency

        success = counts[RequestStatus.SUCCESS]
        avg_latency = latency_sum / success if success else 0.0
        window_seconds = self.window_ms / 1000
        return SimulationMetrics(
            success=success,
            failed=counts[RequestStatus.FAILED],
            rejected=counts[RequestStatus.REJECTED],
            timed_out=counts[RequestStatus.TIMEOUT],
            throughput=len(self._samples) / window_seconds,
            avg_latency=avg_latency,
            queue_length=queue_length,
        )

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __repr__(self) -> str:
        return f"MetricsWindow({len(self._samples)} samples, window={self.window_ms:.0f}ms)"


HISTORY_LENGTH = 40


@dataclass
class MetricsHistory:
    """Fixed-length rolling series for charting recent metrics.

    Each series starts as a baseline of zeros; :meth:`push` shifts the
    oldest point out and appends the newest.
    """

    length: int = HISTORY_LENGTH
    throughput: deque[float] = field(init=False)
    errors: deque[float] = field(init=False)
    latency: deque[float] = field(init=False)

    def __post_init__(self) -> None:
        if self.length < 1:
            raise ValueError(f"History length must be positive, got {self.length}")
        self.reset()

    def push(self, metrics: SimulationMetrics) -> None:
        self.throughput.append(metrics.throughput)
        self.errors.append(float(metrics.error_count))
        self.latency.append(metrics.avg_latency)

    def reset(self) -> None:
        self.throughput = deque([0.0] * self.length, maxlen=self.length)
        self.errors = deque([0.0] * self.length, maxlen=self.length)
        self.latency = deque([0.0] * self.length, maxlen=self.length)

    def as_lists(self) -> dict[str, list[float]]:
        return {
            "throughput": list(self.throughput),
            "errors": list(self.errors),
            "latency": list(self.latency),
        }
