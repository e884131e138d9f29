"""
Headless driver for the resilience engine.

The engine is normally ticked once per rendered frame. The simulator
stands in for that frame loop: it feeds synthetic timestamps at a fixed
frame interval, samples metrics periodically (as the UI does for its
charts) and summarizes the run.
"""

import logging
from dataclasses import dataclass, field

from .circuit_breaker import BreakerState
from .config import SimulationConfig
from .distributions import Milliseconds, RandomSource, seconds
from .engine import ResilienceEngine
from .metrics import MetricsHistory, SimulationMetrics
from .snapshot import SimulationSnapshot

logger = logging.getLogger(__name__)

DEFAULT_FRAME_MS = Milliseconds(16)
DEFAULT_SAMPLE_INTERVAL_MS = Milliseconds(200)


@dataclass
class RunSummary:
    """Running means over the periodic metric samples of one run.

    Attributes:
        samples: Number of periodic samples taken.
        throughput_sum: Sum of sampled throughput values.
        latency_sum: Sum of sampled average latencies (samples with successes only).
        latency_samples: Samples that contributed to ``latency_sum``.
        success_ratio_sum: Sum of sampled success ratios (non-empty windows only).
        success_ratio_samples: Samples that contributed to ``success_ratio_sum``.
        breaker_open_samples: Samples taken while the breaker was open.
        peak_queue_length: Largest active-request count observed.
    """

    samples: int = 0
    throughput_sum: float = 0.0
    latency_sum: float = 0.0
    latency_samples: int = 0
    success_ratio_sum: float = 0.0
    success_ratio_samples: int = 0
    breaker_open_samples: int = 0
    peak_queue_length: int = 0

    def add(self, snapshot: SimulationSnapshot) -> None:
        metrics = snapshot.metrics
        self.samples += 1
        self.throughput_sum += metrics.throughput
        if metrics.success > 0:
            self.latency_sum += metrics.avg_latency
            self.latency_samples += 1
        ratio = metrics.success_ratio()
        if ratio is not None:
            self.success_ratio_sum += ratio
            self.success_ratio_samples += 1
        if snapshot.breaker_state == BreakerState.OPEN:
            self.breaker_open_samples += 1
        self.peak_queue_length = max(self.peak_queue_length, metrics.queue_length)

    def mean_throughput(self) -> float:
        if self.samples == 0:
            return 0.0
        return self.throughput_sum / self.samples

    def mean_latency(self) -> float:
        if self.latency_samples == 0:
            return 0.0
        return self.latency_sum / self.latency_samples

    def mean_success_ratio(self) -> float:
        """Mean windowed success ratio; 1.0 when nothing ever completed."""
        if self.success_ratio_samples == 0:
            return 1.0
        return self.success_ratio_sum / self.success_ratio_samples

    def breaker_open_fraction(self) -> float:
        if self.samples == 0:
            return 0.0
        return self.breaker_open_samples / self.samples

    def __repr__(self) -> str:
        return (
            f"RunSummary(samples={self.samples}, "
            f"throughput={self.mean_throughput():.2f}/s, "
            f"success={self.mean_success_ratio() * 100:.1f}%, "
            f"latency={self.mean_latency():.0f}ms)"
        )


@dataclass
class SimulationResult:
    """Result of a headless run.

    Attributes:
        end_time: Final simulated timestamp (ms).
        final_snapshot: Snapshot returned by the last tick.
        summary: Running means over the periodic samples.
        history: Rolling chart series, as the UI would have drawn them.
    """

    end_time: Milliseconds
    final_snapshot: SimulationSnapshot
    summary: RunSummary
    history: MetricsHistory = field(default_factory=MetricsHistory)

    @property
    def final_metrics(self) -> SimulationMetrics:
        return self.final_snapshot.metrics


class Simulator:
    """Fixed-step frame loop around a :class:`ResilienceEngine`.

    Args:
        config: Scenario to simulate.
        seed: Seed for the engine's generator (ignored when *rng* is given).
        rng: Optional random source shared with the engine.
        frame_ms: Interval between ticks.
        sample_interval_ms: Interval between metric samples.
    """

    def __init__(
        self,
        config: SimulationConfig,
        seed: int | None = None,
        rng: RandomSource | None = None,
        frame_ms: float = DEFAULT_FRAME_MS,
        sample_interval_ms: float = DEFAULT_SAMPLE_INTERVAL_MS,
    ):
        if frame_ms <= 0:
            raise ValueError(f"frame_ms must be positive, got {frame_ms}")
        if sample_interval_ms <= 0:
            raise ValueError(f"sample_interval_ms must be positive, got {sample_interval_ms}")
        self.engine = ResilienceEngine(config, rng=rng, seed=seed)
        self.frame_ms = frame_ms
        self.sample_interval_ms = sample_interval_ms
        self.history = MetricsHistory()
        self.summary = RunSummary()
        self.current_time = Milliseconds(0)
        self._last_sample: Milliseconds | None = None
        self._snapshot = self.engine.peek()

    def step(self) -> SimulationSnapshot:
        """Tick the engine once and advance the clock by one frame."""
        self._snapshot = self.engine.tick(self.current_time)
        if (
            self._last_sample is None
            or self.current_time - self._last_sample >= self.sample_interval_ms
        ):
            self.summary.add(self._snapshot)
            self.history.push(self._snapshot.metrics)
            self._last_sample = self.current_time
        self.current_time = Milliseconds(self.current_time + self.frame_ms)
        return self._snapshot

    def run_for(self, duration: float) -> SimulationResult:
        """Run for *duration* ms of simulated time.

        Args:
            duration: How long to run in milliseconds.

        Returns:
            SimulationResult with the final snapshot and run summary.
        """
        end_time = self.current_time + duration
        logger.debug(
            "running %.1fs at %.0fms frames (%s)",
            duration / seconds(1),
            self.frame_ms,
            self.engine.config.retry_strategy.value,
        )
        while self.current_time <= end_time:
            self.step()

        return SimulationResult(
            end_time=Milliseconds(self.current_time - self.frame_ms),
            final_snapshot=self._snapshot,
            summary=self.summary,
            history=self.history,
        )

    def reset(self) -> None:
        """Reset the engine and all run bookkeeping, keeping the configuration."""
        self.engine.reset()
        self.history.reset()
        self.summary = RunSummary()
        self.current_time = Milliseconds(0)
        self._last_sample = None
        self._snapshot = self.engine.peek()
