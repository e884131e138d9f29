"""
Monte Carlo runner for resilience scenarios.

Runs many independent headless simulations of the same configuration and
aggregates their run summaries, so that patterns can be compared on mean
throughput, success ratio, latency and breaker behaviour rather than on a
single noisy run.
"""

import logging
import math
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable

import numpy as np
from scipy import stats as scipy_stats

from .simulation.config import SimulationConfig
from .simulation.distributions import Milliseconds, seconds
from .simulation.simulator import DEFAULT_FRAME_MS, RunSummary, Simulator

logger = logging.getLogger(__name__)


@dataclass
class MonteCarloConfig:
    """Configuration for a batch of simulation runs.

    Attributes:
        num_simulations: Number of simulation runs to execute.
        duration_ms: Simulated time per run.
        frame_ms: Tick interval of the headless frame loop.
        parallel_workers: Number of parallel worker processes (1 = sequential).
        base_seed: Base seed for reproducibility (each run gets base_seed + run_index).
    """

    num_simulations: int
    duration_ms: Milliseconds = field(default_factory=lambda: seconds(30))
    frame_ms: Milliseconds = DEFAULT_FRAME_MS
    parallel_workers: int = 1
    base_seed: int | None = None

    def __post_init__(self) -> None:
        if self.num_simulations < 1:
            raise ValueError(f"num_simulations must be >= 1, got {self.num_simulations}")
        if self.duration_ms <= 0:
            raise ValueError(f"duration_ms must be positive, got {self.duration_ms}")
        if self.frame_ms <= 0:
            raise ValueError(f"frame_ms must be positive, got {self.frame_ms}")
        if self.parallel_workers < 1:
            raise ValueError(f"parallel_workers must be >= 1, got {self.parallel_workers}")


@dataclass
class MonteCarloResults:
    """Aggregated results from Monte Carlo simulation.

    Attributes:
        throughput_samples: Mean throughput (req/s) of each run.
        success_ratio_samples: Mean windowed success ratio of each run.
        latency_samples: Mean success latency (ms) of each run.
        breaker_open_samples: Fraction of each run spent with the breaker open.
        peak_queue_samples: Peak active-request count of each run.
    """

    throughput_samples: list[float] = field(default_factory=list)
    success_ratio_samples: list[float] = field(default_factory=list)
    latency_samples: list[float] = field(default_factory=list)
    breaker_open_samples: list[float] = field(default_factory=list)
    peak_queue_samples: list[int] = field(default_factory=list)

    def add(self, summary: RunSummary) -> None:
        self.throughput_samples.append(summary.mean_throughput())
        self.success_ratio_samples.append(summary.mean_success_ratio())
        self.latency_samples.append(summary.mean_latency())
        self.breaker_open_samples.append(summary.breaker_open_fraction())
        self.peak_queue_samples.append(summary.peak_queue_length)

    @property
    def num_runs(self) -> int:
        return len(self.throughput_samples)

    def throughput_mean(self) -> float:
        return _mean(self.throughput_samples)

    def success_ratio_mean(self) -> float:
        return _mean(self.success_ratio_samples)

    def success_ratio_std(self) -> float:
        """Sample standard deviation of the success ratio."""
        if len(self.success_ratio_samples) < 2:
            return 0.0
        return float(np.std(self.success_ratio_samples, ddof=1))

    def latency_mean(self) -> float:
        return _mean(self.latency_samples)

    def latency_percentile(self, p: float) -> float:
        """Percentile (0-100) of per-run mean latency."""
        if not self.latency_samples:
            return 0.0
        return float(np.percentile(self.latency_samples, p))

    def breaker_open_mean(self) -> float:
        return _mean(self.breaker_open_samples)

    def peak_queue_max(self) -> int:
        return max(self.peak_queue_samples, default=0)

    def ci_success_ratio(
        self, confidence_level: float = 0.95
    ) -> tuple[float, float] | None:
        """Confidence interval for the mean success ratio."""
        return _t_interval(self.success_ratio_samples, confidence_level)

    def ci_throughput(
        self, confidence_level: float = 0.95
    ) -> tuple[float, float] | None:
        """Confidence interval for the mean throughput."""
        return _t_interval(self.throughput_samples, confidence_level)

    def summary(self) -> str:
        """Generate a text summary of results."""
        lines = [
            f"Monte Carlo Results ({self.num_runs} runs)",
        ]

        ci = self.ci_success_ratio()
        if ci is not None:
            lines.append(
                f"  Success ratio: {self.success_ratio_mean()*100:.2f}% "
                f"(95% CI: [{ci[0]*100:.2f}, {ci[1]*100:.2f}]%)"
            )
        else:
            lines.append(f"  Success ratio: {self.success_ratio_mean()*100:.2f}%")

        ci = self.ci_throughput()
        if ci is not None:
            lines.append(
                f"  Throughput: {self.throughput_mean():.2f} req/s "
                f"(95% CI: [{ci[0]:.2f}, {ci[1]:.2f}])"
            )
        else:
            lines.append(f"  Throughput: {self.throughput_mean():.2f} req/s")

        lines.append(
            f"  Latency: {self.latency_mean():.0f} ms mean, "
            f"{self.latency_percentile(95):.0f} ms p95 across runs"
        )
        lines.append(f"  Breaker open: {self.breaker_open_mean()*100:.1f}% of samples")
        lines.append(f"  Peak active requests: {self.peak_queue_max()}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"MonteCarloResults(n={self.num_runs}, "
            f"success={self.success_ratio_mean()*100:.2f}%)"
        )


def _mean(samples: list[float]) -> float:
    if not samples:
        return 0.0
    return float(np.mean(samples))


def _t_interval(
    samples: list[float], confidence_level: float
) -> tuple[float, float] | None:
    """Two-sided t-distribution interval for the sample mean.

    Returns None with fewer than two samples.
    """
    n = len(samples)
    if n < 2:
        return None
    sample_mean = float(np.mean(samples))
    sample_std = float(np.std(samples, ddof=1))
    alpha = 1.0 - confidence_level
    t_crit = scipy_stats.t.ppf(1 - alpha / 2, df=n - 1)
    margin = t_crit * sample_std / math.sqrt(n)
    return (sample_mean - margin, sample_mean + margin)


def _run_single_simulation(
    config: SimulationConfig,
    duration_ms: float,
    frame_ms: float,
    seed: int | None,
) -> RunSummary:
    """Run one headless simulation.

    Module-level so it can be shipped to worker processes.
    """
    simulator = Simulator(config, seed=seed, frame_ms=frame_ms)
    return simulator.run_for(duration_ms).summary


class MonteCarloRunner:
    """Runs multiple simulations and aggregates results.

    Supports parallel execution for faster results on multi-core systems.
    """

    def __init__(self, config: MonteCarloConfig):
        """Initialize the runner.

        Args:
            config: Monte Carlo configuration.
        """
        self.config = config

    def _seed_for(self, index: int) -> int | None:
        if self.config.base_seed is None:
            return None
        return self.config.base_seed + index

    def run(
        self,
        scenario: SimulationConfig,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> MonteCarloResults:
        """Run Monte Carlo simulations of *scenario*.

        Args:
            scenario: Engine configuration shared by every run.
            progress_callback: Optional callback(completed, total) for progress updates.

        Returns:
            Aggregated MonteCarloResults.
        """
        results = MonteCarloResults()
        logger.debug(
            "starting %d runs (%d workers)",
            self.config.num_simulations,
            self.config.parallel_workers,
        )

        if self.config.parallel_workers > 1:
            self._run_parallel(scenario, results, progress_callback)
        else:
            self._run_sequential(scenario, results, progress_callback)

        return results

    def _run_sequential(
        self,
        scenario: SimulationConfig,
        results: MonteCarloResults,
        progress_callback: Callable[[int, int], None] | None,
    ) -> None:
        """Run simulations sequentially."""
        for i in range(self.config.num_simulations):
            summary = _run_single_simulation(
                scenario,
                self.config.duration_ms,
                self.config.frame_ms,
                self._seed_for(i),
            )
            results.add(summary)

            if progress_callback:
                progress_callback(i + 1, self.config.num_simulations)

    def _run_parallel(
        self,
        scenario: SimulationConfig,
        results: MonteCarloResults,
        progress_callback: Callable[[int, int], None] | None,
    ) -> None:
        """Run simulations in parallel using ProcessPoolExecutor."""
        completed = 0

        with ProcessPoolExecutor(max_workers=self.config.parallel_workers) as executor:
            futures = [
                executor.submit(
                    _run_single_simulation,
                    scenario,
                    self.config.duration_ms,
                    self.config.frame_ms,
                    self._seed_for(i),
                )
                for i in range(self.config.num_simulations)
            ]

            for future in as_completed(futures):
                results.add(future.result())

                completed += 1
                if progress_callback:
                    progress_callback(completed, self.config.num_simulations)


def run_monte_carlo(
    scenario: SimulationConfig,
    num_simulations: int,
    duration_ms: float = seconds(30),
    frame_ms: float = DEFAULT_FRAME_MS,
    parallel_workers: int = 1,
    seed: int | None = None,
) -> MonteCarloResults:
    """Convenience wrapper around :class:`MonteCarloRunner`."""
    config = MonteCarloConfig(
        num_simulations=num_simulations,
        duration_ms=Milliseconds(duration_ms),
        frame_ms=Milliseconds(frame_ms),
        parallel_workers=parallel_workers,
        base_seed=seed,
    )
    return MonteCarloRunner(config).run(scenario)


def compare_configs(
    scenarios: dict[str, SimulationConfig],
    num_simulations: int,
    duration_ms: float = seconds(30),
    frame_ms: float = DEFAULT_FRAME_MS,
    parallel_workers: int = 1,
    seed: int | None = None,
) -> dict[str, MonteCarloResults]:
    """Run the same batch for each named scenario.

    Every scenario uses the same seeds, so differences come from the
    configuration rather than from the random stream.
    """
    return {
        name: run_monte_carlo(
            scenario,
            num_simulations=num_simulations,
            duration_ms=duration_ms,
            frame_ms=frame_ms,
            parallel_workers=parallel_workers,
            seed=seed,
        )
        for name, scenario in scenarios.items()
    }
