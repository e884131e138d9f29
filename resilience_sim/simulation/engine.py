"""
Tick-driven engine for the resilience simulator.

Each call to :meth:`ResilienceEngine.tick` advances simulated time by the
wall-clock delta since the previous call and runs, in order: token refill,
breaker cooldown, admission of at most one new request, hand-off of one
buffered request, request advancement (service calls, deadlines, retries)
and metric derivation.
"""

import logging
import math
from collections import deque

import numpy as np

from .circuit_breaker import CircuitBreaker
from .config import DEFAULT_SIMULATION_CONFIG, RetryStrategy, SimulationConfig
from .distributions import Milliseconds, RandomSource, Uniform
from .metrics import MetricsWindow
from .request import (
    ENTRY_POSITION,
    SERVICE_POSITION,
    Lane,
    Request,
    RequestStatus,
    ServiceCall,
)
from .snapshot import RequestView, SimulationSnapshot
from .token_bucket import TokenBucket

logger = logging.getLogger(__name__)

# Requests should cross the pipeline within this share of the timeout
VELOCITY_HEADROOM = 0.7
MIN_TIMEOUT_SECONDS = 0.1

LATENCY_SPREAD = Uniform(0.0, 200.0)
JITTER_FACTOR = Uniform(0.5, 1.5)
RETRY_BASE_DELAY_MS = 100.0

# Penalties for the impaired bulkhead lane
IMPAIRED_LANE = Lane.BULKHEAD_2
IMPAIRED_LANE_EXTRA_LATENCY = 1000.0
IMPAIRED_LANE_FAILURE_RATE = 0.8


class ResilienceEngine:
    """Discrete-time simulation of one request pipeline.

    The engine owns all mutable state (active requests, breaker, token
    bucket, completed-sample window); callers only see detached snapshots.

    Args:
        config: Initial configuration (defaults to the stock scenario).
        rng: Random source shared by every draw. Defaults to
            ``numpy.random.default_rng(seed)``.
        seed: Seed for the default generator; ignored when *rng* is given.
    """

    def __init__(
        self,
        config: SimulationConfig | None = None,
        rng: RandomSource | None = None,
        seed: int | None = None,
    ):
        self._config = config or DEFAULT_SIMULATION_CONFIG
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        self._requests: list[Request] = []
        # Hand-off buffer drained one per tick; admission never fills it
        self._queue: deque[Request] = deque()
        self._window = MetricsWindow()
        self._breaker = CircuitBreaker()
        self._bucket = TokenBucket(self._config.bucket_capacity)
        self._next_id = 0
        self._last_tick: Milliseconds | None = None

    # -- public API ------------------------------------------------------

    @property
    def config(self) -> SimulationConfig:
        """Configuration in effect; replace it with :meth:`update_config`."""
        return self._config

    def tick(self, now: float) -> SimulationSnapshot:
        """Advance the simulation to *now* and return a fresh snapshot.

        The first call only records the baseline timestamp. Timestamps that
        go backwards are treated as zero elapsed time.
        """
        now = Milliseconds(now)
        if self._last_tick is None:
            self._last_tick = now
        delta = max(0.0, now - self._last_tick)
        if now > self._last_tick:
            self._last_tick = now
        else:
            # Never move simulated time backward
            now = self._last_tick

        config = self._config
        self._bucket.refill(delta, config.bucket_capacity, config.rate_limiter_enabled)
        self._breaker.update(now, config.circuit_breaker_enabled, config.breaker_cooldown_ms)
        self._maybe_admit(now, delta)
        self._process_queue(now)
        self._advance_requests(now, delta)
        self._window.prune(now)
        return self._snapshot()

    def peek(self) -> SimulationSnapshot:
        """Snapshot of current state without advancing time."""
        return self._snapshot()

    def update_config(self, config: SimulationConfig) -> None:
        """Replace the configuration used from the next tick on."""
        logger.debug("config updated: %s", config)
        self._config = config

    def reset(self) -> None:
        """Clear all simulation state; the configuration is kept."""
        logger.debug("engine reset (%d active requests dropped)", len(self._requests))
        self._requests = []
        self._queue.clear()
        self._window.clear()
        self._breaker.reset()
        self._bucket.reset(self._config.bucket_capacity)
        self._next_id = 0
        self._last_tick = None

    # -- admission -------------------------------------------------------

    def _maybe_admit(self, now: Milliseconds, delta: float) -> None:
        """Spawn at most one request, applying the admission stack in order.

        Rate limit, then lane assignment, then capacity, then dependency
        health. The first refusal ends admission for this tick.
        """
        config = self._config
        probability = config.rps * delta / 1000
        if not self.rng.random() < probability:
            return

        if config.rate_limiter_enabled and not self._bucket.try_consume():
            self._window.record(RequestStatus.REJECTED, 0.0, now)
            return

        lane = Lane.DEFAULT
        if config.bulkhead_enabled:
            lane = Lane.BULKHEAD_1 if self.rng.random() > 0.5 else Lane.BULKHEAD_2

        if config.backpressure_enabled and self._occupancy() >= config.queue_size:
            self._window.record(RequestStatus.REJECTED, 0.0, now)
            return

        if self._breaker.is_open:
            # Fail fast without touching the dependency
            self._window.record(RequestStatus.FAILED, 0.0, now)
            return

        self._requests.append(Request(request_id=self._next_id, start_time=now, lane=lane))
        self._next_id += 1

    def _occupancy(self) -> int:
        pending = sum(1 for r in self._requests if r.status == RequestStatus.PENDING)
        return pending + len(self._queue)

    def _process_queue(self, now: Milliseconds) -> None:
        """Move one buffered request into the pipeline, restarting its clock."""
        if not self._queue:
            return
        request = self._queue.popleft()
        request.start_time = now
        self._requests.append(request)

    # -- request lifecycle -----------------------------------------------

    def _advance_requests(self, now: Milliseconds, delta: float) -> None:
        distance = self._velocity() * delta / 1000

        for request in list(self._requests):
            if request.status == RequestStatus.RETRYING:
                if now < request.next_retry_time:
                    continue
                request.resume()

            request.advance(distance)

            if request.at_service and request.status == RequestStatus.PENDING:
                self._attempt_service_call(request, now)

            if (
                request.status == RequestStatus.PENDING
                and now - request.start_time > self._config.timeout_ms
            ):
                self._handle_failure(request, RequestStatus.TIMEOUT, now)

    def _attempt_service_call(self, request: Request, now: Milliseconds) -> None:
        if request.call is None:
            request.call = self._sample_call(request.lane, now)

        call = request.call
        if not call.is_resolved(now):
            return

        deadline = request.start_time + self._config.timeout_ms
        if call.completes_at > deadline:
            # The deadline passed before the dependency answered
            self._handle_failure(request, RequestStatus.TIMEOUT, now)
            return
        if call.will_fail:
            self._handle_failure(request, RequestStatus.FAILED, now)
            return

        if self._config.circuit_breaker_enabled:
            self._breaker.record_success()
        self._complete(request, RequestStatus.SUCCESS, now)

    def _sample_call(self, lane: Lane, now: Milliseconds) -> ServiceCall:
        """Sample latency and outcome once for this attempt."""
        config = self._config
        failure_chance = config.service_failure_rate
        latency = config.service_latency_base + LATENCY_SPREAD.sample(self.rng)
        if config.bulkhead_enabled and lane == IMPAIRED_LANE:
            latency += IMPAIRED_LANE_EXTRA_LATENCY
            failure_chance = IMPAIRED_LANE_FAILURE_RATE
        will_fail = bool(self.rng.random() < failure_chance)
        return ServiceCall(started_at=now, target_latency=latency, will_fail=will_fail)

    def _handle_failure(
        self, request: Request, outcome: RequestStatus, now: Milliseconds
    ) -> None:
        """Shared path for dependency failures and deadline expiry."""
        config = self._config
        if config.circuit_breaker_enabled:
            self._breaker.record_failure(now, config.breaker_failure_threshold)

        can_retry = (
            config.retry_strategy != RetryStrategy.OFF
            and request.retry_count < config.max_retries
        )
        if can_retry:
            delay = RETRY_BASE_DELAY_MS * 2 ** (request.retry_count + 1)
            if config.retry_strategy == RetryStrategy.JITTER:
                delay *= JITTER_FACTOR.sample(self.rng)
            request.schedule_retry(Milliseconds(now + delay))
            return

        self._complete(request, outcome, now)

    def _complete(self, request: Request, outcome: RequestStatus, now: Milliseconds) -> None:
        """Record a terminal outcome and drop the request from the active set."""
        request.finish(outcome)
        self._window.record(outcome, now - request.start_time, now)
        self._requests.remove(request)

    # -- derived values --------------------------------------------------

    def _velocity(self) -> float:
        """Pipeline units per second, paced so requests arrive inside their deadline."""
        distance = SERVICE_POSITION - ENTRY_POSITION
        timeout_seconds = max(self._config.timeout_ms / 1000, MIN_TIMEOUT_SECONDS)
        safe_window = max(timeout_seconds * VELOCITY_HEADROOM, MIN_TIMEOUT_SECONDS)
        velocity = distance / safe_window
        if not math.isfinite(velocity) or velocity <= 0:
            return distance
        return velocity

    def _snapshot(self) -> SimulationSnapshot:
        return SimulationSnapshot(
            requests=tuple(RequestView.of(r) for r in self._requests),
            metrics=self._window.compute(queue_length=len(self._requests)),
            breaker_state=self._breaker.state,
            breaker_failures=self._breaker.failure_count,
            tokens=self._bucket.tokens,
        )

    def __repr__(self) -> str:
        return (
            f"ResilienceEngine({len(self._requests)} active, {self._breaker!r}, "
            f"{self._bucket!r})"
        )
