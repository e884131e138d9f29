"""
Tests for the building blocks of the resilience simulator.

Tests cover time units, distributions, configuration, the request model,
the token bucket, the circuit breaker, the metrics window and snapshots.
"""

import numpy as np
import pytest

from resilience_sim.simulation import (
    # Time units
    seconds,
    # Distributions
    Uniform,
    # Configuration
    HISTORY_WINDOW_MS,
    DEFAULT_SIMULATION_CONFIG,
    RetryStrategy,
    SimulationConfig,
    load_config,
    with_overrides,
    # Requests
    Lane,
    Request,
    RequestStatus,
    ServiceCall,
    # Subsystems
    TokenBucket,
    BreakerState,
    CircuitBreaker,
    MetricsHistory,
    MetricsWindow,
    SimulationMetrics,
    # Snapshots
    RequestView,
    SimulationSnapshot,
    empty_snapshot,
)
from resilience_sim.simulation.request import GATEWAY_POSITION, SERVICE_POSITION


# =============================================================================
# Time Unit / Distribution Tests
# =============================================================================


class TestTimeUnits:
    def test_seconds_conversion(self):
        assert seconds(1) == 1000
        assert seconds(2.5) == 2500


class TestDistributions:
    def test_uniform_sample(self):
        dist = Uniform(low=10.0, high=20.0)
        rng = np.random.default_rng(42)

        samples = [dist.sample(rng) for _ in range(1000)]

        assert all(10.0 <= s < 20.0 for s in samples)
        # Mean should be approximately 15
        assert 14.5 < np.mean(samples) < 15.5

    def test_uniform_invalid_bounds(self):
        with pytest.raises(ValueError):
            Uniform(low=5.0, high=5.0)
        with pytest.raises(ValueError):
            Uniform(low=2.0, high=1.0)


# =============================================================================
# Configuration Tests
# =============================================================================


class TestSimulationConfig:
    def test_default_values(self):
        config = SimulationConfig()
        assert config.rps == 10
        assert config.service_latency_base == 100
        assert config.service_failure_rate == 0.05
        assert config.timeout_ms == 800
        assert config.retry_strategy == RetryStrategy.OFF
        assert config.max_retries == 3
        assert config.circuit_breaker_enabled is False
        assert config.rate_limiter_enabled is False
        assert config.rate_limit_rps == 15
        assert config.bulkhead_enabled is False
        assert config.backpressure_enabled is False
        assert config.queue_size == 50
        assert config.breaker_failure_threshold == 5
        assert config.breaker_cooldown_ms == 3000
        assert config == DEFAULT_SIMULATION_CONFIG

    def test_retry_strategy_coerced_from_string(self):
        assert SimulationConfig(retry_strategy="jitter").retry_strategy == RetryStrategy.JITTER
        assert SimulationConfig(retry_strategy="FIXED").retry_strategy == RetryStrategy.FIXED

    def test_unknown_retry_strategy(self):
        with pytest.raises(ValueError, match="Unknown retry strategy"):
            SimulationConfig(retry_strategy="exponential")

    def test_malformed_numbers_are_accepted(self):
        # The engine clamps these where it uses them
        config = SimulationConfig(timeout_ms=-5, rate_limit_rps=-3)
        assert config.timeout_ms == -5
        assert config.bucket_capacity == 0.0

    def test_from_dict_accepts_camel_case(self):
        config = SimulationConfig.from_dict(
            {
                "rps": 25,
                "serviceBLatencyBase": 300,
                "timeoutMs": 1200,
                "retryStrategy": "fixed",
                "circuitBreakerEnabled": True,
                "queue_size": 7,
            }
        )
        assert config.rps == 25
        assert config.service_latency_base == 300
        assert config.timeout_ms == 1200
        assert config.retry_strategy == RetryStrategy.FIXED
        assert config.circuit_breaker_enabled is True
        assert config.queue_size == 7

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown configuration key"):
            SimulationConfig.from_dict({"rpm": 10})

    def test_to_dict_round_trips_through_from_dict(self):
        config = SimulationConfig(retry_strategy=RetryStrategy.JITTER, max_retries=5)
        data = config.to_dict()
        assert data["retry_strategy"] == "jitter"
        assert SimulationConfig.from_dict(data) == config

    def test_with_overrides(self):
        config = with_overrides(DEFAULT_SIMULATION_CONFIG, rps=40, retry_strategy="fixed")
        assert config.rps == 40
        assert config.retry_strategy == RetryStrategy.FIXED
        # Original untouched
        assert DEFAULT_SIMULATION_CONFIG.rps == 10

    def test_load_config_flat(self, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text("rps: 20\nretryStrategy: jitter\nbulkhead_enabled: true\n")

        config = load_config(path)
        assert config.rps == 20
        assert config.retry_strategy == RetryStrategy.JITTER
        assert config.bulkhead_enabled is True

    def test_load_config_nested(self, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text("simulation:\n  timeout_ms: 400\n  max_retries: 1\n")

        config = load_config(path)
        assert config.timeout_ms == 400
        assert config.max_retries == 1

    def test_load_config_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == SimulationConfig()

    def test_load_config_rejects_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_load_config_bare_off_strategy(self, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text("retry_strategy: off\n")
        assert load_config(path).retry_strategy == RetryStrategy.OFF

    def test_numeric_fields_converted(self, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text("rps: 1e3\nqueueSize: '12'\ntimeoutMs: 900\n")

        config = load_config(path)
        assert config.rps == 1000.0
        assert isinstance(config.rps, float)
        assert config.queue_size == 12
        assert isinstance(config.timeout_ms, float)

    @pytest.mark.parametrize(
        "kwargs", [{"rps": "fast"}, {"max_retries": None}, {"queue_size": float("inf")}]
    )
    def test_non_numeric_values_rejected(self, kwargs):
        with pytest.raises(ValueError, match="must be a number"):
            SimulationConfig(**kwargs)


# =============================================================================
# Request Tests
# =============================================================================


class TestRequest:
    def test_new_request_is_pending(self):
        request = Request(request_id=1, start_time=100.0)
        assert request.status == RequestStatus.PENDING
        assert request.lane == Lane.DEFAULT
        assert request.next_retry_time is None
        assert request.call is None
        assert not request.at_service

    def test_terminal_status_cannot_be_constructed(self):
        with pytest.raises(ValueError):
            Request(request_id=1, start_time=0.0, status=RequestStatus.SUCCESS)

    def test_retrying_requires_next_retry_time(self):
        with pytest.raises(ValueError):
            Request(request_id=1, start_time=0.0, status=RequestStatus.RETRYING)
        with pytest.raises(ValueError):
            Request(request_id=1, start_time=0.0, next_retry_time=50.0)

        request = Request(
            request_id=1, start_time=0.0, status=RequestStatus.RETRYING, next_retry_time=50.0
        )
        assert request.next_retry_time == 50.0

    def test_advance_clamps_at_service(self):
        request = Request(request_id=1, start_time=0.0)
        request.advance(10_000)
        assert request.position == SERVICE_POSITION
        assert request.at_service

    def test_retry_cycle(self):
        request = Request(request_id=1, start_time=0.0, position=SERVICE_POSITION)
        request.call = ServiceCall(started_at=10.0, target_latency=50.0, will_fail=True)

        request.schedule_retry(500.0)
        assert request.status == RequestStatus.RETRYING
        assert request.retry_count == 1
        assert request.next_retry_time == 500.0
        assert request.call is None

        request.resume()
        assert request.status == RequestStatus.PENDING
        assert request.next_retry_time is None
        assert request.position == GATEWAY_POSITION

    def test_finish_requires_terminal_status(self):
        request = Request(request_id=1, start_time=0.0)
        with pytest.raises(ValueError):
            request.finish(RequestStatus.RETRYING)
        request.finish(RequestStatus.TIMEOUT)
        assert request.status == RequestStatus.TIMEOUT

    def test_service_call_resolution(self):
        call = ServiceCall(started_at=100.0, target_latency=250.0, will_fail=False)
        assert call.completes_at == 350.0
        assert not call.is_resolved(349.0)
        assert call.is_resolved(350.0)

    def test_status_terminality(self):
        assert not RequestStatus.PENDING.is_terminal
        assert not RequestStatus.RETRYING.is_terminal
        for status in (
            RequestStatus.SUCCESS,
            RequestStatus.FAILED,
            RequestStatus.TIMEOUT,
            RequestStatus.REJECTED,
        ):
            assert status.is_terminal


# =============================================================================
# Token Bucket Tests
# =============================================================================


class TestTokenBucket:
    def test_starts_full(self):
        assert TokenBucket(15).tokens == 15

    def test_refill_proportional_to_elapsed(self):
        bucket = TokenBucket(10)
        bucket.tokens = 0.0
        bucket.refill(250, capacity=10, enabled=True)
        assert bucket.tokens == pytest.approx(2.5)

    def test_refill_clamped_to_capacity(self):
        bucket = TokenBucket(10)
        bucket.tokens = 9.5
        bucket.refill(10_000, capacity=10, enabled=True)
        assert bucket.tokens == 10

    def test_disabled_limiter_forces_full_capacity(self):
        bucket = TokenBucket(10)
        bucket.tokens = 0.0
        bucket.refill(0, capacity=10, enabled=False)
        assert bucket.tokens == 10

    def test_try_consume(self):
        bucket = TokenBucket(2)
        assert bucket.try_consume()
        assert bucket.try_consume()
        assert not bucket.try_consume()
        assert bucket.tokens == 0

    def test_fractional_tokens_not_consumable(self):
        bucket = TokenBucket(5)
        bucket.tokens = 0.999
        assert not bucket.try_consume()
        assert bucket.tokens == pytest.approx(0.999)

    def test_negative_capacity_clamped(self):
        bucket = TokenBucket(-4)
        assert bucket.tokens == 0.0
        bucket.refill(1000, capacity=-4, enabled=True)
        assert bucket.tokens == 0.0


# =============================================================================
# Circuit Breaker Tests
# =============================================================================


class TestCircuitBreaker:
    def test_initial_state(self):
        breaker = CircuitBreaker()
        assert breaker.state == BreakerState.CLOSED
        assert breaker.failure_count == 0

    def test_opens_at_threshold(self):
        breaker = CircuitBreaker()
        for i in range(4):
            breaker.record_failure(now=float(i), threshold=5)
        assert breaker.state == BreakerState.CLOSED

        breaker.record_failure(now=100.0, threshold=5)
        assert breaker.state == BreakerState.OPEN
        assert breaker.failure_count == 5
        assert breaker.last_trip_time == 100.0

    def test_success_while_closed_does_not_reset_counter(self):
        breaker = CircuitBreaker()
        breaker.record_failure(now=0.0, threshold=5)
        breaker.record_failure(now=0.0, threshold=5)
        breaker.record_success()
        assert breaker.failure_count == 2

    def test_half_open_after_cooldown(self):
        breaker = CircuitBreaker()
        for _ in range(5):
            breaker.record_failure(now=1000.0, threshold=5)

        breaker.update(now=3999.0, enabled=True, cooldown_ms=3000)
        assert breaker.state == BreakerState.OPEN

        breaker.update(now=4000.0, enabled=True, cooldown_ms=3000)
        assert breaker.state == BreakerState.HALF_OPEN

    def test_first_success_in_half_open_closes(self):
        breaker = CircuitBreaker()
        for _ in range(5):
            breaker.record_failure(now=0.0, threshold=5)
        breaker.update(now=3000.0, enabled=True, cooldown_ms=3000)

        breaker.record_success()
        assert breaker.state == BreakerState.CLOSED
        assert breaker.failure_count == 0

    def test_failure_in_half_open_reopens_and_restarts_cooldown(self):
        breaker = CircuitBreaker()
        for _ in range(5):
            breaker.record_failure(now=0.0, threshold=5)
        breaker.update(now=3000.0, enabled=True, cooldown_ms=3000)
        assert breaker.state == BreakerState.HALF_OPEN

        breaker.record_failure(now=3500.0, threshold=5)
        assert breaker.state == BreakerState.OPEN
        assert breaker.last_trip_time == 3500.0

        breaker.update(now=6000.0, enabled=True, cooldown_ms=3000)
        assert breaker.state == BreakerState.OPEN
        breaker.update(now=6500.0, enabled=True, cooldown_ms=3000)
        assert breaker.state == BreakerState.HALF_OPEN

    def test_disable_forces_closed(self):
        breaker = CircuitBreaker()
        for _ in range(5):
            breaker.record_failure(now=0.0, threshold=5)

        breaker.update(now=10.0, enabled=False, cooldown_ms=3000)
        assert breaker.state == BreakerState.CLOSED
        assert breaker.failure_count == 0


# =============================================================================
# Metrics Tests
# =============================================================================


class TestMetricsWindow:
    def test_empty_window(self):
        metrics = MetricsWindow().compute(queue_length=0)
        assert metrics == SimulationMetrics()
        assert metrics.success_ratio() is None

    def test_counts_and_derived_values(self):
        window = MetricsWindow()
        window.record(RequestStatus.SUCCESS, 100.0, 0.0)
        window.record(RequestStatus.SUCCESS, 300.0, 10.0)
        window.record(RequestStatus.FAILED, 50.0, 20.0)
        window.record(RequestStatus.TIMEOUT, 800.0, 30.0)
        window.record(RequestStatus.REJECTED, 0.0, 40.0)

        metrics = window.compute(queue_length=3)
        assert metrics.success == 2
        assert metrics.failed == 1
        assert metrics.timed_out == 1
        assert metrics.rejected == 1
        assert metrics.error_count == 3
        # 5 samples over a 2 s window
        assert metrics.throughput == pytest.approx(2.5)
        # Only successes contribute to latency
        assert metrics.avg_latency == pytest.approx(200.0)
        assert metrics.queue_length == 3
        assert metrics.success_ratio() == pytest.approx(0.4)

    def test_prune_drops_samples_outside_window(self):
        window = MetricsWindow()
        window.record(RequestStatus.SUCCESS, 100.0, 1000.0)

        window.prune(1000.0 + HISTORY_WINDOW_MS - 1)
        assert len(window) == 1

        window.prune(1000.0 + HISTORY_WINDOW_MS)
        assert len(window) == 0

    def test_clear(self):
        window = MetricsWindow()
        window.record(RequestStatus.FAILED, 0.0, 0.0)
        window.clear()
        assert window.samples == ()


class TestMetricsHistory:
    def test_baseline_is_zeroes(self):
        history = MetricsHistory(length=4)
        assert history.as_lists() == {
            "throughput": [0.0] * 4,
            "errors": [0.0] * 4,
            "latency": [0.0] * 4,
        }

    def test_push_shifts_oldest_out(self):
        history = MetricsHistory(length=3)
        for i in range(1, 5):
            history.push(
                SimulationMetrics(failed=i, rejected=1, throughput=float(i), avg_latency=10.0 * i)
            )

        assert list(history.throughput) == [2.0, 3.0, 4.0]
        assert list(history.errors) == [3.0, 4.0, 5.0]
        assert list(history.latency) == [20.0, 30.0, 40.0]

    def test_reset(self):
        history = MetricsHistory(length=2)
        history.push(SimulationMetrics(throughput=5.0))
        history.reset()
        assert list(history.throughput) == [0.0, 0.0]

    def test_invalid_length(self):
        with pytest.raises(ValueError):
            MetricsHistory(length=0)


# =============================================================================
# Snapshot Tests
# =============================================================================


class TestSnapshot:
    def test_empty_snapshot(self):
        snapshot = empty_snapshot()
        assert snapshot.requests == ()
        assert snapshot.breaker_state == BreakerState.CLOSED
        assert snapshot.breaker_failures == 0
        assert snapshot.tokens == 0.0
        assert snapshot.metrics == SimulationMetrics()

    def test_request_view_is_detached(self):
        request = Request(request_id=7, start_time=0.0, lane=Lane.BULKHEAD_1)
        view = RequestView.of(request)

        request.advance(100)
        request.schedule_retry(999.0)

        assert view.position == 50.0
        assert view.status == RequestStatus.PENDING
        assert view.retry_count == 0
        assert view.next_retry_time is None

    def test_to_dict(self):
        request = Request(request_id=3, start_time=5.0, lane=Lane.BULKHEAD_2)
        request.call = ServiceCall(started_at=10.0, target_latency=1100.0, will_fail=True)
        snapshot = SimulationSnapshot(
            requests=(RequestView.of(request),),
            breaker_state=BreakerState.HALF_OPEN,
            breaker_failures=6,
            tokens=2.5,
        )

        data = snapshot.to_dict()
        assert data["breaker_state"] == "half_open"
        assert data["breaker_failures"] == 6
        assert data["tokens"] == 2.5
        assert data["metrics"]["success"] == 0
        assert data["requests"][0]["lane"] == "bulkhead_2"
        assert data["requests"][0]["status"] == "pending"
        assert data["requests"][0]["call"]["will_fail"] is True
