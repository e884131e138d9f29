"""Command-line entry point: single runs and Monte Carlo sweeps."""

import argparse
import logging
from pathlib import Path
from typing import Any

import yaml

from .monte_carlo import MonteCarloConfig, MonteCarloRunner
from .simulation.config import SimulationConfig, load_config, normalize_keys, with_overrides
from .simulation.distributions import Milliseconds, seconds
from .simulation.simulator import DEFAULT_FRAME_MS, SimulationResult, Simulator

logger = logging.getLogger(__name__)


def _parse_override(text: str) -> tuple[str, Any]:
    """Parse ``key=value``; the value is read as a YAML scalar."""
    key, sep, raw = text.partition("=")
    if not sep or not key:
        raise ValueError(f"Override must look like key=value, got {text!r}")
    return key.strip(), yaml.safe_load(raw)


def _build_config(path: str | None, overrides: list[str]) -> SimulationConfig:
    config = load_config(path) if path else SimulationConfig()
    if not overrides:
        return config
    changes = dict(_parse_override(item) for item in overrides)
    return with_overrides(config, **normalize_keys(changes))


def _print_run_summary(name: str, result: SimulationResult) -> None:
    summary = result.summary
    final = result.final_snapshot
    print(f"=== {name} ===")
    print(f"Simulated time: {result.end_time / seconds(1):.1f}s ({summary.samples} samples)")
    print(f"Mean throughput: {summary.mean_throughput():.2f} req/s")
    print(f"Mean success ratio: {summary.mean_success_ratio() * 100:.1f}%")
    print(f"Mean latency: {summary.mean_latency():.0f} ms")
    print(f"Breaker open: {summary.breaker_open_fraction() * 100:.1f}% of samples")
    print(f"Peak active requests: {summary.peak_queue_length}")
    print(
        f"Final: breaker={final.breaker_state.value} "
        f"(failures={final.breaker_failures}), tokens={final.tokens:.2f}, "
        f"active={final.metrics.queue_length}"
    )


def _cmd_simulate(args: argparse.Namespace) -> None:
    """Single headless run."""
    config = args.scenario
    simulator = Simulator(config, seed=args.seed, frame_ms=args.frame_ms)
    result = simulator.run_for(seconds(args.duration))
    _print_run_summary(args.config or "default scenario", result)


def _cmd_sweep(args: argparse.Namespace) -> None:
    """Monte Carlo batch for the scenario."""
    mc_config = MonteCarloConfig(
        num_simulations=args.runs,
        duration_ms=seconds(args.duration),
        frame_ms=Milliseconds(args.frame_ms),
        parallel_workers=args.workers,
        base_seed=args.seed,
    )

    def progress(done: int, total: int) -> None:
        logger.info("completed %d/%d runs", done, total)

    results = MonteCarloRunner(mc_config).run(args.scenario, progress_callback=progress)
    print(f"=== {args.config or 'default scenario'} ===")
    print(results.summary())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resilience-sim",
        description="Simulate a request pipeline behind resilience patterns.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="YAML scenario file")
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a configuration field (repeatable)",
    )
    common.add_argument("--duration", type=float, default=30.0, help="Seconds per run")
    common.add_argument("--frame-ms", type=float, default=float(DEFAULT_FRAME_MS))
    common.add_argument("--seed", type=int, default=None)

    sub.add_parser("simulate", parents=[common], help="Single headless run")

    sweep_p = sub.add_parser("sweep", parents=[common], help="Monte Carlo batch")
    sweep_p.add_argument("--runs", type=int, default=50)
    sweep_p.add_argument("--workers", type=int, default=1)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        parser.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        args.scenario = _build_config(args.config, args.overrides)
        if args.duration <= 0:
            raise ValueError(f"--duration must be positive, got {args.duration}")
        if args.frame_ms <= 0:
            raise ValueError(f"--frame-ms must be positive, got {args.frame_ms}")
    except (ValueError, OSError) as e:
        parser.error(str(e))

    if args.config:
        logger.debug("loaded scenario %s", Path(args.config).resolve())

    dispatch = {
        "simulate": _cmd_simulate,
        "sweep": _cmd_sweep,
    }
    try:
        dispatch[args.command](args)
    except ValueError as e:
        parser.error(str(e))


if __name__ == "__main__":
    main()
