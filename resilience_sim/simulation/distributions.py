"""
Time units and probability distributions for the resilience simulator.

All time values use milliseconds as the canonical unit, matching the
timestamps the frame driver hands to the engine.
"""

from abc import ABC, abstractmethod
from typing import NewType, Protocol

# Explicit time unit - all times are in milliseconds
Milliseconds = NewType("Milliseconds", float)


def seconds(s: float) -> Milliseconds:
    """Convert seconds to milliseconds."""
    return Milliseconds(s * 1000)


class RandomSource(Protocol):
    """Anything that yields floats in [0, 1).

    ``numpy.random.Generator`` satisfies this; tests may pass a scripted
    source instead.
    """

    def random(self) -> float: ...


class Distribution(ABC):
    """Abstract base class for probability distributions."""

    @abstractmethod
    def sample(self, rng: RandomSource) -> float:
        """Sample a value from the distribution.

        Args:
            rng: Random source (one ``random()`` draw per sample).

        Returns:
            A sampled value from the distribution.
        """
        pass


class Uniform(Distribution):
    """Uniform distribution over [low, high).

    Args:
        low: Lower bound (inclusive).
        high: Upper bound (exclusive).
    """

    def __init__(self, low: float, high: float):
        if low >= high:
            raise ValueError(f"Low must be less than high, got low={low}, high={high}")
        self.low = low
        self.high = high

    def sample(self, rng: RandomSource) -> float:
        """Sample a value uniformly from [low, high)."""
        return self.low + (self.high - self.low) * float(rng.random())

    def __repr__(self) -> str:
        return f"Uniform(low={self.low}, high={self.high})"
