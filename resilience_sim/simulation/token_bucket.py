"""
Token bucket used by the admission controller.
"""


class TokenBucket:
    """Token bucket that allows bursts up to *capacity*.

    Refill is continuous: ``capacity`` tokens are restored per simulated
    second, so the refill rate and the burst size are the same number.
    A failed consumption never waits; the caller rejects the request.
    """

    def __init__(self, capacity: float):
        self.tokens = max(0.0, capacity)

    def refill(self, elapsed_ms: float, capacity: float, enabled: bool) -> None:
        """Restore tokens for *elapsed_ms* of simulated time.

        A disabled limiter is held at full capacity so that re-enabling it
        starts saturated rather than empty.
        """
        capacity = max(0.0, capacity)
        if not enabled:
            self.tokens = capacity
            return
        candidate = self.tokens + capacity * elapsed_ms / 1000
        self.tokens = min(candidate, capacity)

    def try_consume(self) -> bool:
        """Take one token if available."""
        if self.tokens < 1:
            return False
        self.tokens -= 1
        return True

    def reset(self, capacity: float) -> None:
        self.tokens = max(0.0, capacity)

    def __repr__(self) -> str:
        return f"TokenBucket(tokens={self.tokens:.2f})"
