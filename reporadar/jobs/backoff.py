"""Retry backoff policy."""

from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: min(max_seconds, base_seconds * 2^attempt)."""

    base_seconds: float = 1.0
    max_seconds: float = 300.0

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before re-running a job that failed `attempt` times."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        # Cap the exponent as well so huge attempt counts can't overflow
        exponent = min(attempt, 32)
        return min(self.max_seconds, self.base_seconds * (2**exponent))
