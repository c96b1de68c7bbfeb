from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Rate-limit retry ceiling and backoff schedule.

    The n-th retry waits ``base * n`` seconds, so the defaults give
    20s, 40s, 60s before an item is given up on.
    """
    max_retries: int = 3
    base: float = 20.0

    def should_retry(self, attempt: int) -> bool:
        """`attempt` is the number of retries already made."""
        return attempt < self.max_retries

    def delay(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return self.base * attempt
