"""
Retry Policy
============

Backoff applied by poll loops after transport or protocol failures:
- attempt counts consecutive failures since the last good response
- delay grows linearly or exponentially with the attempt and is capped
- reaching max_attempts ends tracking with a local failure
"""

from utils.logger import get_module_logger


class RetryPolicy:
    """
    Attempt ceiling plus backoff curve for one registry.

    Strategies:
    - linear:      interval * attempt
    - exponential: interval * 2 ** (attempt - 1)
    Both are clamped to max(max_delay, interval).
    """

    STRATEGIES = ('linear', 'exponential')
    MIN_ATTEMPTS = 3

    def __init__(self, max_attempts: int = 5, strategy: str = 'exponential', max_delay: float = 60.0):
        if max_attempts < self.MIN_ATTEMPTS:
            raise ValueError(f"max_attempts must be at least {self.MIN_ATTEMPTS}")
        if strategy not in self.STRATEGIES:
            raise ValueError(f"Unknown backoff strategy: {strategy}")
        if max_delay <= 0:
            raise ValueError("max_delay must be positive")

        self.logger = get_module_logger("OperationTracking.RetryPolicy")
        self.max_attempts = int(max_attempts)
        self.strategy = strategy
        self.max_delay = float(max_delay)

    @classmethod
    def from_settings(cls, settings: dict) -> "RetryPolicy":
        return cls(
            max_attempts=settings.get('max_attempts', 5),
            strategy=settings.get('backoff_strategy', 'exponential'),
            max_delay=settings.get('max_backoff', 60.0),
        )

    def multiplier(self, attempt: int) -> float:
        attempt = max(1, int(attempt))
        if self.strategy == 'linear':
            return float(attempt)
        # Exponent is capped so huge attempt numbers never overflow
        return float(2 ** min(attempt - 1, 32))

    def delay(self, attempt: int, interval: float) -> float:
        """
        Seconds to wait before the next retry.

        Args:
            attempt: Consecutive failures so far (>= 1)
            interval: Normal polling interval of the loop

        Returns:
            Non-decreasing delay, bounded by max(max_delay, interval)
        """
        ceiling = max(self.max_delay, interval)
        return min(interval * self.multiplier(attempt), ceiling)

    def is_exhausted(self, attempt: int) -> bool:
        exhausted = attempt >= self.max_attempts
        if exhausted:
            self.logger.debug("Attempt %s reached ceiling %s", attempt, self.max_attempts)
        return exhausted
