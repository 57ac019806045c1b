"""
Error retry delays for the Copilot PR Nudger polling service.

Failed scans, whether from rate limiting or other API errors, are retried
after an exponentially growing delay that resets after a successful scan.
"""

from datetime import timedelta

import structlog

from ..config import RetryConfig

logger = structlog.get_logger(__name__)


class RetryBackoff:
    """
    Exponential retry delay for consecutive failed scans.

    The first retry waits ``base_delay_seconds``; each further consecutive
    failure multiplies the delay by ``backoff_multiplier`` up to ``max_delay``.
    """

    def __init__(self, config: RetryConfig):
        """
        Initialize the retry backoff.

        Args:
            config: Retry configuration
        """
        self.config = config
        self.retry_count = 0

    def next_delay(self) -> timedelta:
        """
        Register a failed scan and get the delay before retrying.

        Returns:
            Delay before the next attempt
        """
        self.retry_count += 1

        # Grown in float seconds and held at the cap; never a raw power.
        max_seconds = self.config.max_delay.total_seconds()
        multiplier = self.config.backoff_multiplier
        delay_seconds = min(self.config.base_delay_seconds, max_seconds)
        for _ in range(self.retry_count - 1):
            if delay_seconds <= 0 or delay_seconds >= max_seconds or multiplier == 1:
                break
            delay_seconds = min(delay_seconds * multiplier, max_seconds)
        delay = timedelta(seconds=delay_seconds)

        logger.debug(
            "Calculated retry delay",
            retry_count=self.retry_count,
            delay_seconds=delay.total_seconds(),
        )
        return delay

    def reset(self) -> None:
        """Forget previous failures after a successful scan."""
        if self.retry_count:
            logger.debug("Resetting retry delay", retry_count=self.retry_count)
        self.retry_count = 0
