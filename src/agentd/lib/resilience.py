"""Retry logic with exponential backoff for collaborator calls."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type

from agentd.lib.observability import RuntimeMetrics


logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 0.5      # Base delay in seconds
    max_delay: float = 30.0      # Maximum delay in seconds
    exponential_base: float = 2.0  # Exponential backoff base
    jitter: bool = True          # Add random jitter to delays


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    def __init__(self, attempts: int, last_exception: Optional[BaseException]):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts. Last error: {last_exception}")


class RetryHandler:
    """Retry handler with exponential backoff and jitter.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. An exception carrying a ``retry_after`` attribute
    (rate limiting) stretches the delay to at least that many seconds.
    """

    def __init__(
        self,
        config: RetryConfig,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        metrics: Optional[RuntimeMetrics] = None
    ):
        self.config = config
        self.retry_on = retry_on
        self.metrics = metrics

    def _calculate_delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Calculate delay for given attempt number."""
        delay = self.config.base_delay * (self.config.exponential_base ** (attempt - 1))
        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            # Add ±25% jitter
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, min(float(retry_after), self.config.max_delay))

        return max(0.0, delay)

    async def call(self, func: Callable, *args, operation_name: str = "unknown", **kwargs) -> Any:
        """Execute function with retry logic.

        Args:
            func: Coroutine function or plain callable to execute
            operation_name: Label used for logs and metrics

        Returns:
            Whatever ``func`` returns on the first successful attempt

        Raises:
            RetryError: If every attempt failed with a retryable error
        """
        last_exception: Optional[BaseException] = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                if self.metrics:
                    self.metrics.record_retry_attempt(operation_name, attempt)

                if asyncio.iscoroutinefunction(func):
                    return await func(*args, **kwargs)
                else:
                    return func(*args, **kwargs)

            except self.retry_on as e:
                last_exception = e

                # Don't retry on final attempt
                if attempt == self.config.max_attempts:
                    break

                delay = self._calculate_delay(attempt, e)
                logger.warning(
                    f"{operation_name} attempt {attempt}/{self.config.max_attempts} failed: {e}; "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        if self.metrics:
            self.metrics.record_retry_exhausted(operation_name)

        raise RetryError(self.config.max_attempts, last_exception)
