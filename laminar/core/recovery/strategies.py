"""
Recovery Strategies

Retry policy for node calls: bounded attempts, exponential backoff with jitter.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional, Tuple, Type, TypeVar

from .errors import RecoverableError, UnrecoverableError, classify_error

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 5
    initial_delay_seconds: float = 0.25
    max_delay_seconds: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )
        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(delay, 0)


class RetryStrategy:
    """
    Retries an async operation on transient failures.

    Only exceptions in ``retry_on`` are retried (default: any RecoverableError).
    Everything else propagates on the first occurrence. When attempts run out
    the last error is re-raised unchanged.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        retry_on: Tuple[Type[BaseException], ...] = (RecoverableError,),
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or RetryConfig()
        self.retry_on = retry_on
        self._sleep = sleep or asyncio.sleep
        self.logger = logger or logging.getLogger(__name__)

    async def execute(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        description: str = "operation",
    ) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.should_retry(e, attempt):
                    if hasattr(e, "attempts"):
                        e.attempts = attempt + 1
                    raise

                delay = self._get_delay(e, attempt)
                self.logger.warning(
                    f"{description} attempt {attempt + 1}/{self.config.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                attempt += 1

    def should_retry(self, error: Exception, attempt: int) -> bool:
        if attempt >= self.config.max_attempts - 1:
            return False

        if isinstance(error, UnrecoverableError):
            return False

        if isinstance(error, self.retry_on):
            return True

        if isinstance(error, RecoverableError):
            return False

        # Foreign exceptions that slipped past the caller's mapping
        return classify_error(error).recoverable and RecoverableError in self.retry_on

    def _get_delay(self, error: Exception, attempt: int) -> float:
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            return min(float(retry_after), self.config.max_delay_seconds)
        return self.config.get_delay(attempt)
