"""
Retry and backoff for polling nodes and issuing admin commands.

Two budgets are used by the bootstrapper: a quick one for configuration
commands, which only ever retries connectivity failures, and a persistent one
for waiting on nodes that are still starting up or electing a primary.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from phil.commands.constants import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    PERSISTENT_RETRY_ATTEMPTS,
    PERSISTENT_RETRY_BACKOFF,
    PERSISTENT_RETRY_DELAY,
    PERSISTENT_RETRY_MAX_DELAY,
    QUICK_RETRY_ATTEMPTS,
    QUICK_RETRY_BACKOFF,
    QUICK_RETRY_DELAY,
)
from phil.commands.errors import DriverError

logger = logging.getLogger(__name__)


class RetryConfig:
    """How many times to try, how long to sleep in between, and which
    errors are worth another attempt.

    ``exceptions`` is the set of exception types caught at all;
    ``should_retry`` narrows it further, and anything it rejects propagates
    unchanged.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        delay: float = DEFAULT_RETRY_DELAY,
        backoff: float = DEFAULT_RETRY_BACKOFF,
        max_delay: float = DEFAULT_RETRY_MAX_DELAY,
        exceptions: tuple = (Exception,),
        should_retry: Optional[Callable[[BaseException], bool]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self.backoff = backoff
        self.max_delay = max_delay
        self.exceptions = exceptions
        self.should_retry = should_retry

    def replace(self, **changes) -> "RetryConfig":
        """A copy of this config with ``changes`` applied."""
        values = {
            "max_attempts": self.max_attempts,
            "delay": self.delay,
            "backoff": self.backoff,
            "max_delay": self.max_delay,
            "exceptions": self.exceptions,
            "should_retry": self.should_retry,
        }
        values.update(changes)
        return RetryConfig(**values)

    def delays(self):
        """Yield the sleep before each retry (one fewer than max_attempts)."""
        current = self.delay
        for _ in range(self.max_attempts - 1):
            yield min(current, self.max_delay)
            current *= self.backoff

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, delay={self.delay}, "
            f"backoff={self.backoff}, max_delay={self.max_delay})"
        )


class RetryExhausted(Exception):
    """Every attempt failed with a retryable error.

    Attributes:
        attempts: Number of attempts made
        last_exception: The error raised by the final attempt
    """

    def __init__(self, attempts: int, last_exception: BaseException):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Gave up after {attempts} attempt(s): {last_exception}")


async def retry_async_call(
    func: Callable, *args, config: Optional[RetryConfig] = None, **kwargs
) -> Any:
    """
    Await ``func(*args, **kwargs)`` until it succeeds or the budget runs out.

    Args:
        func: Coroutine function to call
        *args: Positional arguments for ``func``
        config: Retry budget, RetryConfig() if omitted
        **kwargs: Keyword arguments for ``func``

    Returns:
        Whatever ``func`` returns on its first successful attempt

    Raises:
        RetryExhausted: If the last attempt still failed with a retryable error.
        Errors outside ``config.exceptions`` or rejected by
        ``config.should_retry`` propagate from the attempt that raised them.
    """
    config = config or RetryConfig()
    delays = config.delays()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)
        except config.exceptions as e:
            if config.should_retry is not None and not config.should_retry(e):
                raise
            pause = next(delays, None)
            if pause is None:
                raise RetryExhausted(attempt, e) from e
            logger.debug(
                "%s failed on attempt %d/%d (%s), sleeping %.2fs",
                getattr(func, "__name__", func),
                attempt,
                config.max_attempts,
                e,
                pause,
            )
            await asyncio.sleep(pause)


def is_transient(error: BaseException) -> bool:
    """Only connectivity-level driver failures are worth retrying."""
    return isinstance(error, DriverError) and error.transient


QUICK_RETRY_CONFIG = RetryConfig(
    max_attempts=QUICK_RETRY_ATTEMPTS,
    delay=QUICK_RETRY_DELAY,
    backoff=QUICK_RETRY_BACKOFF,
    exceptions=(DriverError,),
    should_retry=is_transient,
)

PERSISTENT_RETRY_CONFIG = RetryConfig(
    max_attempts=PERSISTENT_RETRY_ATTEMPTS,
    delay=PERSISTENT_RETRY_DELAY,
    backoff=PERSISTENT_RETRY_BACKOFF,
    max_delay=PERSISTENT_RETRY_MAX_DELAY,
    exceptions=(DriverError,),
)
