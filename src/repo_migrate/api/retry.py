"""Retry policies for remote calls and remote job polling."""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from loguru import logger

from .exceptions import ApiError, AuthenticationError, SecondaryRateLimitError

T = TypeVar('T')

RETRYABLE_STATUS_CODES = (408, 429, 500, 502, 503, 504)


class Backoff(str, Enum):
    """Shape of the delay between attempts."""

    CONSTANT = 'constant'
    LINEAR = 'linear'
    EXPONENTIAL = 'exponential'


def is_transient_error(error: BaseException) -> bool:
    """Check whether an error is worth retrying at the transport level.

    Network failures carry no status code; otherwise only timeouts,
    throttling and gateway/server errors qualify.
    """
    if isinstance(error, (AuthenticationError, SecondaryRateLimitError)):
        return False
    if isinstance(error, ApiError):
        return error.status_code is None or error.status_code in RETRYABLE_STATUS_CODES
    return isinstance(error, (ConnectionError, TimeoutError))


class RetryPolicy:
    """Stateless retry policy.

    A single instance can be shared by any number of concurrent callers:
    every call keeps its attempt counter on the stack.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        retry_interval: float = 4.0,
        http_retry_interval: float = 1.0,
        backoff: Backoff = Backoff.LINEAR,
        on_retry: Optional[Callable[[int, Any, float], None]] = None,
    ):
        """Initialize retry policy.

        Args:
            max_attempts: Total number of attempts, including the first one
            retry_interval: Base delay in seconds for exception/result retries
            http_retry_interval: Base delay in seconds for HTTP retries
            backoff: Delay shape applied to the base delay
            on_retry: Callback invoked with (attempt, error or result, delay)
                before each sleep

        Raises:
            ValueError: If max_attempts is lower than 1
        """
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')

        self.max_attempts = max_attempts
        self.retry_interval = retry_interval
        self.http_retry_interval = http_retry_interval
        self.backoff = Backoff(backoff)
        self.on_retry = on_retry

    def compute_delay(
        self, attempt: int, interval: float, backoff: Optional[Backoff] = None
    ) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        backoff = Backoff(backoff) if backoff else self.backoff
        if backoff == Backoff.CONSTANT:
            return interval
        if backoff == Backoff.EXPONENTIAL:
            return interval * (2 ** (attempt - 1))
        return interval * attempt

    def _before_retry(self, attempt: int, outcome: Any, delay: float, message: str):
        logger.debug(f'{message} (attempt {attempt}, waiting {delay:g}s): {outcome}')
        if self.on_retry:
            self.on_retry(attempt, outcome, delay)

    def retry(
        self,
        func: Callable[[], T],
        exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        when: Optional[Callable[[BaseException], bool]] = None,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> T:
        """Invoke func, retrying on matching exceptions.

        Authentication errors are never retried. After the last attempt the
        final exception is re-raised unchanged.

        Args:
            func: Callable to invoke
            exceptions: Exception types that trigger a retry
            when: Optional extra predicate over the raised exception
            max_attempts: Override of the policy attempt budget
            interval: Override of the base delay

        Returns:
            The first successful return value of func
        """
        attempts = max_attempts or self.max_attempts
        interval = self.retry_interval if interval is None else interval

        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except exceptions as e:
                if not self._should_retry(e, when) or attempt >= attempts:
                    raise
                delay = self.compute_delay(attempt, interval)
                self._before_retry(attempt, e, delay, 'Call failed, retrying')
                time.sleep(delay)

    def http_retry(
        self,
        func: Callable[[], T],
        is_retryable: Callable[[ApiError], bool] = is_transient_error,
    ) -> T:
        """Retry transient HTTP failures with the short HTTP interval."""
        return self.retry(
            func,
            exceptions=(ApiError,),
            when=is_retryable,
            max_attempts=5,
            interval=self.http_retry_interval,
        )

    def retry_on_result(
        self,
        func: Callable[[], T],
        is_retryable: Callable[[T], bool],
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        backoff: Optional[Backoff] = None,
        message: str = 'Retrying...',
    ) -> T:
        """Invoke func until is_retryable returns False for its result.

        The last result is returned even when it is still retryable once the
        attempt budget is spent; callers decide what exhaustion means.
        """
        attempts = max_attempts or self.max_attempts
        interval = self.retry_interval if interval is None else interval

        attempt = 0
        while True:
            attempt += 1
            result = func()
            if not is_retryable(result) or attempt >= attempts:
                return result
            delay = self.compute_delay(attempt, interval, backoff)
            self._before_retry(attempt, result, delay, message)
            time.sleep(delay)

    async def retry_async(
        self,
        func: Callable[[], Awaitable[T]],
        exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        when: Optional[Callable[[BaseException], bool]] = None,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> T:
        """Async counterpart of retry."""
        attempts = max_attempts or self.max_attempts
        interval = self.retry_interval if interval is None else interval

        attempt = 0
        while True:
            attempt += 1
            try:
                return await func()
            except exceptions as e:
                if not self._should_retry(e, when) or attempt >= attempts:
                    raise
                delay = self.compute_delay(attempt, interval)
                self._before_retry(attempt, e, delay, 'Call failed, retrying')
                await asyncio.sleep(delay)

    async def retry_on_result_async(
        self,
        func: Callable[[], Awaitable[T]],
        is_retryable: Callable[[T], bool],
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        backoff: Optional[Backoff] = None,
        message: str = 'Retrying...',
    ) -> T:
        """Async counterpart of retry_on_result, used for remote job polling."""
        attempts = max_attempts or self.max_attempts
        interval = self.retry_interval if interval is None else interval

        attempt = 0
        while True:
            attempt += 1
            result = await func()
            if not is_retryable(result) or attempt >= attempts:
                return result
            delay = self.compute_delay(attempt, interval, backoff)
            self._before_retry(attempt, result, delay, message)
            await asyncio.sleep(delay)

    @staticmethod
    def _should_retry(
        error: BaseException, when: Optional[Callable[[BaseException], bool]]
    ) -> bool:
        if isinstance(error, AuthenticationError):
            return False
        return when is None or when(error)
