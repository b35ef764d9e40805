"""Retry with exponential backoff for calls racing eventual consistency."""

import time
import random
from typing import Callable, TypeVar, Iterable, Optional
from botocore.exceptions import ClientError
from gyro_aws.utils.errors import error_code
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class RetryStrategy:
    """Retries a call while AWS reports a transient error code.

    Throttling is handled by botocore's own retry configuration; this covers
    errors such as a freshly created resource id not yet being visible to
    another API.
    """

    # AWS error codes that should trigger a retry
    DEFAULT_RETRYABLE_CODES = frozenset({
        'RequestLimitExceeded',
        'Throttling',
        'ThrottlingException',
        'ServiceUnavailable',
        'InternalError',
    })

    def __init__(
        self,
        max_retries: int = 10,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_codes: Optional[Iterable[str]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize retry strategy.

        Args:
            max_retries: Maximum number of retry attempts
            base_delay: Base delay in seconds for first retry
            max_delay: Maximum delay in seconds between retries
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
            retryable_codes: Extra AWS error codes to retry on
            sleep: Sleep function (injectable for tests)
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_codes = self.DEFAULT_RETRYABLE_CODES | frozenset(retryable_codes or ())
        self.sleep = sleep

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the error is retryable and max retries not exceeded
        """
        if attempt >= self.max_retries:
            return False

        if isinstance(error, ClientError):
            return error_code(error) in self.retryable_codes

        return False

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        # Up to 10% random jitter
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay

    def execute_with_retry(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Execute a function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            The last exception if it is not retryable or retries are exhausted
        """
        attempt = 0

        while True:
            try:
                result = func(*args, **kwargs)

                if attempt > 0:
                    logger.info(f"Operation succeeded after {attempt} retries")

                return result

            except ClientError as e:
                if not self.should_retry(e, attempt):
                    raise

                delay = self.get_delay(attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries + 1} failed: "
                    f"{error_code(e)}. Retrying in {delay:.2f}s..."
                )
                self.sleep(delay)
                attempt += 1
