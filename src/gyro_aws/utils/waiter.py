"""Polling for eventually-consistent resource state."""

import time
from typing import Callable

from gyro_aws.utils.errors import WaitTimeoutError
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL = 5.0
DEFAULT_TIMEOUT = 300.0


def wait_until(
    predicate: Callable[[], bool],
    interval: float = DEFAULT_INTERVAL,
    timeout: float = DEFAULT_TIMEOUT,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic
) -> bool:
    """Poll ``predicate`` until it returns True or ``timeout`` elapses.

    The first check happens immediately. Sleeps never extend past the
    deadline, and one final check is made at the deadline.

    Args:
        predicate: Zero-argument check, safe to call repeatedly
        interval: Seconds between checks
        timeout: Total seconds to keep checking
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Returns:
        True if the predicate became true before the timeout, False otherwise
    """
    start = clock()
    checks = 0

    while True:
        checks += 1
        if predicate():
            logger.debug(f"Condition met after {checks} check(s)")
            return True

        remaining = timeout - (clock() - start)
        if remaining <= 0:
            logger.debug(f"Condition not met after {checks} check(s) in {timeout:g}s")
            return False

        sleep(min(interval, remaining))


def wait_for_state(
    predicate: Callable[[], bool],
    resource: str,
    expected_state: str,
    interval: float = DEFAULT_INTERVAL,
    timeout: float = DEFAULT_TIMEOUT,
    sleep: Callable[[float], None] = time.sleep
) -> None:
    """Wait for a resource to reach a state, raising on timeout.

    Args:
        predicate: Returns True once the resource is in ``expected_state``
        resource: Resource description used in the error message
        expected_state: Name of the awaited state
        interval: Seconds between checks
        timeout: Total seconds to wait

    Raises:
        WaitTimeoutError: If the state is not reached in time
    """
    logger.info(f"Waiting for {resource} to become {expected_state}")

    if not wait_until(predicate, interval=interval, timeout=timeout, sleep=sleep):
        raise WaitTimeoutError(resource, expected_state, timeout)
