"""Polling and retry utilities"""

import time
from collections.abc import Callable
from typing import Optional, Tuple, TypeVar

from .backoff import ExponentialBackoff

T = TypeVar("T")


class WaitTimeoutError(Exception):
    """Raised by ``wait_for`` when the backoff gives up before the condition was met."""


def wait_for(
    check: Callable[[], Tuple[bool, T]],
    backoff: Optional[ExponentialBackoff] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Calls ``check`` until it reports that it is done, sleeping between calls as dictated by the backoff.

    :param check: returns a tuple ``(done, value)``; ``value`` is returned as soon as ``done`` is true
    :param backoff: the backoff between two checks, defaults to the stack polling backoff
    :param sleep: the sleep function
    :return: the value of the first check that is done
    :raises WaitTimeoutError: if the backoff is exhausted
    """
    backoff = backoff or ExponentialBackoff.for_stack_polling()
    while True:
        done, value = check()
        if done:
            return value
        interval = backoff.next_backoff()
        if interval <= 0:
            raise WaitTimeoutError(
                f"Gave up waiting after {backoff.retries - 1} retries ({backoff.elapsed_duration:.0f}s)"
            )
        sleep(interval)


def retry(
    function: Callable[..., T],
    retries=3,
    sleep=1.0,
    retry_on: Callable[[Exception], bool] = None,
    **kwargs,
) -> T:
    """
    Calls ``function(**kwargs)`` and retries it up to ``retries`` times if it raises.

    :param retry_on: predicate deciding whether an error is retried; errors it rejects are raised immediately
    """
    raise_error = None
    retries = int(retries)
    for i in range(0, retries + 1):
        try:
            return function(**kwargs)
        except Exception as error:
            if retry_on is not None and not retry_on(error):
                raise
            raise_error = error
            if i < retries:
                time.sleep(sleep)
    raise raise_error
