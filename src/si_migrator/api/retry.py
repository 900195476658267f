"""Bounded retry for calls against the Cloud Controller."""

import asyncio
import socket
from typing import Awaitable, Callable, TypeVar

import aiohttp
from loguru import logger

from .exceptions import RetryableError, RetryTimeoutError

DEFAULT_RETRY_TIMEOUT = 60.0
DEFAULT_RETRY_PAUSE = 3.0

T = TypeVar('T')


def is_dns_error(error: BaseException) -> bool:
    """Check whether an error is a name resolution failure.

    Args:
        error: Error raised by the operation

    Returns:
        True for DNS failures
    """
    if isinstance(error, socket.gaierror):
        return True
    if isinstance(error, aiohttp.ClientConnectorError):
        return isinstance(error.os_error, socket.gaierror)
    return False


def is_retryable(error: BaseException) -> bool:
    """Check whether an error may go away if the call is repeated."""
    return isinstance(error, RetryableError) or is_dns_error(error)


async def do_with_retry(
    operation: Callable[[], Awaitable[T]],
    timeout: float = DEFAULT_RETRY_TIMEOUT,
    pause: float = DEFAULT_RETRY_PAUSE,
) -> T:
    """Run an operation, retrying transient failures until a deadline.

    The deadline is measured from the first attempt. Errors that are not
    retryable propagate immediately.

    Args:
        operation: Zero-argument coroutine function to run
        timeout: Overall time budget in seconds
        pause: Seconds to wait between attempts

    Returns:
        The operation's result

    Raises:
        RetryTimeoutError: If the deadline passes while retrying
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise

            remaining = deadline - loop.time()
            if remaining <= pause:
                if remaining > 0:
                    await asyncio.sleep(remaining)
                raise RetryTimeoutError(e) from e

            logger.debug(f'Attempt {attempt} failed with {e!r}, retrying in {pause}s')
            await asyncio.sleep(pause)
