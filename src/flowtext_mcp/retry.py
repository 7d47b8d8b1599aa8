from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from flowtext_mcp.cancellation import CancelToken
from flowtext_mcp.errors import RetryExhaustedError, TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    TransientNetworkError,
)


def as_transient(exc: BaseException) -> TransientNetworkError:
    if isinstance(exc, TransientNetworkError):
        return exc
    error = TransientNetworkError(str(exc) or type(exc).__name__)
    error.__cause__ = exc
    return error


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    max_attempts: int = 3,
    base_delay_seconds: float = 1.0,
    sleep: Sleep = asyncio.sleep,
    cancel: CancelToken | None = None,
) -> T:
    """Run ``operation``, retrying connect/timeout failures with exponential backoff.

    Anything that is not transient propagates immediately. Transport failures
    are classified as TransientNetworkError; once the attempt cap is reached a
    RetryExhaustedError is raised with the last of them as cause.
    """
    attempts = max(1, max_attempts)
    attempt = 1
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled(description)
        try:
            return await operation()
        except TRANSIENT_ERRORS as exc:
            error = as_transient(exc)
            if attempt >= attempts:
                raise RetryExhaustedError(description, attempts, error) from error
            delay = base_delay_seconds * (2 ** (attempt - 1))
            logger.warning(
                "%s failed (attempt %s/%s): %s; retrying in %.1fs",
                description,
                attempt,
                attempts,
                error,
                delay,
            )
            await sleep(delay)
            attempt += 1
