"""Error classification and bounded retry with exponential backoff.

``classify`` turns any raw failure into a ``ClassifiedError`` carrying a
user-safe message. ``retry`` re-runs an async operation while the failure is
classified as recoverable, then re-raises the last raw error untouched so the
caller decides whether to classify or propagate it.
"""

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

VALIDATION_MARKER = "validation"


class ErrorCode(enum.StrEnum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class ClassifiedError:
    """A raw failure translated into the error taxonomy.

    ``technical_message`` is for logs only and never shown to end users.
    """

    user_message: str
    technical_message: str
    code: ErrorCode
    recoverable: bool


USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.NETWORK_ERROR: (
        "Unable to connect to our servers. Please check your internet connection and try again."
    ),
    ErrorCode.TIMEOUT_ERROR: "The request took too long. Please try again.",
    ErrorCode.AUTH_ERROR: "Your session has expired. Please log in again.",
    ErrorCode.PERMISSION_ERROR: "You don't have permission to perform this action.",
    ErrorCode.NOT_FOUND: "The requested item could not be found.",
    ErrorCode.RATE_LIMIT: "Too many requests. Please wait a moment before trying again.",
    ErrorCode.SERVER_ERROR: "Our servers are experiencing issues. Please try again later.",
    ErrorCode.VALIDATION_ERROR: "The provided information is invalid. Please check and try again.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}

_STATUS_CODES: dict[int, tuple[ErrorCode, bool]] = {
    401: (ErrorCode.AUTH_ERROR, False),
    403: (ErrorCode.PERMISSION_ERROR, False),
    404: (ErrorCode.NOT_FOUND, False),
    429: (ErrorCode.RATE_LIMIT, True),
}

# HTTP status for each code when an error is surfaced through the API
HTTP_STATUS_FOR_CODE: dict[ErrorCode, int] = {
    ErrorCode.NETWORK_ERROR: 502,
    ErrorCode.TIMEOUT_ERROR: 504,
    ErrorCode.AUTH_ERROR: 401,
    ErrorCode.PERMISSION_ERROR: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.RATE_LIMIT: 429,
    ErrorCode.SERVER_ERROR: 502,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.UNKNOWN_ERROR: 500,
}


def _build(code: ErrorCode, technical_message: str, recoverable: bool) -> ClassifiedError:
    return ClassifiedError(
        user_message=USER_MESSAGES[code],
        technical_message=technical_message,
        code=code,
        recoverable=recoverable,
    )


def _status_code_of(error: BaseException) -> int | None:
    """Return the HTTP status carried by an error, if any."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def classify(error: BaseException) -> ClassifiedError:
    """Map a raw failure to the error taxonomy. Rules are checked in order."""
    message = str(error) or error.__class__.__name__

    # httpx timeouts subclass TransportError, so they are checked first
    if isinstance(error, httpx.TimeoutException | TimeoutError | asyncio.CancelledError):
        return _build(ErrorCode.TIMEOUT_ERROR, message or "Request timeout", True)

    if isinstance(error, httpx.TransportError | ConnectionError):
        return _build(ErrorCode.NETWORK_ERROR, message, True)

    status = _status_code_of(error)
    if status is not None:
        if status in _STATUS_CODES:
            code, recoverable = _STATUS_CODES[status]
            return _build(code, message, recoverable)
        if 500 <= status <= 599:
            return _build(ErrorCode.SERVER_ERROR, message, True)

    if VALIDATION_MARKER in message.lower():
        return _build(ErrorCode.VALIDATION_ERROR, message, False)

    return _build(ErrorCode.UNKNOWN_ERROR, message, True)


def default_should_retry(error: BaseException) -> bool:
    classified = classify(error)
    return classified.recoverable and classified.code != ErrorCode.AUTH_ERROR


async def retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    backoff_ms: float = 1000,
    should_retry: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``max_retries`` times.

    The delay after failed attempt ``n`` (zero-based) is
    ``backoff_ms * 2**n``. Once attempts run out, or ``should_retry`` rejects
    the failure, the last raw error is re-raised as-is.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt.
        max_retries: Maximum number of attempts (values below 1 mean 1).
        backoff_ms: Base delay in milliseconds.
        should_retry: Predicate over the raw error. Defaults to retrying
            recoverable failures other than AUTH_ERROR.
        sleep: Awaitable sleep, injectable for tests.
    """
    attempts = max(1, max_retries)
    predicate = should_retry or default_should_retry

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as error:
            attempt += 1
            if attempt >= attempts or not predicate(error):
                raise
            delay_ms = backoff_ms * (2 ** (attempt - 1))
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.0fms",
                attempt,
                attempts,
                error,
                delay_ms,
            )
            await sleep(delay_ms / 1000)
