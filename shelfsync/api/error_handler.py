"""
Error taxonomy shared by the OpenList and TMDB clients.

Every failure talking to either service surfaces as an ``APIError``. The
subclass tells the caller what to do next: retry later, give up on this
one folder, or stop because the credentials are wrong.
"""

from typing import Optional, Any, Tuple, Callable, Awaitable
from enum import Enum
import asyncio
import logging

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """How ``retry_with_backoff`` treats a failure."""
    RETRYABLE = "retryable"
    NOT_FOUND = "not_found"
    NON_RETRYABLE = "non_retryable"
    FATAL = "fatal"


class APIError(Exception):
    """A request to OpenList or TMDB failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FatalAPIError(APIError):
    """Credentials were rejected; retrying with the same ones cannot succeed."""


class RetryableAPIError(APIError):
    """Rate limited, server-side failure or network trouble."""


class SkippableAPIError(APIError):
    """The request for this item was refused; other items are unaffected."""


class ListingError(APIError):
    """The remote listing gateway reported a non-success status."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message, status_code=code)
        self.code = code


STATUS_MESSAGES = {
    400: "Malformed request",
    401: "Invalid or expired credentials",
    403: "Access denied",
    404: "Resource not found",
    422: "Request rejected",
    429: "Rate limit reached",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
    504: "Gateway timeout",
}

# Words that appear in httpx transport errors re-raised as APIError
NETWORK_ERROR_WORDS = ('timeout', 'connection', 'network', 'temporary', 'unavailable')


def get_error_message(status_code: int) -> str:
    return STATUS_MESSAGES.get(status_code, f"Unexpected HTTP {status_code}")


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Seconds from a Retry-After header, or None if absent or not an integer."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def handle_http_status(
    status_code: int,
    context: str = "",
    throttle_manager: Optional[Any] = None,
    endpoint: Optional[str] = None,
    retry_after: Optional[str] = None
) -> None:
    """
    Raise the APIError subclass matching a non-200 HTTP status.

    A 429 is also reported to ``throttle_manager`` so the next request to
    ``endpoint`` waits out the backoff.

    Args:
        status_code: HTTP status code of the response
        context: Appended to the error message (e.g. ``search:Inception``)
        throttle_manager: ThrottleManager to notify on 429
        endpoint: Endpoint key used by the throttle manager
        retry_after: Raw Retry-After header value

    Raises:
        FatalAPIError: 401, 403
        RetryableAPIError: 429, 5xx
        SkippableAPIError: 400, 404, 422
        APIError: Any other non-200 status
    """
    if status_code == 200:
        return

    message = get_error_message(status_code)
    if context:
        message = f"{message} ({context})"

    if status_code == 429 and throttle_manager is not None and endpoint:
        throttle_manager.handle_rate_limit(endpoint, parse_retry_after(retry_after))

    if status_code in (401, 403):
        raise FatalAPIError(message, status_code)
    if status_code == 429 or 500 <= status_code < 600:
        raise RetryableAPIError(message, status_code)
    if status_code in (400, 404, 422):
        raise SkippableAPIError(message, status_code)
    raise APIError(message, status_code)


def categorize_error(exception: Exception) -> Tuple[Exception, ErrorCategory]:
    """
    Decide whether a failure is worth retrying.

    Returns:
        Tuple of (exception, ErrorCategory)
    """
    if isinstance(exception, FatalAPIError):
        category = ErrorCategory.FATAL
    elif isinstance(exception, RetryableAPIError):
        category = ErrorCategory.RETRYABLE
    elif isinstance(exception, SkippableAPIError):
        message = str(exception).lower()
        if exception.status_code == 404 or 'not found' in message:
            category = ErrorCategory.NOT_FOUND
        else:
            category = ErrorCategory.NON_RETRYABLE
    elif any(word in str(exception).lower() for word in NETWORK_ERROR_WORDS):
        category = ErrorCategory.RETRYABLE
    else:
        category = ErrorCategory.NON_RETRYABLE
    return (exception, category)


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    initial_delay: float = 2.0,
    backoff_factor: float = 2.0,
    context: str = ""
) -> Any:
    """
    Await ``func`` until it succeeds, retrying only retryable failures.

    The wait before retry ``n`` is ``initial_delay * backoff_factor ** (n - 1)``.

    Args:
        func: Zero-argument coroutine function performing one request
        max_attempts: Total attempts including the first
        initial_delay: Seconds to wait before the first retry
        backoff_factor: Growth of the wait between retries
        context: Prefix for log messages

    Raises:
        The first non-retryable error, or the last error once attempts run out
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            _, category = categorize_error(e)
            if category != ErrorCategory.RETRYABLE:
                raise

            if attempt >= max_attempts:
                logger.error(f"{context}: giving up after {attempt} attempts: {e}")
                raise

            delay = initial_delay * backoff_factor ** (attempt - 1)
            logger.warning(
                f"{context}: {e}; retry {attempt}/{max_attempts - 1} in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
