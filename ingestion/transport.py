"""
HTTP transport helpers: response classification and bounded retry.

``send`` turns transport failures and error statuses into the sync
exception taxonomy; ``RetryPolicy`` retries only the transient ones.
401 is returned to the caller untouched so token refresh can be handled
where the token is known.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from core.config import settings
from core.exceptions import PermanentHttpError, TransientHttpError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value and value.strip().isdigit():
        return float(value)
    return None


async def send(http: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    """
    Issue one request and classify the outcome.

    Returns:
        The response for 2xx/3xx and 401

    Raises:
        TransientHttpError: Timeouts, connection failures, 429 and 5xx
        PermanentHttpError: Any other 4xx
    """
    try:
        response = await http.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise TransientHttpError(
            "Request timed out",
            context={"url": url, "method": method},
            original_exception=e
        )
    except httpx.TransportError as e:
        raise TransientHttpError(
            "Network error",
            context={"url": url, "method": method},
            original_exception=e
        )

    status = response.status_code
    context = {"url": url, "method": method, "status_code": status}

    if status == 429:
        raise TransientHttpError(
            "Rate limit exceeded",
            context=context,
            retry_after=_retry_after(response)
        )

    if status >= 500:
        context["response_body"] = response.text[:500]
        raise TransientHttpError(f"Server error {status}", context=context)

    if 400 <= status < 500 and status != 401:
        context["response_body"] = response.text[:500]
        raise PermanentHttpError(f"Client error {status}", context=context)

    return response


class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Only ``TransientHttpError`` is retried; every other exception propagates
    on the first attempt. The last transient error is re-raised once the
    attempts are used up.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_attempts = max_attempts or settings.MAX_RETRIES
        self.base_delay = settings.RETRY_DELAY if base_delay is None else base_delay
        self._sleep = sleep

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "request") -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except TransientHttpError as e:
                e.context["attempts"] = attempt
                if attempt == self.max_attempts:
                    logger.error(f"{description} failed after {attempt} attempts: {e.message}")
                    raise

                delay = e.retry_after or self.base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}): "
                    f"{e.message}. Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        raise ValueError("RetryPolicy needs at least one attempt")
