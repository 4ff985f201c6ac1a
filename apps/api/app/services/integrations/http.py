"""HTTP plumbing for provider clients: retry with backoff, failures as ProviderError."""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator

import httpx

from app.core.errors import ProviderError

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
DEFAULT_TIMEOUT = httpx.Timeout(15.0)


@contextmanager
def malformed_response(provider: str) -> Iterator[None]:
    """Report a 2xx body that is not the expected JSON shape as ProviderError."""
    try:
        yield
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
        raise ProviderError(provider, f"malformed response: {exc!r}") from exc


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    return delay + random.uniform(0, delay / 2) if delay else 0.0


async def call_provider(
    provider: str,
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
) -> httpx.Response:
    """
    Execute a provider request, retrying transport errors and retryable statuses.

    Returns the 2xx response. Anything else ends as ProviderError.
    """
    response: httpx.Response | None = None
    for attempt in range(max_attempts):
        last_attempt = attempt >= max_attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if last_attempt:
                raise ProviderError(provider, f"request failed: {exc}") from exc
            logger.warning("%s request failed, retrying", provider, exc_info=exc)
            await asyncio.sleep(_backoff_delay(attempt, base_delay, max_delay))
            continue

        if response.status_code in RETRY_STATUSES and not last_attempt:
            logger.warning("%s returned %s, retrying", provider, response.status_code)
            await asyncio.sleep(_backoff_delay(attempt, base_delay, max_delay))
            continue
        break

    if response is not None and response.is_success:
        return response
    status = response.status_code if response is not None else "no response"
    body = response.text[:300] if response is not None else ""
    raise ProviderError(provider, f"HTTP {status}: {body}")
