from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

import httpx

from copyflow.config import EngineOptions
from copyflow.core.exceptions import TransientUpstreamError

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def compute_backoff(attempt: int, base: float = 1.0, jitter: float = 0.5) -> float:
    """Exponential backoff with jitter, in seconds: ``2**attempt * base + U(0, jitter)``."""
    return (2 ** attempt) * base + random.uniform(0, jitter)


class GatewayClient:
    """Outbound HTTP with bounded exponential-backoff retry on 429/5xx."""

    def __init__(
        self,
        options: EngineOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn | None = None,
    ):
        self.options = options or EngineOptions()
        self._transport = transport
        self._sleep = sleep or asyncio.sleep

    async def fetch_with_retry(
        self,
        method: str,
        url: str,
        retries: int | None = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """
        Issue a request, retrying transient statuses up to ``retries`` attempts total.

        A 429/5xx is raised as ``TransientUpstreamError`` and handled here; it
        never reaches the caller.

        The final response is returned whatever its status; callers check
        ``is_success`` themselves. Network errors propagate at once unless
        ``retry_network_errors`` is enabled.
        """
        attempts = max(1, retries if retries is not None else self.options.retries)

        async with httpx.AsyncClient(
            timeout=self.options.http_timeout_seconds,
            transport=self._transport,
        ) as client:
            for attempt in range(attempts):
                is_last = attempt == attempts - 1
                try:
                    response = await client.request(method, url, **request_kwargs)
                    if is_transient_status(response.status_code):
                        raise TransientUpstreamError(response.status_code, f"{method} {url}")
                    return response
                except TransientUpstreamError as exc:
                    if is_last:
                        return response
                    reason: Any = exc.status_code
                except httpx.TransportError as exc:
                    if not self.options.retry_network_errors or is_last:
                        raise
                    reason = type(exc).__name__

                delay = compute_backoff(attempt)
                logger.warning(
                    "Retry %s/%s after %s for %s %s, waiting %.0fms",
                    attempt + 1,
                    attempts,
                    reason,
                    method,
                    url,
                    delay * 1000,
                )
                await self._sleep(delay)

        raise RuntimeError("unreachable: retry loop exited without a response")

    async def get(self, url: str, **request_kwargs: Any) -> httpx.Response:
        return await self.fetch_with_retry("GET", url, **request_kwargs)

    async def post(self, url: str, **request_kwargs: Any) -> httpx.Response:
        return await self.fetch_with_retry("POST", url, **request_kwargs)
