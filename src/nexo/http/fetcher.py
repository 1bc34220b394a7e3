"""Outbound JSON fetching with per-attempt timeout and bounded retry.

Every upstream adapter goes through HttpFetcher.fetch_json(). All failure
modes (timeouts, transport errors, non-2xx statuses, invalid JSON) collapse
to ``None`` so that fallback, 404 and 502 policy stays with the callers.
"""

import asyncio
from collections.abc import Collection
from typing import Any, Literal

import httpx

from nexo.config import HttpSettings
from nexo.logging import get_logger

logger = get_logger(__name__)


class HttpFetcher:
    """Thin policy layer over a shared ``httpx.AsyncClient``.

    Usage:
        fetcher = HttpFetcher(settings.http)
        data = await fetcher.fetch_json(url, timeout=5.0, retries=1, label="Binance BTCUSDT")
        await fetcher.close()

    Args:
        settings: Default timeout, retry delay and retryable statuses.
        client: Optional pre-built client (tests inject one backed by
            ``httpx.MockTransport``). An injected client is not closed here.
    """

    def __init__(
        self,
        settings: HttpSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or HttpSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={
                "Accept": "application/json",
                "User-Agent": self._settings.user_agent,
            },
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Release the underlying connection pool (if we created it)."""
        if self._owns_client:
            await self._client.aclose()

    async def fetch_json(
        self,
        url: str,
        *,
        timeout: float | None = None,
        retries: int = 0,
        retry_delay: float | None = None,
        retryable_statuses: Collection[int] | None = None,
        label: str | None = None,
        method: Literal["GET", "POST"] = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any | None:
        """Fetch ``url`` and decode the JSON body.

        Args:
            url: Absolute URL.
            timeout: Hard deadline per attempt, in seconds.
            retries: Extra attempts after the first one.
            retry_delay: Seconds to wait before each retry.
            retryable_statuses: Non-2xx statuses worth retrying.
            label: Short name for log lines (defaults to the URL).
            method: "GET" or "POST".
            body: JSON-serialisable request body (POST).
            params: Optional query string parameters.

        Returns:
            The decoded JSON value, or None once every attempt has failed.
        """
        timeout = self._settings.timeout_default if timeout is None else timeout
        retry_delay = self._settings.retry_delay if retry_delay is None else retry_delay
        if retryable_statuses is None:
            retryable_statuses = self._settings.retryable_statuses
        label = label or url
        max_attempts = retries + 1

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                logger.info(
                    "fetch_retry",
                    label=label,
                    attempt=attempt,
                    max_attempts=max_attempts,
                )
                await asyncio.sleep(retry_delay)

            try:
                response = await asyncio.wait_for(
                    self._client.request(
                        method,
                        url,
                        params=params,
                        json=body,
                        timeout=timeout,
                    ),
                    timeout=timeout,
                )
            except (httpx.HTTPError, TimeoutError) as e:
                error = str(e) or type(e).__name__
                if attempt < max_attempts:
                    logger.warning("fetch_error_will_retry", label=label, attempt=attempt, error=error)
                    continue
                logger.error("fetch_failed", label=label, attempts=attempt, error=error)
                return None

            if not response.is_success:
                logger.warning(
                    "fetch_http_error",
                    label=label,
                    attempt=attempt,
                    status=response.status_code,
                )
                if response.status_code in retryable_statuses and attempt < max_attempts:
                    continue
                return None

            try:
                data = response.json()
            except ValueError as e:
                if attempt < max_attempts:
                    logger.warning("fetch_invalid_json_will_retry", label=label, attempt=attempt)
                    continue
                logger.error("fetch_failed", label=label, attempts=attempt, error=f"invalid json: {e}")
                return None

            logger.debug("fetch_ok", label=label, attempt=attempt, status=response.status_code)
            return data

        return None  # Unreachable, but satisfies type checker
