"""
Upstream events API client with retry, backoff and rate-limit pacing.

This module provides the resilient page fetcher used by the ingestion loop:
- Exponential backoff with jitter for timeouts, transport failures and 5xx
- Rate-limit handling for HTTP 429 (Retry-After, body hints, reset headers)
- Proactive pacing from X-RateLimit-Remaining / X-RateLimit-Reset
- Normalization of every successful page into a canonical Page
"""

import asyncio
import json
import random
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import logging

from core.config import Settings
from core.exceptions import MalformedResponseError, TransportError, UpstreamError
from core.time import utcnow
from ingestion.retry_policy import (
    compute_backoff_delay,
    is_retriable_status,
    parse_reset_value,
    parse_retry_after,
)
from ingestion.transformers.normalizer import ResponseNormalizer
from schemas.events import Page

logger = logging.getLogger(__name__)

RETRY_AFTER_HEADER = "Retry-After"
RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"
API_KEY_HEADER = "X-API-Key"


def build_events_url(base_url: str, limit: int, cursor: Optional[str]) -> str:
    """Build ``<base>/events?limit=<n>[&cursor=<c>]``"""
    params: Dict[str, Any] = {"limit": limit}
    if cursor:
        params["cursor"] = cursor
    return str(httpx.URL(f"{base_url.rstrip('/')}/events", params=params))


def build_request_headers(api_key: str) -> Dict[str, str]:
    return {
        "Accept": "application/json",
        API_KEY_HEADER: api_key,
    }


class EventsClient:
    """
    Fetch pages from the upstream events feed.

    One instance per stream: the rate-limit pacing window is private
    instance state, read before and written after every request.

    Attributes:
        max_retries: Retries allowed for timeouts, transport failures and 5xx
            (429 responses are retried without limit)
        retry_base_delay: First backoff delay in seconds
        retry_max_delay: Upper bound for any backoff delay in seconds
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        page_limit: int = 1000,
        timeout: float = 10.0,
        max_retries: int = 5,
        retry_base_delay: float = 0.2,
        retry_max_delay: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
        normalizer: Optional[ResponseNormalizer] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        random_fn: Callable[[], float] = random.random,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.page_limit = page_limit
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._normalizer = normalizer or ResponseNormalizer()
        self._sleep = sleep
        self._clock = clock
        self._random = random_fn

        # Pacing window: no request is issued before this instant
        self._paced_until: Optional[datetime] = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "EventsClient":
        return cls(
            base_url=settings.API_BASE_URL,
            api_key=settings.API_KEY,
            page_limit=settings.API_PAGE_LIMIT,
            timeout=settings.API_TIMEOUT_SECONDS,
            max_retries=settings.API_MAX_RETRIES,
            retry_base_delay=settings.API_RETRY_BASE_SECONDS,
            retry_max_delay=settings.API_RETRY_MAX_SECONDS,
            **kwargs
        )

    async def __aenter__(self) -> "EventsClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def fetch_page(self, cursor: Optional[str]) -> Page:
        """
        Fetch and normalize the page at ``cursor``.

        Raises:
            UpstreamError: Non-retriable status, or 5xx after max retries
            TransportError: Timeout / connection failure after max retries
            MalformedResponseError: Body is not a valid events page
        """
        url = build_events_url(self.base_url, self.page_limit, cursor)
        headers = build_request_headers(self.api_key)

        failures = 0
        retry_number = 0

        while True:
            await self._wait_for_pacing_window()

            try:
                logger.debug(f"Requesting {url} (retry {retry_number})")
                response = await asyncio.wait_for(
                    self._http.get(url, headers=headers, timeout=self.timeout),
                    timeout=self.timeout
                )
            except (asyncio.TimeoutError, httpx.TransportError) as e:
                failures += 1
                if failures > self.max_retries:
                    raise TransportError(
                        f"Events API request failed after {failures} attempts",
                        context={
                            "api_url": url,
                            "cursor": cursor,
                            "timeout": self.timeout,
                            "retry_count": failures - 1
                        },
                        original_exception=e
                    )
                retry_number += 1
                delay = self._backoff(retry_number)
                logger.warning(
                    f"Events API transport failure ({type(e).__name__}). "
                    f"Retrying in {delay:.3f}s (attempt {failures}/{self.max_retries + 1})"
                )
                await self._sleep(delay)
                continue

            status = response.status_code

            if response.is_success:
                self._update_pacing_window(response.headers)
                return self._parse_page(response, url)

            body = response.text

            if status == 429:
                retry_number += 1
                delay = self._rate_limit_delay(response, body, retry_number)
                logger.warning(f"Rate limited by events API. Retrying in {delay:.3f}s")
                await self._sleep(delay)
                continue

            if is_retriable_status(status):
                failures += 1
                if failures <= self.max_retries:
                    retry_number += 1
                    delay = self._backoff(retry_number)
                    logger.warning(
                        f"Events API server error {status}. Retrying in {delay:.3f}s "
                        f"(attempt {failures}/{self.max_retries + 1})"
                    )
                    await self._sleep(delay)
                    continue

            raise UpstreamError(
                self._error_message(status, body),
                status_code=status,
                response_body=body,
                context={"api_url": url, "cursor": cursor, "retry_count": retry_number}
            )

    def _backoff(self, retry_number: int) -> float:
        return compute_backoff_delay(
            retry_number,
            self.retry_base_delay,
            self.retry_max_delay,
            self._random
        )

    def _rate_limit_delay(self, response: httpx.Response, body: str, retry_number: int) -> float:
        """max(explicit hint, computed backoff); backoff alone if no hint resolves"""
        backoff = self._backoff(retry_number)
        hint = self._resolve_retry_hint(response.headers, body)
        if hint is None:
            return backoff
        return max(hint, backoff)

    def _resolve_retry_hint(self, headers: httpx.Headers, body: str) -> Optional[float]:
        """Retry-After header, then rateLimit body field, then reset header"""
        now = self._clock()

        hint = parse_retry_after(headers.get(RETRY_AFTER_HEADER), now)
        if hint is not None:
            return hint

        rate_limit = self._rate_limit_body(body)
        if rate_limit is not None:
            for key in ("retryAfter", "reset"):
                hint = parse_reset_value(rate_limit.get(key), now)
                if hint is not None:
                    return hint

        return parse_reset_value(headers.get(RATE_LIMIT_RESET_HEADER), now)

    @staticmethod
    def _rate_limit_body(body: str) -> Optional[Dict[str, Any]]:
        if not body:
            return None
        try:
            payload = json.loads(body)
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        rate_limit = payload.get("rateLimit")
        return rate_limit if isinstance(rate_limit, dict) else None

    def _update_pacing_window(self, headers: httpx.Headers) -> None:
        remaining_raw = headers.get(RATE_LIMIT_REMAINING_HEADER)
        if remaining_raw is None:
            return

        try:
            remaining = int(remaining_raw.strip())
        except ValueError:
            return

        now = self._clock()
        reset_delay = parse_reset_value(headers.get(RATE_LIMIT_RESET_HEADER), now)
        if reset_delay is None:
            return

        if remaining <= 0:
            spacing = reset_delay
        else:
            # Spread the remaining quota evenly over the reset interval
            spacing = reset_delay / (remaining + 1)

        self._paced_until = now + timedelta(seconds=spacing)

    async def _wait_for_pacing_window(self) -> None:
        if self._paced_until is None:
            return

        wait = (self._paced_until - self._clock()).total_seconds()
        self._paced_until = None
        if wait > 0:
            logger.debug(f"Pacing events API requests for {wait:.3f}s")
            await self._sleep(wait)

    def _parse_page(self, response: httpx.Response, url: str) -> Page:
        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Failed to parse JSON response",
                context={"api_url": url, "response_body": response.text[:500]},
                original_exception=e
            )
        return self._normalizer.normalize_page(payload)

    @staticmethod
    def _error_message(status: int, body: str) -> str:
        if not body:
            return f"Events API request failed with status {status}"
        return f"Events API request failed with status {status}: {body}"
