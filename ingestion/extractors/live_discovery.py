"""
Live upstream discovery probe.

Fetches one small page from a live feed before a fresh ingestion and
reports the response headers and payload shape, so rate-limit headers and
field naming can be checked before committing to a long run.
"""

from typing import Any, Dict, List, Optional

import httpx
import logging
from pydantic import BaseModel, Field

from core.config import Settings
from core.exceptions import MalformedResponseError, TransportError, UpstreamError
from ingestion.extractors.events_client import build_events_url, build_request_headers
from ingestion.transformers.normalizer import ResponseNormalizer

logger = logging.getLogger(__name__)

DISCOVERY_LIMIT = 5


class LiveDiscoveryResult(BaseModel):
    headers: Dict[str, str] = Field(default_factory=dict)
    response_shape: Dict[str, Any] = Field(default_factory=dict)
    sample_size: int = 0
    has_more: bool = False
    next_cursor: Optional[str] = None


def should_run_live_discovery(api_mode: str, total_ingested: int, on_resume: bool) -> bool:
    """Probe live feeds on a fresh start; on resume only when asked to."""
    if api_mode != "live":
        return False
    if total_ingested <= 0:
        return True
    return on_resume


def describe_response_shape(payload: Any) -> Dict[str, Any]:
    """Summarize key names and value types of a raw page payload"""
    if not isinstance(payload, dict):
        return {"payload_type": type(payload).__name__}

    data = payload.get("data")
    first = data[0] if isinstance(data, list) and data else None
    next_cursor = payload.get("nextCursor")

    keys: List[str] = list(payload.keys())
    return {
        "top_level_keys": keys,
        "data_type": "array" if isinstance(data, list) else type(data).__name__,
        "data_length": len(data) if isinstance(data, list) else None,
        "has_more_type": type(payload.get("hasMore")).__name__,
        "next_cursor_type": "null" if next_cursor is None else type(next_cursor).__name__,
        "first_event_keys": list(first.keys()) if isinstance(first, dict) else None,
    }


async def run_live_discovery(settings: Settings, http_client: httpx.AsyncClient) -> LiveDiscoveryResult:
    """
    Fetch one discovery page without retries.

    Raises:
        UpstreamError: Non-2xx response
        TransportError: Timeout or connection failure
        MalformedResponseError: Body is not a valid events page
    """
    url = build_events_url(settings.API_BASE_URL, DISCOVERY_LIMIT, None)

    try:
        response = await http_client.get(
            url,
            headers=build_request_headers(settings.API_KEY),
            timeout=settings.API_TIMEOUT_SECONDS
        )
    except httpx.TransportError as e:
        raise TransportError(
            "Live discovery request failed",
            context={"api_url": url},
            original_exception=e
        )

    if not response.is_success:
        body = response.text
        message = f"Live discovery failed with status {response.status_code}"
        raise UpstreamError(
            f"{message}: {body}" if body else message,
            status_code=response.status_code,
            response_body=body,
            context={"api_url": url}
        )

    try:
        payload = response.json()
    except ValueError as e:
        raise MalformedResponseError(
            "Live discovery returned a non-JSON body",
            context={"api_url": url},
            original_exception=e
        )

    page = ResponseNormalizer().normalize_page(payload)

    result = LiveDiscoveryResult(
        headers={key: value for key, value in response.headers.items()},
        response_shape=describe_response_shape(payload),
        sample_size=len(page.events),
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )
    logger.info(
        f"Live discovery: sample_size={result.sample_size}, has_more={result.has_more}, "
        f"shape={result.response_shape}"
    )
    return result
