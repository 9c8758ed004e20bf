from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, Mapping, Optional
from urllib.parse import quote

import httpx

from ..core.config import Settings
from ..domain.errors import (
    RemoteAuthError,
    RemoteResponseError,
    RemoteTimeout,
    RemoteTransportError,
)

logger = logging.getLogger(__name__)

LATEST_READINGS_PATH = "/api/latest-readings/"
QUERY_KEY_PARAM = "key"
_QUERY_KEY_RE = re.compile(r"[?&]key=")

Sleep = Callable[[float], Awaitable[None]]


def build_endpoint(base_url: str, device: str) -> str:
    """Accept either a full latest-readings endpoint or a bare origin."""
    raw = (base_url or "").strip()
    trimmed = raw.rstrip("/")
    if LATEST_READINGS_PATH in raw.lower():
        return trimmed
    return f"{trimmed}{LATEST_READINGS_PATH}{device}"


def with_query_key(url: str, api_key: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{QUERY_KEY_PARAM}={quote(api_key, safe='')}"


class RemoteApiClient:
    """Client for the external device-reporting service (latest reading endpoint)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        device: str = "HZ1",
        timeout_s: float = 10.0,
        max_attempts: int = 2,
        backoff_s: float = 0.3,
        allow_query_key_fallback: bool = True,
        cf_access_client_id: str = "",
        cf_access_client_secret: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.url = build_endpoint(base_url, device)
        self.device = device
        self._api_key = api_key
        self._timeout = float(timeout_s)
        self._max_attempts = max(1, int(max_attempts))
        self._backoff = float(backoff_s)
        self._allow_query_key_fallback = allow_query_key_fallback
        self._cf_access = (cf_access_client_id, cf_access_client_secret)
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, s: Settings, **kwargs) -> "RemoteApiClient":
        return cls(
            base_url=s.external_api_url,
            api_key=s.external_api_key,
            device=s.external_device,
            timeout_s=s.ext_api_timeout_seconds,
            max_attempts=s.ext_api_max_attempts,
            backoff_s=s.retry_backoff_seconds,
            allow_query_key_fallback=s.allow_query_key_fallback,
            cf_access_client_id=s.cf_access_client_id,
            cf_access_client_secret=s.cf_access_client_secret,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def base_headers(self) -> dict[str, str]:
        headers = {
            "X-API-KEY": self._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "HydroMonitor/1.0",
        }
        client_id, client_secret = self._cf_access
        if client_id and client_secret:
            headers["CF-Access-Client-Id"] = client_id
            headers["CF-Access-Client-Secret"] = client_secret
        return headers

    async def fetch(self, url: str, headers: Mapping[str, str], timeout_s: Optional[float] = None) -> httpx.Response:
        """One GET, bounded by ``timeout_s`` in total."""
        timeout = self._timeout if timeout_s is None else timeout_s
        try:
            return await asyncio.wait_for(self._client.get(url, headers=dict(headers)), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RemoteTimeout(f"No response from {url} within {timeout:.1f}s", url=url) from e
        except httpx.HTTPError as e:
            raise RemoteTransportError(f"Transport error for {url}: {e}", url=url) from e

    def _can_fall_back_to_query_key(self, response: httpx.Response, url: str) -> bool:
        return (
            response.status_code == 401
            and self._allow_query_key_fallback
            and not _QUERY_KEY_RE.search(url)
        )

    async def fetch_with_retry(self) -> httpx.Response:
        """
        GET the endpoint, retrying timeouts only (``backoff * attempt`` between tries).
        A 401 switches once to the query-parameter credential.
        """
        url = self.url
        headers = self.base_headers()
        fell_back = False

        for attempt in range(1, self._max_attempts + 1):
            try:
                response = await self.fetch(url, headers)

                if not fell_back and self._can_fall_back_to_query_key(response, url):
                    fell_back = True
                    url = with_query_key(url, self._api_key)
                    headers.pop("X-API-KEY", None)
                    logger.warning("Remote API returned 401, retrying once with query-parameter key")
                    response = await self.fetch(url, headers)

                return response
            except RemoteTimeout:
                if attempt >= self._max_attempts:
                    raise
                delay = self._backoff * attempt
                logger.warning(
                    "Remote API timeout (attempt %d/%d), retrying in %.1fs",
                    attempt, self._max_attempts, delay,
                )
                await self._sleep(delay)

        # unreachable: the loop either returns or raises
        raise RemoteTimeout(f"No response from {url}", url=url)

    async def fetch_latest(self) -> dict:
        """Fetch and JSON-decode the latest reading document."""
        response = await self.fetch_with_retry()
        url = str(response.url)

        if response.status_code == 401:
            raise RemoteAuthError("Remote API rejected credentials", url=url, status_code=401)
        if not response.is_success:
            raise RemoteResponseError(
                f"Remote API error: {response.status_code} {response.reason_phrase} {response.text[:200]}",
                url=url,
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise RemoteResponseError(f"Expected JSON, got {content_type!r}", url=url, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteResponseError(f"Invalid JSON body: {e}", url=url, status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise RemoteResponseError("Expected a JSON object", url=url, status_code=response.status_code)
        return data
