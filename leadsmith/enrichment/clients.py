"""
Outbound API client for the enrichment services.

All three services sit behind the same internal API host
(``LEADSMITH_API_BASE_URL``):

    GET /api/skip-tracing?name=...&citystatezip=...&page=1   person search
    GET /api/skip-tracing?peo_id=...                          person details
    GET /api/telnyx/lookup?phone=...                          phone intelligence

Failures are returned as ``ApiResponse.error`` strings, never raised, so one
failing step never aborts the lead. An API switched off in the settings file
is skipped with an empty response (no data, no error).
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp

from leadsmith import config
from leadsmith.config import Settings, is_api_enabled, load_settings
from leadsmith.enrichment.extractors import payload_error
from leadsmith.utils.logger import log_event
from leadsmith.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

API_SEARCH = "Skip-tracing (Phone Discovery)"
API_PERSON_DETAILS = "Skip-tracing (Person Details)"
API_TELNYX = "Telnyx"

SKIP_TRACING_PATH = "/api/skip-tracing"
TELNYX_PATH = "/api/telnyx/lookup"


@dataclass
class ApiResponse:
    data: Optional[Any] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.data is not None


def timeout_for(api_name: str) -> float:
    """Seconds allowed for one call to ``api_name``."""
    if "Person Details" in api_name:
        return config.PERSON_DETAILS_TIMEOUT_SECONDS
    return config.API_TIMEOUT_SECONDS


def _error_label(api_name: str) -> str:
    # "Skip-tracing (Phone Discovery)" -> "Skip-tracing"
    return api_name.split(" (")[0]


class EnrichmentApiClient:
    """
    Calls the enrichment services with per-call timeouts, settings toggles
    and the skip-tracing rate limiter.

    The aiohttp session is opened lazily and closed by ``close()`` (or by
    leaving ``async with``).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_error: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            base_url: API host (defaults to LEADSMITH_API_BASE_URL)
            limiter: Limiter for skip-tracing calls (a fresh one if omitted)
            settings: Fixed settings; when omitted the settings file is re-read
                (cached for a few seconds) on every call
            sleep: Awaitable sleep, injectable for tests
            on_error: Called on network failures (not timeouts), e.g. to feed
                the cooldown manager
        """
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.limiter = limiter or RateLimiter()
        self._settings = settings
        self._sleep = sleep
        self._on_error = on_error
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "EnrichmentApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def settings(self) -> Settings:
        return self._settings if self._settings is not None else load_settings()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, path: str, params: Dict[str, str], timeout: float) -> Tuple[int, Any]:
        """
        Issue one GET. Returns (status, parsed body).

        Non-JSON bodies come back as ``{"error": <text>}``, an empty body as
        None. Undecodable bytes are replaced rather than raised.
        """
        session = self._get_session()
        url = f"{self.base_url}{path}"
        async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
            text = await resp.text(errors="replace")
            if not text.strip():
                return resp.status, None
            try:
                body = json.loads(text)
            except ValueError:
                body = {"error": text[:200]}
            return resp.status, body

    async def call(
        self,
        api_name: str,
        path: str,
        params: Dict[str, str],
        rate_limited: bool = False,
    ) -> ApiResponse:
        """
        Call one enrichment service.

        A 429 is retried exactly once after ``limiter.throttle_backoff()``
        seconds; a second 429 is returned as an error.

        Args:
            api_name: Display name (drives toggles, timeout and error text)
            path: URL path under the base URL
            params: Query parameters
            rate_limited: Route through the skip-tracing limiter

        Returns:
            ApiResponse with ``data`` on success or ``error`` on failure
        """
        settings = self.settings
        if not is_api_enabled(api_name, settings):
            logger.info(f"{api_name} disabled in settings, skipping")
            return ApiResponse()

        throttle = config.RATE_THROTTLE_DELAYS.get(settings.rate_throttle or "")
        if throttle:
            await self._sleep(throttle)

        timeout = timeout_for(api_name)
        try:
            if rate_limited:
                await self.limiter.wait_if_needed()

            status, body = await self._request(path, params, timeout)

            if status == 429:
                backoff = self.limiter.throttle_backoff()
                logger.warning(f"{api_name} rate limited (429), retrying in {backoff:.1f}s")
                await self._sleep(backoff)
                if rate_limited:
                    self.limiter.increment_429()
                    await self.limiter.wait_if_needed()

                status, body = await self._request(path, params, timeout)
                if status == 429:
                    logger.error(f"{api_name} still rate limited after retry")
                    return ApiResponse(error=f"{api_name}: Rate limit exceeded")

            if status >= 400:
                message = payload_error(body) or f"HTTP {status}"
                logger.error(f"{api_name} failed: {message}")
                return ApiResponse(error=f"{api_name}: {message}")

            if rate_limited:
                self.limiter.reset_429()
            return ApiResponse(data=body)

        except asyncio.TimeoutError:
            logger.error(f"{api_name} timeout after {timeout:.0f}s")
            return ApiResponse(error=f"{api_name}: Request timeout after {int(timeout * 1000)}ms")
        except aiohttp.ClientError as e:
            logger.error(f"{api_name} request failed: {e}")
            await self._report_network_error()
            return ApiResponse(error=f"{api_name}: {e}")

    async def _report_network_error(self) -> None:
        """Run the on_error hook off the event loop. Its failures are logged, never raised."""
        if self._on_error is None:
            return
        try:
            await asyncio.to_thread(self._on_error)
        except Exception as e:
            logger.warning(f"Network error hook failed: {e}")

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    async def search_person(self, name: str, citystatezip: str = "") -> ApiResponse:
        """Name/location search. Payload errors reported with HTTP 200 become ``error``."""
        params = {"name": name, "page": "1"}
        if citystatezip:
            params["citystatezip"] = citystatezip
        response = await self.call(API_SEARCH, SKIP_TRACING_PATH, params, rate_limited=True)

        message = payload_error(response.data)
        if message:
            return ApiResponse(error=f"{_error_label(API_SEARCH)}: {message}")
        return response

    async def person_details(self, person_id: str) -> ApiResponse:
        response = await self.call(
            API_PERSON_DETAILS, SKIP_TRACING_PATH, {"peo_id": person_id}, rate_limited=True
        )
        message = payload_error(response.data)
        if message:
            return ApiResponse(error=f"{_error_label(API_PERSON_DETAILS)}: {message}")
        return response

    async def phone_lookup(self, phone: str) -> ApiResponse:
        log_event(logger, "phone-lookup", level=logging.DEBUG, phone=phone)
        return await self.call(API_TELNYX, TELNYX_PATH, {"phone": phone})
