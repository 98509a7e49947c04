from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import aiohttp
from aiolimiter import AsyncLimiter

from wishlist_metadata.core.config import ExtractionSettings
from wishlist_metadata.core.models import ErrorCode, MetadataExtractionError
from wishlist_metadata.core.utils import async_backoff_sleep

logger = logging.getLogger(__name__)


RETRYABLE = {ErrorCode.RATE_LIMIT, ErrorCode.SERVER_ERROR}


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status: int
    content_type: str
    html: str


def build_limiter(requests_per_second: float) -> AsyncLimiter:
    # One page fetch per token; slow rates widen the window instead of shrinking max_rate below 1.
    rate = max(0.1, float(requests_per_second))
    if rate < 1.0:
        return AsyncLimiter(max_rate=1.0, time_period=1.0 / rate)
    return AsyncLimiter(max_rate=rate, time_period=1.0)


class PageFetcher:
    def __init__(
        self,
        *,
        settings: ExtractionSettings,
        session: aiohttp.ClientSession,
        limiter: AsyncLimiter | None = None,
    ) -> None:
        self._settings = settings
        self._session = session
        self._limiter = limiter or build_limiter(settings.requests_per_second)

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Upgrade-Insecure-Requests": "1",
        }

    async def fetch(self, url: str, *, timeout_seconds: float | None = None) -> FetchResult:
        timeout = float(timeout_seconds if timeout_seconds is not None else self._settings.timeout_seconds)
        attempts = 0
        while True:
            try:
                return await self._fetch_once(url, timeout)
            except MetadataExtractionError as e:
                retryable = e.category in RETRYABLE or (e.code is ErrorCode.FETCH_FAILED and e.status_code is None)
                attempts += 1
                if not retryable or attempts > self._settings.max_retries:
                    raise
                logger.info("Retrying %s after %s (attempt %s)", url, e.category.value, attempts)
                await async_backoff_sleep(attempts, self._settings.backoff_base_seconds)

    async def _fetch_once(self, url: str, timeout: float) -> FetchResult:
        try:
            async with self._limiter:
                async with self._session.get(
                    url,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=timeout),
                    allow_redirects=True,
                ) as resp:
                    status = int(resp.status)
                    final_url = str(resp.url)
                    if status >= 400:
                        reason = resp.reason or ""
                        raise MetadataExtractionError(
                            ErrorCode.FETCH_FAILED,
                            f"HTTP {status}: {reason}".rstrip(": "),
                            url,
                            status_code=status,
                        )
                    text = await resp.text(errors="ignore")
                    content_type = resp.headers.get("Content-Type", "")
                    return FetchResult(url=url, final_url=final_url, status=status, content_type=content_type, html=text)
        except asyncio.TimeoutError as e:
            # aiohttp's timeout errors are also ClientErrors; this branch must come first.
            raise MetadataExtractionError(ErrorCode.TIMEOUT, f"Request timeout after {int(timeout * 1000)}ms", url) from e
        except aiohttp.ClientError as e:
            raise MetadataExtractionError(ErrorCode.FETCH_FAILED, str(e) or e.__class__.__name__, url) from e
