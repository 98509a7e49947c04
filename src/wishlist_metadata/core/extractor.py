from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, replace
from enum import Enum
from typing import Any, AsyncIterator, Protocol

import aiohttp

from wishlist_metadata.core.cache import CacheStats, MetadataCache, build_cache, get_default_cache, make_cache_key
from wishlist_metadata.core.config import ExtractionSettings
from wishlist_metadata.core.fetcher import PageFetcher, build_limiter
from wishlist_metadata.core.models import (
    ErrorCode,
    ExtractionMethod,
    ExtractionOptions,
    MetadataExtractionError,
    RetailerDetectionResult,
    UrlMetadata,
)
from wishlist_metadata.core.parser import MetadataParser, ParsedMetadata
from wishlist_metadata.core.retailers import detect_retailer, get_retailer_api_endpoint, normalize_product_url
from wishlist_metadata.core.url_validator import validate_url
from wishlist_metadata.core.utils import title_from_url_path, utc_now_iso

logger = logging.getLogger(__name__)


class ExtractionStage(str, Enum):
    VALIDATE = "validate"
    DETECT = "detect"
    CACHE_LOOKUP = "cache_lookup"
    FETCH = "fetch"
    PARSE = "parse"
    ENHANCE = "enhance"
    FALLBACK = "fallback"
    RESULT = "result"


class RetailerEnricher(Protocol):
    async def enrich(
        self,
        metadata: UrlMetadata,
        detection: RetailerDetectionResult,
        options: ExtractionOptions,
    ) -> UrlMetadata: ...


class ApiEndpointEnricher:
    """Records where a retailer's product API lives without calling it.

    Stand-in for real retailer API clients; it only annotates
    `product_details["api_endpoint"]` for retailers with a known endpoint.
    """

    async def enrich(
        self,
        metadata: UrlMetadata,
        detection: RetailerDetectionResult,
        options: ExtractionOptions,
    ) -> UrlMetadata:
        if not detection.product_id:
            return metadata
        endpoint = get_retailer_api_endpoint(detection.retailer, detection.product_id)
        if endpoint is None:
            return metadata
        details = dict(metadata.product_details or {})
        details["api_endpoint"] = endpoint
        return replace(metadata, product_details=details)


def fallback_metadata(url: str) -> UrlMetadata:
    return UrlMetadata(url=url, title=title_from_url_path(url), method=ExtractionMethod.FALLBACK)


class MetadataExtractor:
    """Runs validate -> detect -> cache lookup -> fetch -> parse -> enhance for one URL.

    Fetch and parse failures end the primary stage with a typed error; the
    caller's `use_fallback` option then decides between a degraded record and
    propagating that error. Invalid URLs always propagate.
    """

    def __init__(
        self,
        settings: ExtractionSettings | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        cache: MetadataCache | None = None,
        stats: CacheStats | None = None,
        enricher: RetailerEnricher | None = None,
    ) -> None:
        self._settings = settings or ExtractionSettings()
        self._session = session
        self._owns_session = False
        if not self._settings.cache_enabled:
            self._cache = None
        else:
            self._cache = cache if cache is not None else build_cache(self._settings)
        self._stats = stats or CacheStats()
        self._enricher = enricher
        self._rules = self._settings.validation_rules()
        self._parser = MetadataParser(default_currency=self._settings.default_currency)
        self._limiter = build_limiter(self._settings.requests_per_second)

    @property
    def settings(self) -> ExtractionSettings:
        return self._settings

    @property
    def cache(self) -> MetadataCache | None:
        return self._cache

    @property
    def stats(self) -> CacheStats:
        return self._stats

    async def __aenter__(self) -> MetadataExtractor:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        self._owns_session = False

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    async def extract(self, url: str, options: ExtractionOptions | None = None) -> UrlMetadata:
        options = options or ExtractionOptions()

        logger.debug("%s %r", ExtractionStage.VALIDATE.value, url)
        validation = validate_url(url, self._rules)
        if not validation.valid or validation.normalized_url is None:
            raise MetadataExtractionError(
                ErrorCode.INVALID_URL,
                validation.error or "Invalid URL",
                url if isinstance(url, str) else None,
            )
        normalized = validation.normalized_url

        detection = detect_retailer(normalized)
        logger.debug(
            "%s %s retailer=%s confidence=%.2f",
            ExtractionStage.DETECT.value,
            normalized,
            detection.retailer.value,
            detection.confidence,
        )

        key = self._cache_key(normalized, detection)
        if self._cache is not None:
            if options.force_refresh:
                self._stats.record_miss()
            else:
                hit = await self._cache_lookup(key, normalized, options)
                if hit is not None:
                    return replace(hit, cached=True)

        outcome = await self._run_primary(normalized, options)

        if isinstance(outcome, MetadataExtractionError):
            if not options.use_fallback:
                raise outcome
            logger.warning(
                "%s %s after %s: %s",
                ExtractionStage.FALLBACK.value,
                normalized,
                outcome.code.value,
                outcome.message,
            )
            record = fallback_metadata(normalized)
            method = ExtractionMethod.FALLBACK
        else:
            record = UrlMetadata(url=normalized, **asdict(outcome))
            method = ExtractionMethod.PRIMARY
            if options.include_retailer_data:
                record = await self._enhance(record, detection, options)

        result = replace(
            record,
            url=normalized,
            retailer=detection.retailer,
            product_id=detection.product_id or record.product_id,
            method=method,
            cached=False,
            extracted_at=utc_now_iso(),
            warnings=validation.warnings,
        )
        await self._cache_store(key, result)
        logger.debug("%s %s method=%s", ExtractionStage.RESULT.value, normalized, method.value)
        return result

    async def _run_primary(self, url: str, options: ExtractionOptions) -> ParsedMetadata | MetadataExtractionError:
        timeout = options.timeout_ms / 1000.0 if options.timeout_ms is not None else None
        try:
            async with self._session_scope() as session:
                fetcher = PageFetcher(settings=self._settings, session=session, limiter=self._limiter)
                logger.debug("%s %s", ExtractionStage.FETCH.value, url)
                page = await fetcher.fetch(url, timeout_seconds=timeout)
            logger.debug("%s %s status=%s", ExtractionStage.PARSE.value, page.final_url, page.status)
            return self._parser.parse(
                page.html,
                page.final_url,
                content_type=page.content_type,
                product_details=options.extract_product_details,
            )
        except MetadataExtractionError as e:
            return e

    async def _enhance(
        self,
        record: UrlMetadata,
        detection: RetailerDetectionResult,
        options: ExtractionOptions,
    ) -> UrlMetadata:
        if self._enricher is None:
            return record
        logger.debug("%s %s", ExtractionStage.ENHANCE.value, record.url)
        try:
            return await self._enricher.enrich(record, detection, options)
        except Exception as e:
            # Enrichment is optional; the parsed record stands on its own.
            logger.warning("Retailer enrichment failed for %s: %s", record.url, e)
            return record

    def _cache_key(self, normalized: str, detection: RetailerDetectionResult) -> str:
        lookup = normalized
        if self._settings.canonical_cache_keys and detection.product_id:
            lookup = normalize_product_url(normalized)
        return make_cache_key(lookup, self._settings.cache_key_prefix)

    async def _cache_lookup(self, key: str, url: str, options: ExtractionOptions) -> UrlMetadata | None:
        if self._cache is None:
            return None
        logger.debug("%s %s", ExtractionStage.CACHE_LOOKUP.value, url)
        try:
            hit = await self._cache.get(key)
        except MetadataExtractionError as e:
            self._stats.record_error()
            logger.warning("Cache read failed for %s: %s", url, e.message)
            return None
        if hit is None or (hit.method is ExtractionMethod.FALLBACK and not options.use_fallback):
            # A degraded record only answers callers that accept one.
            self._stats.record_miss()
            return None
        self._stats.record_hit()
        return hit

    async def _cache_store(self, key: str, result: UrlMetadata) -> None:
        if self._cache is None:
            return
        ttl = (
            self._settings.fallback_cache_ttl_seconds
            if result.method is ExtractionMethod.FALLBACK
            else self._settings.cache_ttl_seconds
        )
        try:
            await self._cache.set(key, result, ttl)
        except MetadataExtractionError as e:
            self._stats.record_error()
            logger.warning("Cache write failed for %s: %s", result.url, e.message)


async def extract_metadata(
    url: str,
    options: ExtractionOptions | None = None,
    *,
    settings: ExtractionSettings | None = None,
    cache: MetadataCache | None = None,
    enricher: RetailerEnricher | None = None,
) -> UrlMetadata:
    if cache is None:
        cache = get_default_cache()
    async with MetadataExtractor(settings, cache=cache, enricher=enricher) as extractor:
        return await extractor.extract(url, options)
