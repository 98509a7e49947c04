from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from typing import Iterable, Sequence

from wishlist_metadata.core.cache import MetadataCache, get_default_cache
from wishlist_metadata.core.config import ExtractionSettings
from wishlist_metadata.core.extractor import MetadataExtractor
from wishlist_metadata.core.models import (
    BatchResultEntry,
    BatchSummary,
    ErrorCode,
    ExtractionOptions,
    MetadataExtractionError,
)

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Extracts many URLs concurrently, one result entry per input URL.

    A failing URL never aborts the batch. Results come back in input order,
    duplicates included.
    """

    def __init__(self, extractor: MetadataExtractor, *, max_concurrency: int | None = None) -> None:
        self._extractor = extractor
        limit = max_concurrency if max_concurrency is not None else extractor.settings.max_concurrency
        self._max_concurrency = max(1, int(limit))

    async def extract_batch(
        self,
        urls: Iterable[str],
        options: ExtractionOptions | None = None,
    ) -> list[BatchResultEntry]:
        url_list = list(urls)
        if not url_list:
            return []
        sem = asyncio.Semaphore(self._max_concurrency)

        async def one(url: str) -> BatchResultEntry:
            async with sem:
                try:
                    metadata = await self._extractor.extract(url, options)
                    return BatchResultEntry(url=url, success=True, metadata=metadata)
                except MetadataExtractionError as e:
                    logger.info("Batch item failed %s: %s %s", url, e.code.value, e.message)
                    return BatchResultEntry(url=url, success=False, error=e)
                except Exception as e:
                    logger.exception("Unexpected failure extracting %s", url)
                    err = MetadataExtractionError(ErrorCode.SERVER_ERROR, str(e) or e.__class__.__name__, url)
                    return BatchResultEntry(url=url, success=False, error=err)

        started = time.monotonic()
        entries = await asyncio.gather(*(one(u) for u in url_list))
        logger.info(
            "Batch of %s finished in %.0fms",
            len(url_list),
            (time.monotonic() - started) * 1000,
        )
        return list(entries)


def summarize(entries: Sequence[BatchResultEntry], elapsed_ms: int = 0) -> BatchSummary:
    successful = sum(1 for e in entries if e.success)
    cached = sum(1 for e in entries if e.cached)
    errors = Counter(e.error.code.value for e in entries if e.error is not None)
    return BatchSummary(
        total=len(entries),
        successful=successful,
        failed=len(entries) - successful,
        cached=cached,
        elapsed_ms=elapsed_ms,
        errors_by_code=dict(errors),
    )


async def extract_metadata_batch(
    urls: Iterable[str],
    options: ExtractionOptions | None = None,
    *,
    settings: ExtractionSettings | None = None,
    cache: MetadataCache | None = None,
) -> list[BatchResultEntry]:
    if cache is None:
        cache = get_default_cache()
    async with MetadataExtractor(settings, cache=cache) as extractor:
        return await BatchCoordinator(extractor).extract_batch(urls, options)
