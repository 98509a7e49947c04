from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from dataclasses import replace
from typing import Any, Sequence

from wishlist_metadata.core.batch import BatchCoordinator, summarize
from wishlist_metadata.core.cache import build_cache
from wishlist_metadata.core.config import AppConfig
from wishlist_metadata.core.extractor import ApiEndpointEnricher, MetadataExtractor
from wishlist_metadata.core.logging_config import configure_logging
from wishlist_metadata.core.models import ExtractionOptions, MetadataExtractionError


def _positive_int(value: str) -> int:
    n = int(value)
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return n


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wishlist-metadata",
        description="Extract product metadata (title, image, price, retailer) from shopping URLs.",
    )
    parser.add_argument("--no-cache", action="store_true", help="Disable the metadata cache")
    parser.add_argument("--no-log-file", action="store_true", help="Log to the console only")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--no-fallback", action="store_true", help="Fail instead of returning a fallback record")
    common.add_argument("--force-refresh", action="store_true", help="Skip the cache read (result is still stored)")
    common.add_argument("--timeout-ms", type=_positive_int, default=None, help="Per-request timeout in milliseconds")
    common.add_argument("--product-details", action="store_true", help="Read JSON-LD product details")
    common.add_argument("--retailer-data", action="store_true", help="Annotate results with retailer API data")

    sub = parser.add_subparsers(dest="command", required=True)
    p_extract = sub.add_parser("extract", parents=[common], help="Extract metadata for one URL")
    p_extract.add_argument("url")
    p_batch = sub.add_parser("batch", parents=[common], help="Extract metadata for several URLs")
    p_batch.add_argument("urls", nargs="+")
    return parser


def _options(args: argparse.Namespace) -> ExtractionOptions:
    return ExtractionOptions(
        force_refresh=args.force_refresh,
        include_retailer_data=args.retailer_data,
        timeout_ms=args.timeout_ms,
        use_fallback=not args.no_fallback,
        extract_product_details=args.product_details,
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def _run(config: AppConfig, args: argparse.Namespace) -> int:
    settings = config.extraction
    if args.no_cache:
        settings = replace(settings, cache_enabled=False)
    cache = build_cache(settings, db_path=config.paths.cache_db_path)
    options = _options(args)

    async with MetadataExtractor(settings, cache=cache, enricher=ApiEndpointEnricher()) as extractor:
        if args.command == "extract":
            try:
                metadata = await extractor.extract(args.url, options)
            except MetadataExtractionError as e:
                _print_json({"success": False, "error": e.to_dict()})
                return 2
            _print_json({"success": True, "metadata": metadata.to_dict()})
            return 0

        started = time.monotonic()
        entries = await BatchCoordinator(extractor).extract_batch(args.urls, options)
        summary = summarize(entries, elapsed_ms=int((time.monotonic() - started) * 1000))
        _print_json(
            {
                "results": [e.to_dict() for e in entries],
                "summary": summary.to_dict(),
                "cache": extractor.stats.snapshot(),
            }
        )
        return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    config = AppConfig.load()
    configure_logging(config, to_file=not args.no_log_file)
    return asyncio.run(_run(config, args))


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
