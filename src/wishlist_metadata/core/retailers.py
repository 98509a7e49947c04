from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from wishlist_metadata.core.models import Retailer, RetailerDetectionResult


DOMAIN_WEIGHT = 0.5
PRODUCT_ID_WEIGHT = 0.3
STRUCTURE_WEIGHT = 0.2


def _host(pattern: str) -> re.Pattern[str]:
    # Match the registrable domain or any subdomain of it, never a lookalike suffix.
    return re.compile(rf"(?:^|\.){pattern}$", re.IGNORECASE)


@dataclass(frozen=True)
class RetailerPattern:
    retailer: Retailer
    domains: tuple[re.Pattern[str], ...]
    product_id_patterns: tuple[re.Pattern[str], ...]
    structure_pattern: re.Pattern[str]
    canonical_template: str | None = None
    api_endpoint_template: str | None = None

    def matches_domain(self, hostname: str) -> bool:
        return any(d.search(hostname) for d in self.domains)

    def extract_product_id(self, url: str) -> str | None:
        for pattern in self.product_id_patterns:
            m = pattern.search(url)
            if m:
                return m.group(1)
        return None

    def matches_structure(self, url: str) -> bool:
        return bool(self.structure_pattern.search(url))


# Checked top to bottom; the first entry whose domain matches wins.
RETAILER_PATTERNS: tuple[RetailerPattern, ...] = (
    RetailerPattern(
        retailer=Retailer.AMAZON,
        domains=(
            _host(r"amazon\.(?:com|ca|co\.uk|de|fr|it|es|jp|cn|in|com\.au|com\.mx|com\.br)"),
            _host(r"amzn\.(?:to|com)"),
        ),
        product_id_patterns=(
            re.compile(r"/dp/([A-Z0-9]{10})", re.IGNORECASE),
            re.compile(r"/gp/product/([A-Z0-9]{10})", re.IGNORECASE),
            re.compile(r"/product/([A-Z0-9]{10})", re.IGNORECASE),
            re.compile(r"/ASIN/([A-Z0-9]{10})", re.IGNORECASE),
        ),
        structure_pattern=re.compile(r"/(?:dp|gp/product|product|ASIN)/", re.IGNORECASE),
        canonical_template="https://www.amazon.com/dp/{product_id}",
    ),
    RetailerPattern(
        retailer=Retailer.TARGET,
        domains=(_host(r"target\.com"),),
        product_id_patterns=(
            re.compile(r"/A-(\d{8,})", re.IGNORECASE),
            re.compile(r"tcin=(\d{8,})", re.IGNORECASE),
        ),
        structure_pattern=re.compile(r"/p/[^/]*/-/A-\d+", re.IGNORECASE),
        canonical_template="https://www.target.com/p/-/A-{product_id}",
        api_endpoint_template="https://redsky.target.com/redsky_aggregations/v1/web/pdp_client_v1?tcin={product_id}",
    ),
    RetailerPattern(
        retailer=Retailer.WALMART,
        domains=(_host(r"walmart\.com"),),
        product_id_patterns=(
            re.compile(r"/ip/[^/]+/(\d+)", re.IGNORECASE),
            re.compile(r"/(\d{8,})", re.IGNORECASE),
        ),
        structure_pattern=re.compile(r"/ip/", re.IGNORECASE),
        canonical_template="https://www.walmart.com/ip/{product_id}",
        api_endpoint_template="https://www.walmart.com/ip/{product_id}",
    ),
    RetailerPattern(
        retailer=Retailer.ETSY,
        domains=(_host(r"etsy\.com"),),
        product_id_patterns=(re.compile(r"/listing/(\d+)", re.IGNORECASE),),
        structure_pattern=re.compile(r"/listing/", re.IGNORECASE),
        canonical_template="https://www.etsy.com/listing/{product_id}",
    ),
    RetailerPattern(
        retailer=Retailer.BESTBUY,
        domains=(_host(r"bestbuy\.com"),),
        product_id_patterns=(re.compile(r"/site/[^/]*/(\d+)\.p", re.IGNORECASE),),
        structure_pattern=re.compile(r"/site/", re.IGNORECASE),
        canonical_template="https://www.bestbuy.com/site/{product_id}.p",
    ),
    RetailerPattern(
        retailer=Retailer.WAYFAIR,
        domains=(_host(r"wayfair\.com"),),
        product_id_patterns=(re.compile(r"/[^/]+-([A-Z0-9]+)\.html", re.IGNORECASE),),
        structure_pattern=re.compile(r"/[^/]+-[A-Z0-9]+\.html", re.IGNORECASE),
    ),
)

_PATTERNS_BY_RETAILER = {p.retailer: p for p in RETAILER_PATTERNS}


def _hostname(url: str) -> str | None:
    try:
        return (urlsplit(url.strip()).hostname or "").lower() or None
    except (AttributeError, ValueError):
        return None


def pattern_for(retailer: Retailer) -> RetailerPattern | None:
    return _PATTERNS_BY_RETAILER.get(retailer)


def detect_retailer(url: str) -> RetailerDetectionResult:
    hostname = _hostname(url)
    if not hostname:
        return RetailerDetectionResult.unknown()

    for pattern in RETAILER_PATTERNS:
        if not pattern.matches_domain(hostname):
            continue
        product_id = pattern.extract_product_id(url)
        structure_match = pattern.matches_structure(url)
        confidence = DOMAIN_WEIGHT
        if product_id is not None:
            confidence += PRODUCT_ID_WEIGHT
        if structure_match:
            confidence += STRUCTURE_WEIGHT
        return RetailerDetectionResult(
            retailer=pattern.retailer,
            product_id=product_id,
            confidence=max(0.0, min(1.0, confidence)),
            domain_match=True,
            structure_match=structure_match,
            product_id_match=product_id is not None,
        )

    return RetailerDetectionResult.unknown()


def extract_product_id(url: str, retailer: Retailer | None = None) -> str | None:
    """Product identifier for `url`.

    A known `retailer` skips detection and applies that retailer's patterns
    directly.
    """

    if retailer is None:
        return detect_retailer(url).product_id
    pattern = pattern_for(retailer)
    if pattern is None:
        return None
    return pattern.extract_product_id(url or "")


def is_supported_retailer(url: str) -> bool:
    result = detect_retailer(url)
    return result.retailer is not Retailer.UNKNOWN and result.confidence >= 0.5


def normalize_product_url(url: str) -> str:
    detection = detect_retailer(url)
    if not detection.product_id:
        return url
    pattern = pattern_for(detection.retailer)
    if pattern is None or not pattern.canonical_template:
        return url
    return pattern.canonical_template.format(product_id=detection.product_id)


def get_retailer_api_endpoint(retailer: Retailer, product_id: str) -> str | None:
    pattern = pattern_for(retailer)
    if pattern is None or not pattern.api_endpoint_template or not product_id:
        return None
    return pattern.api_endpoint_template.format(product_id=product_id)
