from __future__ import annotations

from pathlib import Path

import pytest

from wishlist_metadata.core.cache import InMemoryMetadataCache
from wishlist_metadata.core.config import ExtractionSettings


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


PRODUCT_HTML = """
<html>
  <head>
    <title>Cozy Blanket | Shop</title>
    <meta content="Cozy Wool Blanket" property="og:title">
    <meta property="og:description" content="A very warm blanket.">
    <meta property="og:image" content="/img/blanket.jpg">
    <meta property="og:image:width" content="800">
    <meta property="og:image:height" content="600">
    <meta property="og:site_name" content="Blanket Co">
    <meta property="og:type" content="product">
    <meta property="product:price:amount" content="$1,299.00">
    <meta property="product:price:currency" content="usd">
    <link rel="canonical" href="/products/cozy-wool-blanket">
  </head>
  <body><h1>Cozy Wool Blanket</h1></body>
</html>
"""

JSONLD_HTML = """
<html>
  <head>
    <title>Desk Lamp</title>
    <script type="application/ld+json">
    {"@context": "https://schema.org", "@graph": [
      {"@type": "BreadcrumbList", "itemListElement": []},
      {"@type": "Product", "name": "Desk Lamp", "sku": "LMP-1",
       "brand": {"@type": "Brand", "name": "Brightly"}, "gtin13": "0123456789012",
       "offers": {"@type": "Offer", "price": "24.50", "priceCurrency": "EUR",
                  "availability": "https://schema.org/InStock"},
       "aggregateRating": {"@type": "AggregateRating", "ratingValue": "4.6", "reviewCount": "87"}}
    ]}
    </script>
  </head>
  <body></body>
</html>
"""


@pytest.fixture()
def tmp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.sqlite3"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_cache(clock: FakeClock) -> InMemoryMetadataCache:
    return InMemoryMetadataCache(clock=clock)


@pytest.fixture()
def settings() -> ExtractionSettings:
    return ExtractionSettings(requests_per_second=100.0, timeout_seconds=2.0)


@pytest.fixture()
def product_html() -> str:
    return PRODUCT_HTML


@pytest.fixture()
def jsonld_html() -> str:
    return JSONLD_HTML
