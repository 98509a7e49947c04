from __future__ import annotations

import pytest

from wishlist_metadata.core.models import ErrorCode, MetadataExtractionError
from wishlist_metadata.core.parser import MetadataParser


def test_parses_open_graph_product_page(product_html: str) -> None:
    meta = MetadataParser().parse(product_html, "https://shop.example.com/products/cozy", content_type="text/html")
    assert meta.title == "Cozy Wool Blanket"
    assert meta.description == "A very warm blanket."
    assert meta.image == "https://shop.example.com/img/blanket.jpg"
    assert meta.image_width == 800 and meta.image_height == 600
    assert meta.site_name == "Blanket Co"
    assert meta.content_type == "product"
    assert meta.canonical_url == "https://shop.example.com/products/cozy-wool-blanket"
    assert meta.price == 1299.0
    assert meta.price_raw == "$1,299.00"
    assert meta.currency == "USD"
    assert meta.product_details is None


def test_falls_back_to_twitter_and_title_tags() -> None:
    html = """
    <html><head>
      <title>  Plain   Title </title>
      <meta name="twitter:description" content="From twitter">
      <meta name="description" content="Plain description">
      <meta name="twitter:image:src" content="https://cdn.example.com/t.png">
    </head></html>
    """
    meta = MetadataParser().parse(html, "https://example.com/item")
    assert meta.title == "Plain Title"
    assert meta.description == "From twitter"
    assert meta.image == "https://cdn.example.com/t.png"
    assert meta.canonical_url == "https://example.com/item"
    assert meta.price is None and meta.currency is None


def test_first_meta_occurrence_wins() -> None:
    html = '<meta property="og:title" content="First"><meta property="og:title" content="Second">'
    assert MetadataParser().parse(html, "https://example.com/").title == "First"


def test_microdata_price_and_default_currency() -> None:
    html = '<div itemscope><span itemprop="price" content="19.99">$19.99</span></div>'
    meta = MetadataParser(default_currency="CAD").parse(html, "https://example.com/p")
    assert meta.price == 19.99
    assert meta.currency == "CAD"


def test_unparsable_price_is_dropped() -> None:
    html = '<meta property="og:price:amount" content="call us"><meta property="og:price:currency" content="EUR">'
    meta = MetadataParser().parse(html, "https://example.com/p")
    assert meta.price is None
    assert meta.price_raw is None
    assert meta.currency is None


def test_jsonld_product_details(jsonld_html: str) -> None:
    meta = MetadataParser().parse(jsonld_html, "https://example.com/lamp", product_details=True)
    assert meta.title == "Desk Lamp"
    assert meta.product_details == {
        "name": "Desk Lamp",
        "brand": "Brightly",
        "sku": "LMP-1",
        "gtin": "0123456789012",
        "availability": "InStock",
        "rating": 4.6,
        "review_count": 87,
        "price": "24.50",
        "currency": "EUR",
    }
    # No price tags on the page, so the structured offer supplies it.
    assert meta.price == 24.5
    assert meta.currency == "EUR"


def test_jsonld_ignored_unless_requested(jsonld_html: str) -> None:
    meta = MetadataParser().parse(jsonld_html, "https://example.com/lamp")
    assert meta.product_details is None
    assert meta.price is None


def test_meta_price_beats_jsonld_price(jsonld_html: str) -> None:
    html = jsonld_html.replace("<title>", '<meta property="product:price:amount" content="20.00"><title>')
    meta = MetadataParser().parse(html, "https://example.com/lamp", product_details=True)
    assert meta.price == 20.0
    assert meta.currency == "USD"


def test_malformed_jsonld_is_skipped() -> None:
    html = '<script type="application/ld+json">{not json</script><title>T</title>'
    meta = MetadataParser().parse(html, "https://example.com/x", product_details=True)
    assert meta.title == "T"
    assert meta.product_details is None


@pytest.mark.parametrize("content_type", ["image/png", "application/pdf", "application/octet-stream"])
def test_non_document_content_is_a_parse_failure(content_type: str) -> None:
    with pytest.raises(MetadataExtractionError) as ei:
        MetadataParser().parse("\x89PNG", "https://example.com/a.png", content_type=content_type)
    assert ei.value.code is ErrorCode.PARSE_FAILED
    assert ei.value.url == "https://example.com/a.png"


def test_price_with_trailing_text_keeps_leading_number() -> None:
    html = '<meta property="product:price:amount" content="12.50 incl. VAT."><meta property="product:price:currency" content="eur">'
    meta = MetadataParser().parse(html, "https://example.com/p")
    assert meta.price == 12.5
    assert meta.price_raw == "12.50 incl. VAT."
    assert meta.currency == "EUR"
