from __future__ import annotations

import pytest

from wishlist_metadata.core.fetcher import build_limiter
from wishlist_metadata.core.models import ErrorCode, ExtractionOptions, MetadataExtractionError, Retailer, UrlMetadata
from wishlist_metadata.core.utils import parse_price, title_from_url_path


@pytest.mark.parametrize(
    "url,title",
    [
        ("https://shop.example.com/gifts/cozy-wool_blanket.html", "Cozy Wool Blanket"),
        ("https://shop.example.com/gifts/cozy-wool-blanket/", "Cozy Wool Blanket"),
        ("https://shop.example.com/item.php?id=3", "Item"),
        ("https://shop.example.com/caf%C3%A9-mug", "Café Mug"),
        ("https://shop.example.com/", None),
    ],
)
def test_title_from_url_path(url: str, title: str | None) -> None:
    assert title_from_url_path(url) == title


@pytest.mark.parametrize(
    "raw,value",
    [
        ("$1,299.00", 1299.0),
        ("19.99 USD", 19.99),
        ("12.50 incl. VAT.", 12.5),
        ("1.2.3", 1.2),
        ("5.", 5.0),
        ("0", 0.0),
        ("free", None),
        (".", None),
        (None, None),
    ],
)
def test_parse_price(raw: str | None, value: float | None) -> None:
    assert parse_price(raw) == value


@pytest.mark.parametrize(
    "status,category",
    [(404, ErrorCode.NOT_FOUND), (410, ErrorCode.NOT_FOUND), (429, ErrorCode.RATE_LIMIT), (403, ErrorCode.BLOCKED), (502, ErrorCode.SERVER_ERROR), (418, ErrorCode.FETCH_FAILED)],
)
def test_http_error_categories(status: int, category: ErrorCode) -> None:
    err = MetadataExtractionError(ErrorCode.FETCH_FAILED, f"HTTP {status}", "https://example.com/", status_code=status)
    assert err.category is category
    assert err.to_dict() == {
        "code": "FETCH_FAILED",
        "message": f"HTTP {status}",
        "url": "https://example.com/",
        "status_code": status,
    }


def test_non_http_errors_keep_their_code() -> None:
    assert MetadataExtractionError(ErrorCode.TIMEOUT, "slow").category is ErrorCode.TIMEOUT


def test_metadata_dict_ignores_unknown_keys() -> None:
    meta = UrlMetadata.from_dict({"url": "https://example.com/", "retailer": "etsy", "extra": 1, "warnings": ["w"]})
    assert meta.retailer is Retailer.ETSY
    assert meta.warnings == ("w",)
    assert meta.to_dict()["retailer"] == "etsy"


@pytest.mark.parametrize("timeout_ms", [0, -250])
def test_options_reject_non_positive_timeout(timeout_ms: int) -> None:
    with pytest.raises(ValueError):
        ExtractionOptions(timeout_ms=timeout_ms)
    assert ExtractionOptions(timeout_ms=1).timeout_ms == 1
    assert ExtractionOptions().timeout_ms is None


@pytest.mark.parametrize("rps,max_rate,period", [(2.0, 2.0, 1.0), (0.5, 1.0, 2.0), (0.0, 1.0, 10.0)])
def test_build_limiter_widens_window_for_slow_rates(rps: float, max_rate: float, period: float) -> None:
    limiter = build_limiter(rps)
    assert limiter.max_rate == max_rate
    assert limiter.time_period == pytest.approx(period)
