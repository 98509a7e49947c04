from __future__ import annotations

import pytest

from wishlist_metadata.core.url_validator import (
    ValidationRules,
    extract_domain,
    is_product_url,
    is_same_resource,
    normalize_url,
    remove_tracking_params,
    sanitize_url,
    validate_url,
    validate_urls,
)


def test_amazon_affiliate_link_is_normalized() -> None:
    res = validate_url("https://www.amazon.com/dp/B08N5WRWNW?tag=aff-20&utm_source=x")
    assert res.valid
    assert res.normalized_url == "https://www.amazon.com/dp/B08N5WRWNW"
    assert res.warnings == ()


@pytest.mark.parametrize("raw", ["not a url", "", "   ", None, 42, "www.amazon.com/dp/B08N5WRWNW"])
def test_rejects_malformed_input(raw: object) -> None:
    res = validate_url(raw)
    assert not res.valid
    assert res.normalized_url is None
    assert res.error


def test_rejects_disallowed_protocol() -> None:
    res = validate_url("ftp://files.example.com/x")
    assert not res.valid
    assert "ftp" in (res.error or "")


def test_rejects_overlong_url() -> None:
    res = validate_url("https://example.com/" + "a" * 3000)
    assert not res.valid
    assert "maximum length" in (res.error or "")


def test_http_is_allowed_with_warning_unless_https_required() -> None:
    res = validate_url("http://example.com/item")
    assert res.valid
    assert any("HTTP" in w for w in res.warnings)

    strict = validate_url("http://example.com/item", ValidationRules(require_https=True))
    assert not strict.valid


def test_blocks_local_hosts_and_subdomains() -> None:
    assert not validate_url("http://localhost:3000/x").valid
    assert not validate_url("http://127.0.0.1/x").valid
    assert not validate_url("http://127.0.0.2/x").valid
    assert not validate_url("http://api.localhost/x").valid

    rules = ValidationRules(blocked_domains=("evil.com",))
    assert not validate_url("https://shop.evil.com/p", rules).valid
    assert validate_url("https://notevil.com/p", rules).valid


def test_public_ip_literal_warns() -> None:
    res = validate_url("https://93.184.216.34/item")
    assert res.valid
    assert any("IP address" in w for w in res.warnings)


def test_allowed_domains_restrict_hosts() -> None:
    rules = ValidationRules(allowed_domains=("etsy.com",))
    assert validate_url("https://www.etsy.com/listing/1", rules).valid
    assert not validate_url("https://www.amazon.com/dp/B08N5WRWNW", rules).valid


def test_validate_urls_keeps_order() -> None:
    results = validate_urls(["https://a.example/x", "nope"])
    assert [u for u, _ in results] == ["https://a.example/x", "nope"]
    assert [r.valid for _, r in results] == [True, False]


def test_remove_tracking_params_uses_prefixes() -> None:
    params = [
        ("color", "red"),
        ("utm_campaign", "x"),
        ("pd_rd_w", "abc"),
        ("REF_", "y"),
        ("size", "L"),
        ("fbclid", "z"),
    ]
    assert remove_tracking_params(params) == [("color", "red"), ("size", "L")]


def test_normalize_url_canonical_form() -> None:
    assert normalize_url("HTTPS://Shop.Example.COM:443//a//b/?x=1&utm_medium=m#frag") == "https://shop.example.com/a/b?x=1"
    assert normalize_url("http://example.com:8080/") == "http://example.com:8080/"
    assert normalize_url("https://example.com") == "https://example.com/"


@pytest.mark.parametrize(
    "url",
    [
        "https://www.amazon.com/dp/B08N5WRWNW?tag=aff-20&utm_source=x",
        "https://EXAMPLE.com//a///b//?q=a%20b&empty=",
        "http://example.com:80/path/",
        "https://shop.example.com/red scarf /",
        "https://Ex.com/ ?",
        "https://shop.example.com/caf\u00e9/mug%20cup",
    ],
)
def test_normalize_url_is_idempotent(url: str) -> None:
    once = normalize_url(url)
    assert normalize_url(once) == once


def test_normalize_url_raises_on_garbage() -> None:
    with pytest.raises(ValueError):
        normalize_url("not a url")


def test_helpers() -> None:
    assert sanitize_url("https://example.com/p?gclid=1#top") == "https://example.com/p"
    assert sanitize_url("not a url") == "not a url"
    assert is_product_url("https://www.walmart.com/ip/thing/123")
    assert not is_product_url("https://example.com/about")
    assert extract_domain("https://www.Etsy.com/listing/1") == "www.etsy.com"
    assert extract_domain("garbage") is None
    assert is_same_resource("https://example.com/p/?utm_source=a", "https://EXAMPLE.com/p")
    assert not is_same_resource("https://example.com/p", "nope")


def test_validated_url_with_spaces_is_stable() -> None:
    res = validate_url("https://shop.example.com/red scarf /")
    assert res.valid
    assert res.normalized_url == "https://shop.example.com/red%20scarf%20"
    assert normalize_url(res.normalized_url) == res.normalized_url
