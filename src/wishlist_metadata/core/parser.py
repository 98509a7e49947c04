from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from wishlist_metadata.core.models import ErrorCode, MetadataExtractionError
from wishlist_metadata.core.utils import parse_int, parse_price

logger = logging.getLogger(__name__)


NON_DOCUMENT_TYPES = (
    "image/",
    "audio/",
    "video/",
    "font/",
    "application/pdf",
    "application/zip",
    "application/gzip",
    "application/octet-stream",
)

PRODUCT_TYPES = {"product", "productgroup", "productmodel", "individualproduct"}


@dataclass(frozen=True)
class ParsedMetadata:
    title: str | None = None
    description: str | None = None
    image: str | None = None
    image_width: int | None = None
    image_height: int | None = None
    image_alt: str | None = None
    image_type: str | None = None
    site_name: str | None = None
    locale: str | None = None
    content_type: str | None = None
    canonical_url: str | None = None
    price: float | None = None
    price_raw: str | None = None
    currency: str | None = None
    product_details: dict[str, Any] | None = None


def _first(*values: str | None) -> str | None:
    for v in values:
        if v:
            return v
    return None


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    t = " ".join(str(text).split())
    return t or None


def _types(obj: dict[str, Any]) -> list[str]:
    t = obj.get("@type")
    if isinstance(t, str):
        return [t.lower()]
    if isinstance(t, list):
        return [str(x).lower() for x in t]
    return []


def _walk_jsonld(obj: Any) -> Iterator[dict[str, Any]]:
    if isinstance(obj, dict):
        yield obj
        for value in obj.values():
            yield from _walk_jsonld(value)
    elif isinstance(obj, list):
        for item in obj:
            yield from _walk_jsonld(item)


class MetadataParser:
    """Reads social preview tags, microdata and JSON-LD out of an HTML page.

    Meta tags are collected into one lookup regardless of attribute order or
    whether the page used `property` or `name`, so per-field fallbacks are a
    plain chain of lookups.
    """

    def __init__(self, *, default_currency: str = "USD") -> None:
        self._default_currency = default_currency

    def parse(
        self,
        html: str,
        url: str,
        *,
        content_type: str = "",
        product_details: bool = False,
    ) -> ParsedMetadata:
        ct = (content_type or "").lower()
        if any(ct.startswith(t) for t in NON_DOCUMENT_TYPES):
            raise MetadataExtractionError(
                ErrorCode.PARSE_FAILED,
                f"Response is not an HTML document (content_type={content_type!r})",
                url,
            )
        try:
            soup = BeautifulSoup(html or "", "lxml")
            return self._parse_soup(soup, url, product_details=product_details)
        except MetadataExtractionError:
            raise
        except Exception as e:
            raise MetadataExtractionError(ErrorCode.PARSE_FAILED, f"Failed to parse HTML: {e}", url) from e

    def _parse_soup(self, soup: BeautifulSoup, url: str, *, product_details: bool) -> ParsedMetadata:
        meta = self._meta_values(soup)
        html_title = _clean(soup.title.get_text()) if soup.title else None

        image = _first(
            meta.get("og:image"),
            meta.get("og:image:url"),
            meta.get("og:image:secure_url"),
            meta.get("twitter:image"),
            meta.get("twitter:image:src"),
        )

        price_raw = _first(
            meta.get("product:price:amount"),
            meta.get("og:price:amount"),
            self._itemprop(soup, "price"),
        )
        currency_raw = _first(
            meta.get("product:price:currency"),
            meta.get("og:price:currency"),
            self._itemprop(soup, "pricecurrency"),
        )

        details: dict[str, Any] | None = None
        if product_details:
            details = self._jsonld_product(soup)
            if details and price_raw is None and details.get("price") is not None:
                price_raw = str(details["price"])
                currency_raw = currency_raw or details.get("currency")

        price = parse_price(price_raw)
        if price is None:
            if price_raw is not None:
                logger.debug("Dropping unparsable price %r for %s", price_raw, url)
            price_raw = None
            currency = None
        else:
            currency = (currency_raw or self._default_currency).strip().upper()

        return ParsedMetadata(
            title=_first(meta.get("og:title"), meta.get("twitter:title"), html_title),
            description=_first(
                meta.get("og:description"),
                meta.get("twitter:description"),
                meta.get("description"),
            ),
            image=urljoin(url, image) if image else None,
            image_width=parse_int(meta.get("og:image:width")),
            image_height=parse_int(meta.get("og:image:height")),
            image_alt=meta.get("og:image:alt"),
            image_type=meta.get("og:image:type"),
            site_name=meta.get("og:site_name"),
            locale=meta.get("og:locale"),
            content_type=meta.get("og:type"),
            canonical_url=_first(meta.get("og:url"), self._canonical_link(soup, url), url),
            price=price,
            price_raw=price_raw,
            currency=currency,
            product_details=details or None,
        )

    @staticmethod
    def _meta_values(soup: BeautifulSoup) -> dict[str, str]:
        values: dict[str, str] = {}
        for tag in soup.find_all("meta"):
            content = _clean(tag.get("content"))
            if content is None:
                continue
            for attr in ("property", "name"):
                key = tag.get(attr)
                if isinstance(key, str) and key.strip():
                    # First occurrence wins.
                    values.setdefault(key.strip().lower(), content)
        return values

    @staticmethod
    def _canonical_link(soup: BeautifulSoup, base_url: str) -> str | None:
        for link in soup.find_all("link", href=True):
            rels = link.get("rel") or []
            if isinstance(rels, str):
                rels = rels.split()
            if "canonical" in (r.lower() for r in rels):
                href = (link.get("href") or "").strip()
                if href:
                    return urljoin(base_url, href)
        return None

    @staticmethod
    def _itemprop(soup: BeautifulSoup, name: str) -> str | None:
        def wanted(value: Any) -> bool:
            return isinstance(value, str) and name in value.lower().split()

        for tag in soup.find_all(attrs={"itemprop": wanted}):
            value = _clean(tag.get("content")) or _clean(tag.get("value")) or _clean(tag.get_text())
            if value:
                return value
        return None

    def _jsonld_product(self, soup: BeautifulSoup) -> dict[str, Any] | None:
        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed JSON-LD block")
                continue
            for obj in _walk_jsonld(data):
                if PRODUCT_TYPES.intersection(_types(obj)):
                    return self._product_fields(obj)
        return None

    @staticmethod
    def _product_fields(obj: dict[str, Any]) -> dict[str, Any]:
        brand = obj.get("brand")
        if isinstance(brand, dict):
            brand = brand.get("name")
        elif isinstance(brand, list) and brand:
            first = brand[0]
            brand = first.get("name") if isinstance(first, dict) else first

        gtin = None
        for key in ("gtin", "gtin13", "gtin12", "gtin14", "gtin8"):
            if obj.get(key):
                gtin = str(obj[key])
                break

        offers = obj.get("offers")
        if isinstance(offers, list):
            offers = offers[0] if offers else None
        price = currency = availability = None
        if isinstance(offers, dict):
            price = offers.get("price", offers.get("lowPrice"))
            currency = offers.get("priceCurrency")
            availability = offers.get("availability")
            if isinstance(availability, str):
                availability = availability.rsplit("/", 1)[-1] or None

        rating = review_count = None
        agg = obj.get("aggregateRating")
        if isinstance(agg, dict):
            rating = parse_price(str(agg.get("ratingValue"))) if agg.get("ratingValue") is not None else None
            count = agg.get("reviewCount", agg.get("ratingCount"))
            review_count = parse_int(str(count)) if count is not None else None

        fields = {
            "name": _clean(obj.get("name")) if isinstance(obj.get("name"), str) else None,
            "brand": _clean(brand) if isinstance(brand, str) else None,
            "sku": str(obj["sku"]) if obj.get("sku") else None,
            "gtin": gtin,
            "mpn": str(obj["mpn"]) if obj.get("mpn") else None,
            "availability": availability,
            "rating": rating,
            "review_count": review_count,
            "price": price,
            "currency": currency,
        }
        return {k: v for k, v in fields.items() if v is not None}
