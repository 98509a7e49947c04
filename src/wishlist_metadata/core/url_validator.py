from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import SplitResult, parse_qsl, quote, urlencode, urlsplit, urlunsplit


# Matched against parameter names by case-insensitive prefix.
TRACKING_PARAMS: tuple[str, ...] = (
    # Generic analytics
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    # Social referral
    "ref",
    "ref_",
    "referrer",
    "referral",
    "source",
    # Amazon affiliate
    "tag",
    "linkCode",
    "creativeASIN",
    "creative",
    "linkId",
    "psc",
    "pd_rd_",
    "content-id",
    "crid",
    "sprefix",
    # Other retailers
    "sxpkg",
    "ppid",
    "sid",
)

_TRACKING_PREFIXES = tuple(p.lower() for p in TRACKING_PARAMS)

DEFAULT_PORTS = {"http": 80, "https": 443}

PRODUCT_PATH_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/dp/",  # Amazon
        r"/products?/",
        r"/p/",  # Target, Walmart
        r"/ip/",  # Walmart
        r"/listing/",  # Etsy
        r"/item/",  # eBay
        r"/pd/",  # Wayfair
        r"\.html",
    )
)

_INVALID_HOST_CHARS = re.compile(r"[\s<>\"{}|\\^`]")

# RFC 3986 pchar plus "/"; existing escapes are kept as they are.
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"


@dataclass(frozen=True)
class ValidationRules:
    allowed_protocols: tuple[str, ...] = ("http", "https")
    max_url_length: int = 2048
    require_https: bool = False
    blocked_domains: tuple[str, ...] = ("localhost", "127.0.0.1", "0.0.0.0", "::1")
    allowed_domains: tuple[str, ...] = ()
    block_loopback: bool = True


DEFAULT_RULES = ValidationRules()


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    normalized_url: str | None = None
    error: str | None = None
    warnings: tuple[str, ...] = ()


def _invalid(error: str) -> ValidationResult:
    return ValidationResult(valid=False, error=error)


def _matches_domain(host: str, domain: str) -> bool:
    d = (domain or "").strip().lower().lstrip(".")
    if not d:
        return False
    return host == d or host.endswith("." + d)


def _ip_literal(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def _split(url: str) -> SplitResult:
    parsed = urlsplit(url.strip())
    if not parsed.scheme or not parsed.hostname:
        raise ValueError(f"Invalid URL: {url!r}")
    # Accessing .port validates it.
    parsed.port
    return parsed


def _netloc(parsed: SplitResult) -> str:
    host = (parsed.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    port = parsed.port
    if port is not None and port != DEFAULT_PORTS.get(parsed.scheme.lower()):
        return f"{host}:{port}"
    return host


def validate_url(raw_url: Any, rules: ValidationRules | None = None) -> ValidationResult:
    rules = rules or DEFAULT_RULES
    warnings: list[str] = []

    if not isinstance(raw_url, str) or not raw_url.strip():
        return _invalid("URL must be a non-empty string")

    if len(raw_url) > rules.max_url_length:
        return _invalid(f"URL exceeds maximum length of {rules.max_url_length} characters")

    candidate = raw_url.strip()
    try:
        parsed = urlsplit(candidate)
        parsed.port
    except ValueError:
        return _invalid("Invalid URL format")

    scheme = parsed.scheme.lower()
    if not scheme:
        return _invalid("Invalid URL format")

    allowed = [p.lower().rstrip(":") for p in rules.allowed_protocols]
    if scheme not in allowed:
        return _invalid(f"Protocol {scheme} is not allowed. Allowed protocols: {', '.join(allowed)}")

    host = (parsed.hostname or "").lower()
    if not host or _INVALID_HOST_CHARS.search(host):
        return _invalid("Invalid URL format")

    if rules.require_https and scheme != "https":
        return _invalid("HTTPS protocol is required")
    if scheme == "http":
        warnings.append("Using HTTP instead of HTTPS may be less secure")

    for blocked in rules.blocked_domains:
        if _matches_domain(host, blocked):
            return _invalid(f"Domain {blocked} is blocked")

    ip = _ip_literal(host)
    if ip is not None:
        if rules.block_loopback and (ip.is_loopback or ip.is_unspecified):
            return _invalid(f"Domain {host} is blocked")
        warnings.append("URL uses IP address instead of domain name")

    if rules.allowed_domains and not any(_matches_domain(host, d) for d in rules.allowed_domains):
        return _invalid(f"Domain not in allowed list: {', '.join(rules.allowed_domains)}")

    return ValidationResult(valid=True, normalized_url=normalize_url(candidate), warnings=tuple(warnings))


def validate_urls(urls: Iterable[Any], rules: ValidationRules | None = None) -> list[tuple[Any, ValidationResult]]:
    return [(u, validate_url(u, rules)) for u in urls]


def remove_tracking_params(params: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    return [(k, v) for k, v in params if not k.lower().startswith(_TRACKING_PREFIXES)]


def normalize_url(url: str) -> str:
    """Canonical form used for comparison and cache keys.

    Scheme and host are lowercased, default ports, credentials and fragment are
    dropped, tracking parameters are removed (the rest keep their order), path
    characters outside RFC 3986 are percent-encoded and a trailing slash on a
    non-root path is removed.
    """

    parsed = _split(url)
    path = quote(re.sub(r"//+", "/", parsed.path or "/"), safe=_PATH_SAFE)
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    query = urlencode(remove_tracking_params(parse_qsl(parsed.query, keep_blank_values=True)))
    return urlunsplit((parsed.scheme.lower(), _netloc(parsed), path, query, ""))


def sanitize_url(url: str) -> str:
    try:
        parsed = _split(url)
        stripped = urlunsplit((parsed.scheme, _netloc(parsed), parsed.path, parsed.query, ""))
        return normalize_url(stripped)
    except ValueError:
        return url


def is_product_url(url: str) -> bool:
    return any(p.search(url or "") for p in PRODUCT_PATH_PATTERNS)


def extract_domain(url: str) -> str | None:
    try:
        return urlsplit((url or "").strip()).hostname or None
    except ValueError:
        return None


def is_same_resource(url1: str, url2: str) -> bool:
    try:
        return normalize_url(url1) == normalize_url(url2)
    except ValueError:
        return False
