from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class Retailer(str, Enum):
    AMAZON = "amazon"
    TARGET = "target"
    WALMART = "walmart"
    ETSY = "etsy"
    BESTBUY = "bestbuy"
    WAYFAIR = "wayfair"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return _RETAILER_NAMES[self]


_RETAILER_NAMES = {
    Retailer.AMAZON: "Amazon",
    Retailer.TARGET: "Target",
    Retailer.WALMART: "Walmart",
    Retailer.ETSY: "Etsy",
    Retailer.BESTBUY: "Best Buy",
    Retailer.WAYFAIR: "Wayfair",
    Retailer.UNKNOWN: "Unknown Retailer",
}


class ExtractionMethod(str, Enum):
    PRIMARY = "primary-parse"
    FALLBACK = "fallback"


class ErrorCode(str, Enum):
    INVALID_URL = "INVALID_URL"
    FETCH_FAILED = "FETCH_FAILED"
    PARSE_FAILED = "PARSE_FAILED"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    BLOCKED = "BLOCKED"
    NOT_FOUND = "NOT_FOUND"
    SERVER_ERROR = "SERVER_ERROR"
    CACHE_ERROR = "CACHE_ERROR"


class MetadataExtractionError(RuntimeError):
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.url = url
        self.status_code = status_code

    @property
    def category(self) -> ErrorCode:
        """Finer error kind for an HTTP failure.

        `FETCH_FAILED` keeps its status code; callers that want to tell a dead
        link from a throttled one look at this instead.
        """

        status = self.status_code
        if self.code is not ErrorCode.FETCH_FAILED or status is None:
            return self.code
        if status in {404, 410}:
            return ErrorCode.NOT_FOUND
        if status == 429:
            return ErrorCode.RATE_LIMIT
        if status in {401, 403, 451}:
            return ErrorCode.BLOCKED
        if status >= 500:
            return ErrorCode.SERVER_ERROR
        return self.code

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "url": self.url,
            "status_code": self.status_code,
        }

    def __repr__(self) -> str:
        return f"MetadataExtractionError({self.code.value}, {self.message!r}, url={self.url!r})"


@dataclass(frozen=True)
class ExtractionOptions:
    force_refresh: bool = False
    include_retailer_data: bool = False
    timeout_ms: int | None = None
    use_fallback: bool = True
    extract_product_details: bool = False

    def __post_init__(self) -> None:
        # None means the configured timeout; zero or less is never valid.
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")


@dataclass(frozen=True)
class RetailerDetectionResult:
    retailer: Retailer
    product_id: str | None
    confidence: float
    domain_match: bool
    structure_match: bool
    product_id_match: bool

    @classmethod
    def unknown(cls) -> RetailerDetectionResult:
        return cls(
            retailer=Retailer.UNKNOWN,
            product_id=None,
            confidence=0.0,
            domain_match=False,
            structure_match=False,
            product_id_match=False,
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["retailer"] = self.retailer.value
        return d


@dataclass(frozen=True)
class UrlMetadata:
    url: str
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
    retailer: Retailer = Retailer.UNKNOWN
    product_id: str | None = None
    method: ExtractionMethod = ExtractionMethod.PRIMARY
    cached: bool = False
    extracted_at: str = ""
    warnings: tuple[str, ...] = ()
    product_details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["retailer"] = self.retailer.value
        d["method"] = self.method.value
        d["warnings"] = list(self.warnings)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UrlMetadata:
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["retailer"] = Retailer(kwargs.get("retailer") or Retailer.UNKNOWN.value)
        kwargs["method"] = ExtractionMethod(kwargs.get("method") or ExtractionMethod.PRIMARY.value)
        kwargs["warnings"] = tuple(kwargs.get("warnings") or ())
        return cls(**kwargs)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    url: str
    metadata: UrlMetadata
    created_at: float
    expires_at: float
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class BatchResultEntry:
    url: Any
    success: bool
    metadata: UrlMetadata | None = None
    error: MetadataExtractionError | None = None

    @property
    def cached(self) -> bool:
        return bool(self.metadata is not None and self.metadata.cached)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "success": self.success,
            "metadata": self.metadata.to_dict() if self.metadata is not None else None,
            "error": self.error.to_dict() if self.error is not None else None,
        }


@dataclass(frozen=True)
class BatchSummary:
    total: int
    successful: int
    failed: int
    cached: int
    elapsed_ms: int = 0
    errors_by_code: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
