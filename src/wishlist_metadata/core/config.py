from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from wishlist_metadata.core.url_validator import ValidationRules

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; WishlistBot/1.0; +https://xmaslist.com/bot)"

SEVEN_DAYS = 7 * 24 * 60 * 60

ENV_PREFIX = "WISHLIST_METADATA_"


@dataclass(frozen=True)
class ExtractionSettings:
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 10.0
    max_retries: int = 0
    backoff_base_seconds: float = 1.0
    requests_per_second: float = 5.0
    max_concurrency: int = 5
    default_currency: str = "USD"

    # Validation
    allowed_protocols: tuple[str, ...] = ("http", "https")
    max_url_length: int = 2048
    require_https: bool = False
    blocked_domains: tuple[str, ...] = ("localhost", "127.0.0.1", "0.0.0.0", "::1")
    allowed_domains: tuple[str, ...] = ()

    # Cache
    cache_enabled: bool = True
    cache_backend: str = "memory"  # "memory" or "sqlite"
    cache_ttl_seconds: int = SEVEN_DAYS
    fallback_cache_ttl_seconds: int = 60 * 60
    cache_key_prefix: str = "metadata:"
    canonical_cache_keys: bool = False

    def validation_rules(self) -> ValidationRules:
        return ValidationRules(
            allowed_protocols=tuple(self.allowed_protocols),
            max_url_length=int(self.max_url_length),
            require_https=bool(self.require_https),
            blocked_domains=tuple(self.blocked_domains),
            allowed_domains=tuple(self.allowed_domains),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractionSettings:
        known = {f.name: f for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            # JSON has no tuples.
            if isinstance(value, list):
                value = tuple(value)
            kwargs[key] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class AppPaths:
    app_dir: Path
    config_path: Path
    cache_db_path: Path
    log_path: Path

    @classmethod
    def default(cls) -> AppPaths:
        home = os.environ.get(f"{ENV_PREFIX}HOME")
        app_dir = Path(home).expanduser() if home else Path.home() / ".wishlist_metadata"
        return cls(
            app_dir=app_dir,
            config_path=app_dir / "config.json",
            cache_db_path=app_dir / "metadata_cache.sqlite3",
            log_path=app_dir / "wishlist_metadata.log",
        )


@dataclass(frozen=True)
class AppConfig:
    paths: AppPaths
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    log_level: str = "INFO"

    @classmethod
    def load(cls, paths: AppPaths | None = None) -> AppConfig:
        paths = paths or AppPaths.default()
        raw: dict[str, Any] = {}
        if paths.config_path.exists():
            try:
                raw = json.loads(paths.config_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Ignoring unreadable config %s (%s)", paths.config_path, e)
                raw = {}

        extraction_raw = dict(raw.get("extraction") or {})
        extraction_raw.update(_env_overrides())
        log_level = str(os.environ.get(f"{ENV_PREFIX}LOG_LEVEL") or raw.get("log_level") or "INFO").upper()
        return cls(
            paths=paths,
            extraction=ExtractionSettings.from_dict(extraction_raw),
            log_level=log_level,
        )

    def save(self) -> None:
        self.paths.app_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            "extraction": asdict(self.extraction),
            "log_level": self.log_level,
        }
        self.paths.config_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")


def _env_overrides() -> dict[str, Any]:
    casts: dict[str, Any] = {
        "TIMEOUT_SECONDS": ("timeout_seconds", float),
        "REQUESTS_PER_SECOND": ("requests_per_second", float),
        "MAX_CONCURRENCY": ("max_concurrency", int),
        "MAX_RETRIES": ("max_retries", int),
        "CACHE_BACKEND": ("cache_backend", str),
        "USER_AGENT": ("user_agent", str),
    }
    out: dict[str, Any] = {}
    for suffix, (name, cast) in casts.items():
        value = os.environ.get(f"{ENV_PREFIX}{suffix}")
        if value is None or not value.strip():
            continue
        try:
            out[name] = cast(value.strip())
        except ValueError:
            logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, suffix, value)
    return out
