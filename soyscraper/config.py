"""Configuration constants and run options for the soybooru scraper."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DATA_DIR: Path = Path(os.getenv("SOYSCRAPER_DATA_DIR", "data")).resolve()
DOWNLOAD_DIR: Path = Path(
    os.getenv("SOYSCRAPER_DOWNLOAD_DIR", str(DATA_DIR / "downloadedImages"))
).resolve()
METADATA_DB: Path = Path(
    os.getenv("SOYSCRAPER_METADATA_DB", str(DATA_DIR / "metadata.sqlite"))
).resolve()
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
SUMMARY_FILE: Path = DATA_DIR / "last_summary.json"

SITE_BASE_URL: str = "https://soybooru.com"
POST_URL_PREFIX: str = f"{SITE_BASE_URL}/post/view/"
POST_LIST_URL: str = f"{SITE_BASE_URL}/post/list"

DEFAULT_ALLOWED_MEDIA_HOSTS: tuple[str, ...] = ("soybooru.com", ".soybooru.com")
DEFAULT_BUCKET_SIZE: int = 1000
DEFAULT_MAX_DOWNLOAD_BYTES: int = 100 * 1024 * 1024
DEFAULT_NAV_TIMEOUT_MS: int = 30_000
DEFAULT_MAX_POST_TIMEOUT_MS: int = 15_000
DEFAULT_MAX_CONSECUTIVE_FAILURES: int = 10
DEFAULT_RETRIES: int = 10
DEFAULT_RETRY_DELAY_MS: int = 2000
DEFAULT_DELAY_BASE_MS: int = 2000
DEFAULT_DELAY_JITTER: float = 0.25
DEFAULT_VIRUS_SCANNER_BIN: str = "clamscan"
DEFAULT_VIRUS_SCAN_TIMEOUT_S: int = 300

QUARANTINE_DIRNAME: str = ".quarantine"
FILENAME_SUFFIX: str = "_soyjak"

USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a boolean-ish string, returning ``default`` when unrecognised."""

    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def parse_positive_int(value: Optional[str], default: int) -> int:
    try:
        parsed = int(str(value or "").strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def parse_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip().lower() for part in str(value).split(",") if part.strip()]


# Call-time readers: the environment may change between runs (and in tests).


def max_download_bytes() -> int:
    return parse_positive_int(
        os.getenv("SOYSCRAPER_MAX_DOWNLOAD_BYTES"), DEFAULT_MAX_DOWNLOAD_BYTES
    )


def download_timeout_ms(fallback: Optional[int] = None) -> int:
    default = fallback if fallback and fallback > 0 else DEFAULT_NAV_TIMEOUT_MS
    return parse_positive_int(os.getenv("SOYSCRAPER_DOWNLOAD_TIMEOUT_MS"), default)


def allowed_media_hosts() -> list[str]:
    """Return operator-configured extra media hosts."""

    return parse_csv(os.getenv("SOYSCRAPER_ALLOWED_MEDIA_HOSTS"))


def require_virus_scan(strict: bool) -> bool:
    """Scanning defaults to on in strict mode and off otherwise."""

    return parse_bool(os.getenv("SOYSCRAPER_REQUIRE_VIRUS_SCAN"), strict)


def virus_scanner_bin() -> str:
    value = os.getenv("SOYSCRAPER_VIRUS_SCANNER_BIN", DEFAULT_VIRUS_SCANNER_BIN).strip()
    return value or DEFAULT_VIRUS_SCANNER_BIN


def virus_scan_timeout_seconds() -> int:
    return parse_positive_int(
        os.getenv("SOYSCRAPER_VIRUS_SCAN_TIMEOUT_S"), DEFAULT_VIRUS_SCAN_TIMEOUT_S
    )


def image_layout() -> str:
    """Return ``flat`` or ``bucket``; ``range`` and unknown values mean bucket."""

    raw = os.getenv("SOYSCRAPER_IMAGE_LAYOUT", "bucket").strip().lower()
    return "flat" if raw == "flat" else "bucket"


def bucket_size() -> int:
    return parse_positive_int(os.getenv("SOYSCRAPER_IMAGE_BUCKET_SIZE"), DEFAULT_BUCKET_SIZE)


def min_free_mb() -> int:
    try:
        return int(os.getenv("SOYSCRAPER_MIN_FREE_MB", "200"))
    except ValueError:
        return 200


@dataclass
class RunOptions:
    """Every option recognised by the run loop, with its default."""

    start: Optional[int] = None
    end: Optional[int] = None
    out_dir: Optional[Path] = None
    max_posts: Optional[int] = None
    fill_gaps: bool = False
    retries: int = DEFAULT_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    timeout_ms: int = DEFAULT_NAV_TIMEOUT_MS
    # None means 10 in sequential mode and unbounded in fill-gaps mode.
    max_consecutive_failures: Optional[int] = None
    headless: bool = True
    skip_nsfw: bool = False
    skip_nsfl: bool = False
    nsfw_file: Optional[Path] = None
    nsfl_file: Optional[Path] = None
    strict_media_safety: bool = True
    delay_base_ms: int = DEFAULT_DELAY_BASE_MS
    delay_jitter: float = DEFAULT_DELAY_JITTER

    def download_dir(self) -> Path:
        return Path(self.out_dir or DOWNLOAD_DIR).resolve()

    def failure_ceiling(self) -> Optional[int]:
        """Return the consecutive-failure ceiling, ``None`` meaning unbounded."""

        if self.max_consecutive_failures is not None:
            return self.max_consecutive_failures
        if self.fill_gaps:
            return None
        return DEFAULT_MAX_CONSECUTIVE_FAILURES

    @property
    def mode(self) -> str:
        return "fill_gaps" if self.fill_gaps else "sequential"


__all__ = [
    "RunOptions",
    "parse_bool",
    "parse_positive_int",
    "parse_csv",
    "max_download_bytes",
    "download_timeout_ms",
    "allowed_media_hosts",
    "require_virus_scan",
    "virus_scanner_bin",
    "image_layout",
    "bucket_size",
    "min_free_mb",
]
