"""Process a single post: navigate, extract, filter, download and record.

Workflow for ``https://soybooru.com/post/view/<n>``:

- resolve the output directory for ``n`` (flat or bucketed);
- navigate (a navigation failure fails the whole post);
- extract tag data and apply the NSFW/NSFL blocklists;
- collect media URLs from the main image/video element;
- for each URL, skip when the file is already present, otherwise fetch into
  ``.quarantine`` and rename into place once validated;
- persist the post record when at least one file was saved or already present.
"""
from __future__ import annotations

import logging
import os
import random
import string
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

from . import config
from .errors import AllDownloadsFailedError, ConfigError
from .layout import ensure_download_dir, post_number_from_url, resolve_post_dir
from .logging_utils import _scraper_event
from .media_safety import MediaSafetyPolicy, build_media_safety_policy, fetch_to_quarantine
from .metadata_store import MetadataStore, PostRecord
from .page import PageCapability
from .tags import TagData, TagFilterSet, extract_tags, normalize_tag_data, should_skip_by_tag_filters
from .utils import (
    log_line,
    log_warning,
    normalize_extension,
    remove_file_if_exists,
    sanitize_filename_value,
)

# Tried in priority order; results are merged and de-duplicated.
MEDIA_SELECTORS = (
    "div.image-list > a:first-child img#main_image",
    "img#main_image",
    "video#main_image source",
    "video#main_image",
    "div.image-list > a:first-child video source",
    "div.image-list > a:first-child video",
)

REASON_FILTERED = "filtered"
REASON_NO_IMAGES = "no-images"
REASON_ALREADY_PRESENT = "already-present"


@dataclass
class ProcessOptions:
    out_dir: Optional[Path]
    timeout_ms: int = config.DEFAULT_NAV_TIMEOUT_MS
    strict_media_safety: bool = True
    tag_filters: Optional[TagFilterSet] = None
    layout: Optional[str] = None
    bucket_size: Optional[int] = None


@dataclass
class PostResult:
    ok: bool
    post_number: str = ""
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    reason: Optional[str] = None
    saved_files: List[str] = field(default_factory=list)

    @property
    def filtered(self) -> bool:
        return self.reason == REASON_FILTERED


@dataclass
class DownloadContext:
    target_dir: Path
    post_number: str
    headers: Dict[str, str]
    policy: MediaSafetyPolicy
    session: Optional[Any] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def base_filename(post_number: str, index: int = 0) -> str:
    """``<post>_soyjak`` for the first media URL, ``<post>_soyjak_<i+1>`` after it."""

    base = f"{sanitize_filename_value(post_number) or 'image'}{config.FILENAME_SUFFIX}"
    return f"{base}_{index + 1}" if index > 0 else base


def url_extension(url: str) -> str:
    try:
        name = os.path.basename(urlparse(url).path or "")
    except ValueError:
        return ".jpg"
    return normalize_extension(os.path.splitext(name)[1]) or ".jpg"


def build_filename(
    post_number: str,
    image_url: str,
    ext_override: Optional[str] = None,
    index: int = 0,
) -> str:
    """``<base><ext>``; the extension prefers the sniffed type over the URL."""

    ext = normalize_extension(ext_override) or url_extension(image_url)
    return f"{base_filename(post_number, index)}{ext}"


def find_existing_file_by_base(target_dir: Path, base: str) -> Optional[str]:
    """Return a file in ``target_dir`` named ``<base>.<anything>`` (metadata JSON excluded)."""

    try:
        entries = sorted(target_dir.iterdir())
    except OSError:
        return None
    for entry in entries:
        if not entry.is_file() or entry.name == f"{base}.json":
            continue
        if entry.name.startswith(f"{base}."):
            return entry.name
    return None


def quarantine_name(base: str) -> str:
    token = "".join(random.choices(string.ascii_lowercase + string.digits, k=10))
    return f"{base}.{int(time.time() * 1000)}.{token}.part"


def extract_image_urls(page: PageCapability, referer: str) -> List[str]:
    """Collect absolute media URLs from the main image/video element."""

    urls: List[str] = []
    for selector in MEDIA_SELECTORS:
        try:
            elements = page.query_all(selector)
        except Exception as exc:  # noqa: BLE001
            log_warning(f"Media selector {selector!r} failed: {exc}")
            continue
        for element in elements:
            src = (element.get("src") or element.get("data-src") or "").strip()
            if not src:
                continue
            resolved = urljoin(referer, src)
            if urlparse(resolved).scheme not in ("http", "https"):
                log_warning(f"Skipping invalid URL: {src}")
                continue
            if resolved not in urls:
                urls.append(resolved)
    return urls


def build_request_headers(page: Optional[PageCapability], referer: Optional[str]) -> Dict[str, str]:
    """Best-effort headers mirroring the browser session; failures are ignored."""

    headers: Dict[str, str] = {}
    if referer:
        headers["Referer"] = referer
    if page is None:
        return headers
    try:
        user_agent = page.evaluate("() => navigator.userAgent")
        if user_agent:
            headers["User-Agent"] = str(user_agent)
    except Exception as exc:  # noqa: BLE001
        log_line(f"[HEADERS] user agent unavailable: {exc}")
    try:
        cookies = page.cookies() or []
        if cookies:
            headers["Cookie"] = "; ".join(f"{c['name']}={c['value']}" for c in cookies)
    except Exception as exc:  # noqa: BLE001
        log_line(f"[HEADERS] cookies unavailable: {exc}")
    return headers


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------


def download_images(image_urls: List[str], context: DownloadContext) -> PostResult:
    """Fetch each URL in order; a failing URL never stops the remaining ones."""

    target_dir = ensure_download_dir(context.target_dir)
    quarantine_dir = ensure_download_dir(target_dir / config.QUARANTINE_DIRNAME)
    strict = context.policy.strict
    result = PostResult(ok=False, post_number=context.post_number)
    log_line(f"Found {len(image_urls)} valid image URLs.")

    for index, image_url in enumerate(image_urls):
        base = base_filename(context.post_number, index)
        existing = find_existing_file_by_base(target_dir, base) if strict else None
        if existing:
            log_line(f"Skipping existing: {existing}")
            result.skipped += 1
            result.saved_files.append(existing)
            continue

        filename = build_filename(context.post_number, image_url, index=index)
        if not strict and (target_dir / filename).exists():
            log_line(f"Skipping existing: {filename}")
            result.skipped += 1
            result.saved_files.append(filename)
            continue

        quarantine_path = quarantine_dir / quarantine_name(base)
        try:
            fetched = fetch_to_quarantine(
                image_url,
                quarantine_path,
                context.headers,
                context.policy,
                session=context.session,
            )
            if strict and fetched.detected_type is not None:
                filename = build_filename(
                    context.post_number, image_url, fetched.detected_type.ext, index
                )
            file_path = target_dir / filename

            if file_path.exists():
                remove_file_if_exists(quarantine_path)
                log_line(f"Skipping existing: {filename}")
                result.skipped += 1
                result.saved_files.append(filename)
                continue

            os.replace(quarantine_path, file_path)
        except Exception as exc:  # noqa: BLE001
            remove_file_if_exists(quarantine_path)
            result.failed += 1
            log_line(f"[ERROR] Failed to download image {image_url}: {exc}", level=logging.ERROR)
            _scraper_event(
                "error",
                phase="download",
                post_number=context.post_number,
                url=image_url,
                error_code=getattr(exc, "error_code", None),
                error=str(exc),
            )
            continue

        result.saved += 1
        result.saved_files.append(filename)
        log_line(f"Saved: {filename} ({fetched.bytes_written} bytes)")

    return result


def save_post_metadata(
    store: MetadataStore,
    post_number: str,
    tag_data: Optional[TagData],
    image_urls: List[str],
    post_url: str,
    saved_files: List[str],
) -> PostRecord:
    record = PostRecord(
        post_number=str(post_number),
        tag_data=normalize_tag_data(tag_data),
        post_url=post_url or "",
        image_urls=list(image_urls),
        files=list(saved_files),
    )
    store.upsert_record(record)
    return record


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def process_post(
    post_url: str,
    page: Optional[PageCapability],
    options: ProcessOptions,
    *,
    store: Optional[MetadataStore],
    session: Optional[Any] = None,
) -> PostResult:
    """Process one post.

    Returns a ``PostResult`` for successes and expected non-downloads
    (``filtered``, ``no-images``). Raises ``NavigationError`` when the page
    cannot be loaded and ``AllDownloadsFailedError`` when every media URL
    failed.
    """

    if not options.out_dir:
        raise ConfigError("Download directory must be provided in options.out_dir")
    if page is None:
        raise ConfigError("A browser page must be provided")
    if store is None:
        raise ConfigError("A metadata store must be provided")

    post_number = post_number_from_url(post_url)
    target_dir = resolve_post_dir(
        Path(options.out_dir),
        post_number,
        layout=options.layout,
        bucket_size=options.bucket_size,
    )
    policy = build_media_safety_policy(
        options.strict_media_safety, referer_url=post_url, timeout_ms=options.timeout_ms
    )
    ensure_download_dir(target_dir)

    log_line(f"Navigating to {post_url}")
    page.goto(post_url, timeout_ms=options.timeout_ms)

    tag_data = extract_tags(page)
    if not tag_data:
        log_warning(f"No tag data for {post_url}")

    decision = should_skip_by_tag_filters(tag_data, options.tag_filters)
    if decision is not None:
        log_line(
            f"Skipping post {post_number} due to {decision.category} tag: {decision.tag}"
        )
        return PostResult(ok=False, post_number=post_number, reason=REASON_FILTERED)

    image_urls = extract_image_urls(page, post_url)
    if not image_urls:
        log_warning(f"No image URLs found for {post_url}")
        return PostResult(ok=False, post_number=post_number, reason=REASON_NO_IMAGES)

    headers = build_request_headers(page, post_url)
    result = download_images(
        image_urls,
        DownloadContext(
            target_dir=target_dir,
            post_number=post_number,
            headers=headers,
            policy=policy,
            session=session,
        ),
    )

    if result.saved == 0 and result.skipped == 0:
        raise AllDownloadsFailedError(post_number, result.failed)

    save_post_metadata(store, post_number, tag_data, image_urls, post_url, result.saved_files)
    result.ok = result.saved > 0
    if not result.ok:
        result.reason = REASON_ALREADY_PRESENT
    _scraper_event(
        "state",
        phase="post",
        post_number=post_number,
        saved=result.saved,
        skipped=result.skipped,
        failed=result.failed,
    )
    return result


__all__ = [
    "MEDIA_SELECTORS",
    "ProcessOptions",
    "PostResult",
    "DownloadContext",
    "base_filename",
    "build_filename",
    "find_existing_file_by_base",
    "extract_image_urls",
    "build_request_headers",
    "download_images",
    "save_post_metadata",
    "process_post",
]
