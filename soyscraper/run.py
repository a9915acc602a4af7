"""Run loop for the soybooru scraper.

Workflow:

- Validate the run options and load the NSFW/NSFL blocklists.
- Check that the virus scanner is installed when strict scanning is required.
- Launch Chromium through Playwright and open one page for the whole run.
- Plan the post range (sequential resume or fill-gaps backfill).
- Visit every planned post in ascending order, pausing a jittered delay
  between posts. A failed post is reloaded once to reset the page, and too
  many consecutive failures abort the run.
- Close the page, the browser and the metadata store on every exit path.

The CLI is ``_cli_entrypoint``; ``main.py`` at the repository root calls it.
"""

from __future__ import annotations

import argparse
import random
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import config
from .config import RunOptions
from .config_validation import validate_run_options
from .errors import RunAbortError, ScraperError
from .layout import ensure_download_dir, get_downloaded_post_numbers, get_last_downloaded_post
from .logging_utils import _scraper_event
from .max_post import get_max_post
from .media_safety import ensure_virus_scanner_available
from .metadata_store import MetadataStore
from .page import BrowserCapability, PlaywrightBrowser, safe_close
from .planner import plan_range
from .post_processor import ProcessOptions, process_post
from .preflight import log_preflight, run_preflight_checks
from .retry_policy import RetryPolicy
from .tags import build_tag_filters
from .telemetry import RunTelemetry
from .utils import log_line, log_warning, setup_run_logger

BrowserFactory = Callable[[bool], BrowserCapability]


def random_delay_seconds(
    base_ms: int = config.DEFAULT_DELAY_BASE_MS,
    jitter: float = config.DEFAULT_DELAY_JITTER,
    rng: Optional[random.Random] = None,
) -> float:
    """Return ``base_ms`` +/- ``jitter`` (fraction of base), in seconds."""

    spread = base_ms * jitter
    delay_ms = base_ms + (rng or random).uniform(-spread, spread)
    return max(0.0, delay_ms) / 1000.0


def random_sleep(options: RunOptions, sleep: Callable[[float], None] = time.sleep) -> float:
    delay = random_delay_seconds(options.delay_base_ms, options.delay_jitter)
    log_line(f"Sleeping for {delay:.2f}s")
    sleep(delay)
    return delay


def _default_browser_factory(headless: bool) -> BrowserCapability:
    return PlaywrightBrowser.launch(headless=headless)


def _reload_after_failure(page: Any, post_url: str, timeout_ms: int) -> None:
    try:
        page.goto(post_url, timeout_ms=timeout_ms)
    except Exception as exc:  # noqa: BLE001
        log_warning(f"Failed to refresh page after error: {exc}")


def run_downloader(
    options: RunOptions,
    *,
    browser_factory: Optional[BrowserFactory] = None,
    store: Optional[MetadataStore] = None,
    session: Optional[Any] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Dict[str, Any]:
    """Download every planned post and return the run summary.

    ``store`` and ``session`` are borrowed when given; otherwise the run opens
    (and closes) its own metadata store and each fetch uses its own session.
    Raises ``ConfigError`` before any browser work and ``RunAbortError`` when
    the consecutive-failure ceiling is reached.
    """

    sleep_fn = sleep or time.sleep
    validate_run_options(options, "cli")
    tag_filters = build_tag_filters(options)
    ensure_virus_scanner_available(options.strict_media_safety)

    download_dir = ensure_download_dir(options.download_dir())
    ceiling = options.failure_ceiling()
    ceiling_label = ceiling if ceiling is not None else "inf"
    process_options = ProcessOptions(
        out_dir=download_dir,
        timeout_ms=options.timeout_ms,
        strict_media_safety=options.strict_media_safety,
        tag_filters=tag_filters,
    )
    telemetry = RunTelemetry(options.mode)
    _scraper_event(
        "state",
        phase="run_start",
        mode=options.mode,
        download_dir=str(download_dir),
        strict_media_safety=options.strict_media_safety,
        failure_ceiling=ceiling_label,
    )

    owns_store = store is None
    run_store = store if store is not None else MetadataStore(config.METADATA_DB)
    browser: Optional[BrowserCapability] = None
    page = None
    consecutive_failures = 0
    status = "completed"

    try:
        browser = (browser_factory or _default_browser_factory)(options.headless)
        page = browser.new_page()

        plan = plan_range(
            options,
            last_downloaded=None if options.fill_gaps else get_last_downloaded_post(download_dir),
            downloaded_posts=get_downloaded_post_numbers(download_dir) if options.fill_gaps else (),
            remote_max=lambda: get_max_post(browser, config.DEFAULT_MAX_POST_TIMEOUT_MS),
            retry_policy=RetryPolicy.from_ms(options.retries, options.retry_delay_ms),
            sleep=sleep_fn,
        )
        if plan.empty:
            log_line(f"No posts to download: resolved range {plan.start}..{plan.end}.")
            status = plan.reason or "empty"
        else:
            log_line(
                f"Downloading {len(plan.posts)} posts: {plan.posts[0]} -> {plan.posts[-1]}."
            )

        for index, post_number in enumerate(plan.posts):
            post_url = f"{config.POST_URL_PREFIX}{post_number}"
            try:
                result = process_post(
                    post_url, page, process_options, store=run_store, session=session
                )
            except Exception as exc:  # noqa: BLE001
                consecutive_failures += 1
                log_warning(
                    f"Post {post_number} failed ({consecutive_failures}/{ceiling_label}): {exc}"
                )
                telemetry.add(
                    post_number,
                    "failed",
                    getattr(exc, "error_code", None) or type(exc).__name__,
                    error=str(exc),
                )
                _reload_after_failure(page, post_url, options.timeout_ms)
                random_sleep(options, sleep_fn)
                if ceiling is not None and consecutive_failures >= ceiling:
                    _scraper_event(
                        "error",
                        phase="abort",
                        post_number=post_number,
                        consecutive_failures=consecutive_failures,
                    )
                    raise RunAbortError(consecutive_failures) from exc
                continue

            consecutive_failures = 0
            telemetry.add(
                post_number,
                "downloaded" if result.ok else "skipped",
                result.reason,
                saved=result.saved,
                skipped=result.skipped,
                failed=result.failed,
            )
            if index < len(plan.posts) - 1:
                random_sleep(options, sleep_fn)
    except RunAbortError:
        status = "aborted"
        raise
    except Exception:
        status = "error"
        raise
    finally:
        safe_close(page, "page")
        safe_close(browser, "browser")
        if owns_store:
            safe_close(run_store, "metadata store")
        summary = telemetry.finalize({"status": status})
        log_line(f"[RUN] Finished with status={status} summary={summary['summary']}")

    return summary


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Download posts from soybooru.com")
    parser.add_argument("--start", type=int, default=None)
    parser.add_argument("--end", type=int, default=None)
    parser.add_argument("--out-dir", type=Path, default=None)
    parser.add_argument("--max-posts", type=int, default=None)
    parser.add_argument(
        "--fill-gaps",
        action="store_true",
        help="Backfill missing post numbers between start (default 1) and the highest local post.",
    )
    parser.add_argument("--retries", type=int, default=config.DEFAULT_RETRIES)
    parser.add_argument(
        "--retry-delay",
        dest="retry_delay_ms",
        type=int,
        default=config.DEFAULT_RETRY_DELAY_MS,
        help="Base retry delay in milliseconds.",
    )
    parser.add_argument(
        "--timeout",
        dest="timeout_ms",
        type=int,
        default=config.DEFAULT_NAV_TIMEOUT_MS,
        help="Navigation timeout in milliseconds.",
    )
    parser.add_argument("--max-consecutive-failures", type=int, default=None)
    parser.add_argument("--headless", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--skip-nsfw", action="store_true")
    parser.add_argument("--nsfw-file", type=Path, default=None)
    parser.add_argument("--skip-nsfl", action="store_true")
    parser.add_argument("--nsfl-file", type=Path, default=None)
    parser.add_argument(
        "--strict-media-safety", action=argparse.BooleanOptionalAction, default=True
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Run preflight checks and exit.",
    )
    return parser


def options_from_args(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        start=args.start,
        end=args.end,
        out_dir=args.out_dir,
        max_posts=args.max_posts,
        fill_gaps=args.fill_gaps,
        retries=args.retries,
        retry_delay_ms=args.retry_delay_ms,
        timeout_ms=args.timeout_ms,
        max_consecutive_failures=args.max_consecutive_failures,
        headless=args.headless,
        skip_nsfw=args.skip_nsfw,
        skip_nsfl=args.skip_nsfl,
        nsfw_file=args.nsfw_file,
        nsfl_file=args.nsfl_file,
        strict_media_safety=args.strict_media_safety,
    )


def _cli_entrypoint(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    options = options_from_args(args)

    if args.check:
        result = run_preflight_checks(options, entrypoint="cli")
        log_preflight(result)
        return 0 if result.ok else 1

    setup_run_logger()
    try:
        run_downloader(options)
    except ScraperError as exc:
        log_line(f"[RUN] {exc}")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(_cli_entrypoint())

__all__ = [
    "random_delay_seconds",
    "random_sleep",
    "run_downloader",
    "options_from_args",
    "_cli_entrypoint",
]
