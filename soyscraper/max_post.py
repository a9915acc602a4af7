from __future__ import annotations

import re
from typing import Optional

from . import config
from .errors import MaxPostLookupError
from .logging_utils import _scraper_event
from .page import BrowserCapability, safe_close
from .utils import log_line

_POST_VIEW_RE = re.compile(r"/post/view/(\d+)")


def max_post_from_hrefs(hrefs) -> Optional[int]:
    numbers = []
    for href in hrefs:
        match = _POST_VIEW_RE.search(href or "")
        if match:
            numbers.append(int(match.group(1)))
    return max(numbers) if numbers else None


def get_max_post(
    browser: BrowserCapability,
    timeout_ms: int = config.DEFAULT_MAX_POST_TIMEOUT_MS,
) -> int:
    """Return the newest post id listed on the first page of the post list."""

    page = browser.new_page()
    try:
        page.goto(config.POST_LIST_URL, timeout_ms=timeout_ms)
        thumbs = page.query_all("a.thumb")
        highest = max_post_from_hrefs(element.get("href") for element in thumbs)
        if highest is None:
            raise MaxPostLookupError(f"No post links found on {config.POST_LIST_URL}")
    except MaxPostLookupError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise MaxPostLookupError(f"Max post lookup failed: {exc}") from exc
    finally:
        safe_close(page, "max post page")

    log_line(f"Max post number: {highest}")
    _scraper_event("state", phase="max_post", max_post=highest)
    return highest


__all__ = ["get_max_post", "max_post_from_hrefs"]
