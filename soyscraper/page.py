"""Browser and page capabilities consumed by the scraper.

The core only needs a handful of page operations, captured by
``PageCapability``. ``PlaywrightBrowser`` / ``PlaywrightPage`` provide them
on top of the Playwright sync API; tests supply lightweight fakes.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from playwright.sync_api import (
    Browser,
    BrowserContext,
    Error as PWError,
    Page,
    Playwright,
    TimeoutError as PWTimeout,
    sync_playwright,
)

from . import config
from .errors import NavigationError
from .logging_utils import _scraper_event
from .utils import log_line

# Returns every matched element's attributes plus its text content.
_QUERY_ALL_JS = """
(elements) => elements.map((el) => {
    const out = { text: (el.textContent || '').trim() };
    for (const attr of Array.from(el.attributes || [])) {
        out[attr.name] = attr.value;
    }
    return out;
})
"""


class PageCapability(Protocol):
    def goto(self, url: str, *, timeout_ms: int, wait_until: str = "networkidle") -> None: ...

    def query_all(self, selector: str) -> List[Dict[str, str]]: ...

    def content(self) -> str: ...

    def evaluate(self, expression: str) -> Any: ...

    def cookies(self) -> List[Dict[str, Any]]: ...

    def close(self) -> None: ...


class BrowserCapability(Protocol):
    def new_page(self) -> PageCapability: ...

    def close(self) -> None: ...


class PlaywrightPage:
    def __init__(self, page: Page) -> None:
        self._page = page

    def goto(self, url: str, *, timeout_ms: int, wait_until: str = "networkidle") -> None:
        _scraper_event("nav", step="goto", url=url, timeout_ms=timeout_ms)
        try:
            self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PWTimeout as exc:
            raise NavigationError(url, f"timed out after {timeout_ms} ms") from exc
        except PWError as exc:
            raise NavigationError(url, str(exc)) from exc

    def query_all(self, selector: str) -> List[Dict[str, str]]:
        return list(self._page.eval_on_selector_all(selector, _QUERY_ALL_JS) or [])

    def content(self) -> str:
        return self._page.content()

    def evaluate(self, expression: str) -> Any:
        return self._page.evaluate(expression)

    def cookies(self) -> List[Dict[str, Any]]:
        return list(self._page.context.cookies())

    def close(self) -> None:
        if not self._page.is_closed():
            self._page.close()


class PlaywrightBrowser:
    """Owns the Playwright driver, a Chromium instance and one browser context."""

    def __init__(self, playwright: Playwright, browser: Browser, context: BrowserContext) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context

    @classmethod
    def launch(cls, headless: bool = True) -> "PlaywrightBrowser":
        playwright = sync_playwright().start()
        try:
            browser = playwright.chromium.launch(
                headless=headless,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
            context = browser.new_context(user_agent=config.USER_AGENT, locale="en-US")
        except Exception:
            playwright.stop()
            raise
        log_line(f"[BROWSER] Launched Chromium (headless={headless})")
        return cls(playwright, browser, context)

    def new_page(self) -> PlaywrightPage:
        return PlaywrightPage(self._context.new_page())

    def close(self) -> None:
        try:
            self._context.close()
            self._browser.close()
        finally:
            self._playwright.stop()


def safe_close(resource: Optional[Any], label: str) -> None:
    """Close ``resource`` and log, rather than raise, on failure."""

    if resource is None:
        return
    try:
        resource.close()
    except Exception as exc:  # noqa: BLE001
        log_line(f"[BROWSER][WARN] Error closing {label}: {exc}")


__all__ = [
    "PageCapability",
    "BrowserCapability",
    "PlaywrightPage",
    "PlaywrightBrowser",
    "safe_close",
]
