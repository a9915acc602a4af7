"""Exception taxonomy for the scraper.

Only genuine failures are exceptions. A post with no tags, no media or a
blocked tag is reported through ``PostResult`` instead.
"""
from __future__ import annotations

from typing import Optional

from .error_codes import ErrorCode


class ScraperError(Exception):
    """Base class for every scraper failure."""


class ConfigError(ScraperError, ValueError):
    """Blocking misconfiguration; raised before any network activity."""


class NavigationError(ScraperError):
    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"Navigation to {url} failed: {message}")
        self.url = url
        self.error_code = ErrorCode.NAVIGATION


class MaxPostLookupError(ScraperError):
    """The remote post list did not yield a maximum post id."""


class MediaValidationError(ScraperError):
    def __init__(
        self,
        error_code: str,
        message: str,
        *,
        http_status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.http_status = http_status


class MalwareDetectedError(MediaValidationError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.MALWARE_DETECTED, message)


class ScannerError(MediaValidationError):
    def __init__(self, message: str, *, exit_code: Optional[int] = None) -> None:
        super().__init__(ErrorCode.SCANNER_FAILED, message)
        self.exit_code = exit_code


class AllDownloadsFailedError(ScraperError):
    def __init__(self, post_number: str, failed: int) -> None:
        super().__init__(f"All {failed} media downloads failed for post {post_number}")
        self.post_number = post_number
        self.failed = failed


class RunAbortError(ScraperError):
    def __init__(self, consecutive_failures: int) -> None:
        super().__init__(f"Aborting after {consecutive_failures} consecutive failed posts.")
        self.consecutive_failures = consecutive_failures


__all__ = [
    "ScraperError",
    "ConfigError",
    "NavigationError",
    "MaxPostLookupError",
    "MediaValidationError",
    "MalwareDetectedError",
    "ScannerError",
    "AllDownloadsFailedError",
    "RunAbortError",
]
