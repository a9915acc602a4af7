from __future__ import annotations

"""Error code taxonomy for media and post failures.

Codes travel on ``MediaValidationError`` and in structured log events so a
failed URL can be explained after the fact. Keep them stable.
"""


class ErrorCode:
    NETWORK = "network_error"
    HTTP_4XX = "http_4xx"
    HTTP_5XX = "http_5xx"
    BLOCKED_URL = "blocked_url"
    UNTRUSTED_HOST = "untrusted_host"
    UNSUPPORTED_TYPE = "unsupported_type"
    TOO_LARGE = "too_large"
    SIGNATURE_UNVERIFIED = "signature_unverified"
    TYPE_MISMATCH = "type_mismatch"
    MALWARE_DETECTED = "malware_detected"
    SCANNER_FAILED = "scanner_failed"
    NAVIGATION = "navigation_failed"
    INTERNAL = "internal_error"


def classify_http_status(status: int | None) -> str:
    if status is None:
        return ErrorCode.INTERNAL
    if 400 <= status < 500:
        return ErrorCode.HTTP_4XX
    if status >= 500:
        return ErrorCode.HTTP_5XX
    return ErrorCode.INTERNAL


__all__ = ["ErrorCode", "classify_http_status"]
