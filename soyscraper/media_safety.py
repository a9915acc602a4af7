"""Media safety validation: fetch a remote media file into quarantine and prove it is safe.

In strict mode every download must pass, in order:

- an ``https`` URL on a public, allow-listed host (redirect hops included);
- a supported or generic declared content-type and a declared size under the
  byte ceiling;
- a streaming byte ceiling and total-time deadline while writing;
- a recognised file signature that agrees with a specific declared type;
- an optional malware scan.

Any failure removes the quarantine file before the error propagates.
Non-strict mode only fetches and writes.
"""
from __future__ import annotations

import ipaddress
import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import unquote, urlparse

import requests

from . import config
from .error_codes import ErrorCode, classify_http_status
from .errors import ConfigError, MalwareDetectedError, MediaValidationError, ScannerError
from .logging_utils import _scraper_event
from .utils import log_line, remove_file_if_exists

MAX_SIGNATURE_BYTES = 64
CHUNK_SIZE = 64 * 1024

SUPPORTED_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/avif",
        "video/mp4",
        "video/webm",
    }
)
GENERIC_MIME_TYPES = frozenset({"application/octet-stream", "binary/octet-stream"})
_IPV6_UNIQUE_LOCAL = ipaddress.ip_network("fc00::/7")


@dataclass(frozen=True)
class MediaType:
    mime: str
    ext: str


@dataclass(frozen=True)
class MediaSafetyPolicy:
    strict: bool
    max_download_bytes: int
    download_timeout_ms: int
    allowed_hosts: tuple[str, ...]
    require_virus_scan: bool
    virus_scanner_bin: str
    virus_scan_timeout_s: int = config.DEFAULT_VIRUS_SCAN_TIMEOUT_S


@dataclass(frozen=True)
class FetchResult:
    bytes_written: int
    detected_type: Optional[MediaType]


# ---------------------------------------------------------------------------
# Hosts
# ---------------------------------------------------------------------------


def normalize_host_pattern(value: Optional[str]) -> str:
    return (value or "").strip().lower().rstrip(".")


def host_matches_pattern(hostname: str, pattern: str) -> bool:
    """Exact match, or suffix match (apex included) for a leading-dot pattern."""

    host = normalize_host_pattern(hostname)
    normalized = normalize_host_pattern(pattern)
    if not host or not normalized:
        return False
    if normalized.startswith("."):
        suffix = normalized[1:]
        return host == suffix or host.endswith(f".{suffix}")
    return host == normalized


def build_allowed_media_hosts(referer_url: Optional[str] = None) -> tuple[str, ...]:
    patterns: list[str] = []
    candidates = list(config.DEFAULT_ALLOWED_MEDIA_HOSTS) + config.allowed_media_hosts()
    if referer_url:
        candidates.append(urlparse(referer_url).hostname or "")
    for candidate in candidates:
        normalized = normalize_host_pattern(candidate)
        if normalized and normalized not in patterns:
            patterns.append(normalized)
    return tuple(patterns)


def is_private_ipv4(ip: str) -> bool:
    """Return ``True`` for reserved/private IPv4 space; malformed input counts as private."""

    parts = str(ip).split(".")
    try:
        octets = [int(part, 10) for part in parts]
    except ValueError:
        return True
    if len(octets) != 4 or any(octet < 0 or octet > 255 for octet in octets):
        return True

    a, b = octets[0], octets[1]
    if a in (0, 10, 127):
        return True
    if a == 100 and 64 <= b <= 127:
        return True
    if a == 169 and b == 254:
        return True
    if a == 172 and 16 <= b <= 31:
        return True
    if a == 192 and b == 168:
        return True
    if a == 198 and b in (18, 19):
        return True
    return a >= 224


def is_private_ipv6(ip: str) -> bool:
    try:
        address = ipaddress.IPv6Address(str(ip).strip("[]"))
    except ValueError:
        return True
    if address.ipv4_mapped is not None:
        return is_private_ipv4(str(address.ipv4_mapped))
    if address.is_unspecified or address.is_loopback:
        return True
    if address.is_link_local:
        return True
    return address in _IPV6_UNIQUE_LOCAL


def is_unsafe_hostname(hostname: Optional[str]) -> bool:
    host = normalize_host_pattern(hostname).strip("[]")
    if not host:
        return True
    if host in ("localhost", "localhost.localdomain") or host.endswith(".local"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    if address.version == 4:
        return is_private_ipv4(host)
    return is_private_ipv6(host)


def validate_media_url(url: str, policy: MediaSafetyPolicy, label: str = "media URL") -> str:
    """Return the lower-cased hostname of ``url`` or raise ``MediaValidationError``."""

    try:
        parsed = urlparse(url)
        hostname = (parsed.hostname or "").lower()
    except ValueError as exc:
        raise MediaValidationError(ErrorCode.BLOCKED_URL, f"Invalid {label}: {url}") from exc
    if not parsed.scheme or not hostname:
        raise MediaValidationError(ErrorCode.BLOCKED_URL, f"Invalid {label}: {url}")

    if not policy.strict:
        return hostname

    if parsed.scheme.lower() != "https":
        raise MediaValidationError(ErrorCode.BLOCKED_URL, f"Blocked non-HTTPS {label}: {url}")
    if is_unsafe_hostname(hostname):
        raise MediaValidationError(
            ErrorCode.BLOCKED_URL, f"Blocked unsafe host in {label}: {hostname}"
        )
    if not any(host_matches_pattern(hostname, pattern) for pattern in policy.allowed_hosts):
        raise MediaValidationError(
            ErrorCode.UNTRUSTED_HOST, f"Blocked untrusted media host: {hostname}"
        )
    return hostname


# ---------------------------------------------------------------------------
# Types and signatures
# ---------------------------------------------------------------------------


def normalize_mime(value: Optional[str]) -> str:
    if not value:
        return ""
    return str(value).split(";", 1)[0].strip().lower()


def is_generic_mime(mime: str) -> bool:
    return mime in GENERIC_MIME_TYPES


def is_supported_mime(mime: str) -> bool:
    return mime in SUPPORTED_MIME_TYPES


def detect_media_type(signature: bytes) -> Optional[MediaType]:
    """Sniff the media type from the leading bytes of a file."""

    data = bytes(signature or b"")
    if data[:3] == b"\xff\xd8\xff":
        return MediaType("image/jpeg", ".jpg")
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return MediaType("image/png", ".png")
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return MediaType("image/gif", ".gif")
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return MediaType("image/webp", ".webp")
    if len(data) >= 12 and data[4:8] == b"ftyp":
        if data[8:12] in (b"avif", b"avis"):
            return MediaType("image/avif", ".avif")
        return MediaType("video/mp4", ".mp4")
    if data[:4] == b"\x1a\x45\xdf\xa3":
        return MediaType("video/webm", ".webm")
    return None


def build_media_safety_policy(
    strict: bool,
    referer_url: Optional[str] = None,
    timeout_ms: Optional[int] = None,
) -> MediaSafetyPolicy:
    return MediaSafetyPolicy(
        strict=bool(strict),
        max_download_bytes=config.max_download_bytes(),
        download_timeout_ms=config.download_timeout_ms(timeout_ms),
        allowed_hosts=build_allowed_media_hosts(referer_url),
        require_virus_scan=config.require_virus_scan(bool(strict)),
        virus_scanner_bin=config.virus_scanner_bin(),
        virus_scan_timeout_s=config.virus_scan_timeout_seconds(),
    )


# ---------------------------------------------------------------------------
# Malware scanning
# ---------------------------------------------------------------------------


def command_exists(command: str) -> bool:
    if not command:
        return False
    if os.sep in command:
        return os.path.isfile(command) and os.access(command, os.X_OK)
    return shutil.which(command) is not None


def ensure_virus_scanner_available(strict: bool) -> None:
    """Fail fast when strict mode needs a scanner that is not installed."""

    if not strict or not config.require_virus_scan(strict):
        return
    scanner = config.virus_scanner_bin()
    if command_exists(scanner):
        return
    log_line(
        f"[CONFIG] Strict media safety requires virus scanner {scanner!r}, but it is not "
        "installed. Install it or set SOYSCRAPER_REQUIRE_VIRUS_SCAN=false."
    )
    raise ConfigError(f"Missing required virus scanner binary: {scanner}")


def scan_file_for_malware(
    path: Path, policy: MediaSafetyPolicy, display_name: Optional[str] = None
) -> None:
    if not policy.require_virus_scan:
        return

    name = display_name or path.name
    log_line(f"[SCAN] Scanning: {name}")
    try:
        completed = subprocess.run(
            [policy.virus_scanner_bin, "--no-summary", "--infected", "--stdout", str(path)],
            capture_output=True,
            text=True,
            check=False,
            timeout=policy.virus_scan_timeout_s,
        )
    except subprocess.TimeoutExpired as exc:
        log_line(f"[SCAN] Failed: {name} (timed out after {policy.virus_scan_timeout_s}s)")
        raise ScannerError(
            f"Virus scan timed out after {policy.virus_scan_timeout_s}s ({policy.virus_scanner_bin})"
        ) from exc
    except OSError as exc:
        raise ScannerError(
            f"Virus scan failed to start ({policy.virus_scanner_bin}): {exc}"
        ) from exc

    if completed.returncode == 0:
        log_line(f"[SCAN] Passed: {name}")
        return
    if completed.returncode == 1:
        log_line(f"[SCAN] Failed: {name} (virus detected)")
        raise MalwareDetectedError(f"Virus detected in downloaded file ({path.name})")

    details = (completed.stderr or completed.stdout or "").strip()
    log_line(f"[SCAN] Failed: {name} (scanner error code {completed.returncode})")
    suffix = f": {details}" if details else ""
    raise ScannerError(
        f"Virus scan failed with exit code {completed.returncode}{suffix}",
        exit_code=completed.returncode,
    )


def scan_display_name(url: str, fallback: str) -> str:
    try:
        name = unquote(os.path.basename(urlparse(url).path or ""))
    except ValueError:
        return fallback
    return name or fallback


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------


def _write_to_quarantine(
    chunks: Iterable[bytes],
    quarantine_path: Path,
    policy: MediaSafetyPolicy,
    deadline: float,
) -> tuple[int, bytes]:
    bytes_written = 0
    signature = b""
    with quarantine_path.open("xb") as handle:
        for chunk in chunks:
            if not chunk:
                continue
            bytes_written += len(chunk)
            if policy.strict and 0 < policy.max_download_bytes < bytes_written:
                raise MediaValidationError(
                    ErrorCode.TOO_LARGE,
                    f"Download exceeds max allowed size ({policy.max_download_bytes} bytes)",
                )
            if time.monotonic() > deadline:
                raise MediaValidationError(
                    ErrorCode.NETWORK,
                    f"Download timed out after {policy.download_timeout_ms} ms",
                )
            if len(signature) < MAX_SIGNATURE_BYTES:
                signature += chunk[: MAX_SIGNATURE_BYTES - len(signature)]
            handle.write(chunk)
    return bytes_written, signature


def _check_declared_headers(headers: Mapping[str, Any], policy: MediaSafetyPolicy) -> str:
    content_type = normalize_mime(headers.get("content-type"))
    if not policy.strict:
        return content_type

    if content_type and not is_supported_mime(content_type) and not is_generic_mime(content_type):
        raise MediaValidationError(
            ErrorCode.UNSUPPORTED_TYPE, f"Blocked unsupported content-type: {content_type}"
        )

    try:
        content_length = int(str(headers.get("content-length", "")).strip())
    except ValueError:
        content_length = None
    if content_length is not None and 0 < policy.max_download_bytes < content_length:
        raise MediaValidationError(
            ErrorCode.TOO_LARGE,
            f"Blocked file larger than max allowed size ({policy.max_download_bytes} bytes)",
        )
    return content_type


def _check_signature(detected: Optional[MediaType], content_type: str) -> None:
    if detected is None:
        raise MediaValidationError(
            ErrorCode.SIGNATURE_UNVERIFIED, "Unable to verify media type from file signature"
        )
    if not is_supported_mime(detected.mime):
        raise MediaValidationError(
            ErrorCode.UNSUPPORTED_TYPE, f"Blocked unsupported media signature ({detected.mime})"
        )
    if content_type and not is_generic_mime(content_type) and content_type != detected.mime:
        raise MediaValidationError(
            ErrorCode.TYPE_MISMATCH,
            f"Content-type mismatch (header={content_type}, detected={detected.mime})",
        )


def fetch_to_quarantine(
    url: str,
    quarantine_path: Path,
    headers: Mapping[str, str],
    policy: MediaSafetyPolicy,
    *,
    session: Optional[Any] = None,
) -> FetchResult:
    """Download ``url`` into ``quarantine_path`` and validate it under ``policy``.

    ``session`` is anything with a ``requests.Session``-compatible ``get``.
    """

    client = session or requests.Session()
    timeout_s = policy.download_timeout_ms / 1000.0
    deadline = time.monotonic() + timeout_s

    try:
        validate_media_url(url, policy, "media URL")
        try:
            response = client.get(
                url,
                headers=dict(headers),
                stream=True,
                timeout=timeout_s,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            raise MediaValidationError(ErrorCode.NETWORK, f"Request failed: {exc}") from exc

        with response:
            if policy.strict:
                for hop in getattr(response, "history", None) or []:
                    validate_media_url(hop.url, policy, "redirect URL")
                if response.url:
                    validate_media_url(response.url, policy, "redirect target URL")

            status = int(response.status_code)
            if status >= 400:
                raise MediaValidationError(
                    classify_http_status(status),
                    f"HTTP {status}: {getattr(response, 'reason', '') or ''}".strip(),
                    http_status=status,
                )

            content_type = _check_declared_headers(response.headers, policy)

            quarantine_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                bytes_written, signature = _write_to_quarantine(
                    response.iter_content(chunk_size=CHUNK_SIZE),
                    quarantine_path,
                    policy,
                    deadline,
                )
            except requests.RequestException as exc:
                raise MediaValidationError(ErrorCode.NETWORK, f"Stream failed: {exc}") from exc

        detected = detect_media_type(signature)
        if policy.strict:
            _check_signature(detected, content_type)

        scan_file_for_malware(
            quarantine_path, policy, scan_display_name(url, quarantine_path.name)
        )
    except Exception as exc:
        remove_file_if_exists(quarantine_path)
        _scraper_event(
            "warn",
            phase="media",
            url=url,
            error_code=getattr(exc, "error_code", ErrorCode.INTERNAL),
            error=str(exc),
        )
        raise
    finally:
        if session is None:
            client.close()

    return FetchResult(bytes_written=bytes_written, detected_type=detected)


__all__ = [
    "MediaType",
    "MediaSafetyPolicy",
    "FetchResult",
    "MAX_SIGNATURE_BYTES",
    "normalize_host_pattern",
    "host_matches_pattern",
    "build_allowed_media_hosts",
    "is_private_ipv4",
    "is_private_ipv6",
    "is_unsafe_hostname",
    "validate_media_url",
    "normalize_mime",
    "is_generic_mime",
    "is_supported_mime",
    "detect_media_type",
    "build_media_safety_policy",
    "command_exists",
    "ensure_virus_scanner_available",
    "scan_file_for_malware",
    "fetch_to_quarantine",
]
