from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from . import config
from .config import RunOptions
from .config_validation import validate_run_options
from .layout import ensure_download_dir
from .logging_utils import _scraper_event
from .media_safety import ensure_virus_scanner_available
from .metadata_store import open_metadata_store
from .utils import disk_has_room, log_line


@dataclass
class PreflightResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def run_preflight_checks(
    options: Optional[RunOptions] = None, entrypoint: str = "cli"
) -> PreflightResult:
    options = options or RunOptions()
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_run_options(options, entrypoint)
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    download_dir = options.download_dir()
    min_free = config.min_free_mb()
    try:
        ensure_download_dir(download_dir)
        fs_ok = disk_has_room(min_free, download_dir)
        checks["filesystem"] = {
            "ok": fs_ok,
            "download_dir": str(download_dir),
            "min_free_mb": min_free,
        }
    except OSError as exc:
        checks["filesystem"] = {"ok": False, "download_dir": str(download_dir), "error": str(exc)}

    try:
        with open_metadata_store(config.METADATA_DB) as store:
            store.load_map()
        checks["metadata_store"] = {"ok": True, "path": str(config.METADATA_DB)}
    except Exception as exc:  # noqa: BLE001
        checks["metadata_store"] = {"ok": False, "error": str(exc)}

    try:
        ensure_virus_scanner_available(options.strict_media_safety)
        checks["virus_scanner"] = {
            "ok": True,
            "required": config.require_virus_scan(options.strict_media_safety),
            "bin": config.virus_scanner_bin(),
        }
    except ValueError as exc:
        checks["virus_scanner"] = {"ok": False, "error": str(exc)}

    overall_ok = all(check.get("ok", False) for check in checks.values())

    _scraper_event(
        "state" if overall_ok else "error",
        phase="preflight",
        context="preflight",
        ok=overall_ok,
        checks=checks,
    )

    return PreflightResult(ok=overall_ok, checks=checks)


def log_preflight(result: PreflightResult) -> None:
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[PREFLIGHT] {name}: {status} {info}")


if __name__ == "__main__":  # pragma: no cover
    outcome = run_preflight_checks()
    log_preflight(outcome)
    raise SystemExit(0 if outcome.ok else 1)
