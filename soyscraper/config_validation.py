from __future__ import annotations

from typing import Literal, Optional

from .config import RunOptions
from .errors import ConfigError
from .logging_utils import _scraper_event
from .utils import log_line

Entrypoint = Literal["cli", "ui", "tests"]


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, error: str, mode: Optional[str]
) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="run_options",
        error=error,
        entrypoint=entrypoint,
        mode=mode,
    )
    mode_fragment = f", mode={mode}" if mode else ""
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint}{mode_fragment})")
    raise ConfigError(message)


def validate_run_options(options: RunOptions, entrypoint: Entrypoint = "cli") -> None:
    """Validate ``options`` once at the run-loop boundary.

    Raises ``ConfigError`` for blocking problems. Enabling a tag filter
    without a blocklist file is logged but allowed.
    """

    mode = options.mode

    for field_name in ("start", "end", "max_posts"):
        value = getattr(options, field_name)
        if value is not None and value <= 0:
            _raise_config_error(
                f"{field_name} must be a positive integer.",
                entrypoint=entrypoint,
                error=f"{field_name}_invalid",
                mode=mode,
            )

    if options.start is not None and options.end is not None and options.end < options.start:
        _scraper_event(
            "state",
            phase="config",
            context="run_options",
            kind="empty_range",
            start=options.start,
            end=options.end,
            entrypoint=entrypoint,
        )

    if options.retries < 0:
        _raise_config_error(
            "retries must be non-negative.",
            entrypoint=entrypoint,
            error="retries_invalid",
            mode=mode,
        )

    if options.max_consecutive_failures is not None and options.max_consecutive_failures < 1:
        _raise_config_error(
            "max_consecutive_failures must be at least 1.",
            entrypoint=entrypoint,
            error="max_consecutive_failures_invalid",
            mode=mode,
        )

    for field_name in ("timeout_ms", "retry_delay_ms", "delay_base_ms"):
        value = getattr(options, field_name)
        minimum = 1 if field_name == "timeout_ms" else 0
        if value < minimum:
            _raise_config_error(
                f"{field_name} must be {'greater than zero' if minimum else 'non-negative'}.",
                entrypoint=entrypoint,
                error="invalid_timeout" if field_name == "timeout_ms" else "invalid_delay",
                mode=mode,
            )

    if not 0 <= options.delay_jitter < 1:
        _raise_config_error(
            "delay_jitter must be within [0, 1).",
            entrypoint=entrypoint,
            error="delay_jitter_invalid",
            mode=mode,
        )

    for flag, path_field in (("skip_nsfw", "nsfw_file"), ("skip_nsfl", "nsfl_file")):
        if getattr(options, flag) and not getattr(options, path_field):
            _scraper_event(
                "warn",
                phase="config",
                context="run_options",
                kind="missing_blocklist_file",
                field=path_field,
                entrypoint=entrypoint,
            )


__all__ = ["validate_run_options", "Entrypoint"]
