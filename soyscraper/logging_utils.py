from __future__ import annotations

import logging
from typing import Any

from .utils import log_line

_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
}


def _scraper_event(label: str = "", *, phase: str | None = None, **fields: Any) -> None:
    """Emit a structured ``[SCRAPER][LABEL] k=v, ...`` log line.

    ``phase`` doubles as the label when no label is given; when both are
    present the phase travels in the payload. ``error`` and ``warn`` labels
    are logged at the matching level.
    """

    try:
        event_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        payload = ", ".join(f"{k}={v!r}" for k, v in sorted(fields.items()))
        log_line(
            f"[SCRAPER][{event_label.upper()}] {payload}",
            level=_LEVELS.get(event_label.lower(), logging.INFO),
        )
    except Exception:
        # Logging must never break a run.
        return


__all__ = ["_scraper_event"]
