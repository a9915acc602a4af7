"""Run summary collection."""

from __future__ import annotations

import time
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .utils import log_warning, save_json_file


def _ts() -> str:
    return time.strftime("%Y%m%d_%H%M%S")


class RunTelemetry:
    """Collect per-post outcomes for the end-of-run summary."""

    def __init__(self, mode: str, summary_path: Optional[Path] = None) -> None:
        self.run_id = f"{_ts()}_{uuid.uuid4().hex[:8]}"
        self.mode = mode
        self.summary_path = Path(summary_path or config.SUMMARY_FILE)
        self.started_at = time.time()
        self.entries: List[Dict[str, Any]] = []
        self.summary: Dict[str, Any] = defaultdict(int)

    def add(self, post_number: int, status: str, reason: Optional[str] = None, **meta: Any) -> None:
        self.entries.append(
            {
                "post_number": post_number,
                "status": status,
                "reason": reason,
                **meta,
            }
        )
        self.summary[f"count_{status}"] += 1
        for key in ("saved", "skipped", "failed"):
            if isinstance(meta.get(key), int):
                self.summary[f"files_{key}"] += meta[key]

    def finalize(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {
            "run_id": self.run_id,
            "mode": self.mode,
            "started_at": self.started_at,
            "ended_at": time.time(),
            "summary": dict(self.summary),
            "entries": self.entries,
            **(extra or {}),
        }
        try:
            save_json_file(self.summary_path, payload)
        except OSError as exc:
            log_warning(f"Could not write run summary to {self.summary_path}: {exc}")
        return payload


__all__ = ["RunTelemetry"]
