from __future__ import annotations

import json
from pathlib import Path

from soyscraper.telemetry import RunTelemetry


def test_finalize_writes_summary(tmp_path: Path) -> None:
    path = tmp_path / "summary.json"
    telemetry = RunTelemetry("sequential", summary_path=path)
    telemetry.add(1, "downloaded", None, saved=1, skipped=0, failed=0)
    telemetry.add(2, "skipped", "filtered")
    telemetry.add(3, "failed", "navigation_failed", error="timeout")

    payload = telemetry.finalize({"status": "completed"})

    assert payload["summary"] == {
        "count_downloaded": 1,
        "count_skipped": 1,
        "count_failed": 1,
        "files_saved": 1,
        "files_skipped": 0,
        "files_failed": 0,
    }
    assert payload["status"] == "completed"
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["mode"] == "sequential"
    assert [entry["post_number"] for entry in on_disk["entries"]] == [1, 2, 3]
    assert on_disk["entries"][2]["error"] == "timeout"
