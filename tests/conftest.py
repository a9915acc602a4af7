from __future__ import annotations

from pathlib import Path

import pytest

from soyscraper import config, utils

_ENV_VARS = (
    "SOYSCRAPER_MAX_DOWNLOAD_BYTES",
    "SOYSCRAPER_DOWNLOAD_TIMEOUT_MS",
    "SOYSCRAPER_ALLOWED_MEDIA_HOSTS",
    "SOYSCRAPER_VIRUS_SCANNER_BIN",
    "SOYSCRAPER_VIRUS_SCAN_TIMEOUT_S",
    "SOYSCRAPER_IMAGE_BUCKET_SIZE",
    "SOYSCRAPER_MIN_FREE_MB",
)


@pytest.fixture(autouse=True)
def _isolated_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every on-disk location at ``tmp_path`` and reset scraper env vars."""

    data_dir = tmp_path / "data"
    monkeypatch.setattr(config, "DATA_DIR", data_dir)
    monkeypatch.setattr(config, "DOWNLOAD_DIR", data_dir / "downloadedImages")
    monkeypatch.setattr(config, "METADATA_DB", data_dir / "metadata.sqlite")
    monkeypatch.setattr(config, "LOG_DIR", data_dir / "logs")
    monkeypatch.setattr(config, "LOG_FILE", data_dir / "logs" / "latest.log")
    monkeypatch.setattr(config, "SUMMARY_FILE", data_dir / "last_summary.json")

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SOYSCRAPER_REQUIRE_VIRUS_SCAN", "false")
    monkeypatch.setenv("SOYSCRAPER_IMAGE_LAYOUT", "bucket")

    utils._configure_logger(data_dir / "logs" / "test.log")
    return data_dir
