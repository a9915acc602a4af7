from __future__ import annotations

from pathlib import Path

import pytest

from soyscraper import layout


@pytest.mark.parametrize(
    "post_number, bucket_size, expected",
    [
        (0, 1000, "000000-000999"),
        (5, 1000, "000000-000999"),
        (999, 1000, "000000-000999"),
        (1000, 1000, "001000-001999"),
        (123456, 1000, "123000-123999"),
        (1234567, 1000, "1234000-1234999"),
        (250, 100, "000200-000299"),
    ],
)
def test_bucket_label(post_number: int, bucket_size: int, expected: str) -> None:
    assert layout.bucket_label(post_number, bucket_size) == expected


def test_bucket_label_is_deterministic_across_calls() -> None:
    labels = {layout.bucket_label(4321, 1000) for _ in range(5)}
    assert labels == {"004000-004999"}


def test_resolve_post_dir_bucket_and_flat(tmp_path: Path) -> None:
    assert layout.resolve_post_dir(tmp_path, 1500, layout="bucket", bucket_size=1000) == (
        tmp_path / "001000-001999"
    )
    assert layout.resolve_post_dir(tmp_path, 1500, layout="flat") == tmp_path
    assert layout.resolve_post_dir(tmp_path, "not-a-number", layout="bucket") == tmp_path


def test_resolve_post_dir_reads_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SOYSCRAPER_IMAGE_BUCKET_SIZE", "500")
    assert layout.resolve_post_dir(tmp_path, "750") == tmp_path / "000500-000999"

    monkeypatch.setenv("SOYSCRAPER_IMAGE_LAYOUT", "flat")
    assert layout.resolve_post_dir(tmp_path, "750") == tmp_path

    monkeypatch.setenv("SOYSCRAPER_IMAGE_LAYOUT", "range")
    assert layout.resolve_post_dir(tmp_path, "750") == tmp_path / "000500-000999"


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("100_soyjak.jpg", 100),
        ("42.png", 42),
        ("0_soyjak.jpg", None),
        ("notes.txt", None),
        ("", None),
    ],
)
def test_parse_post_number(filename: str, expected) -> None:
    assert layout.parse_post_number(filename) == expected


def test_post_number_from_url() -> None:
    assert layout.post_number_from_url("https://soybooru.com/post/view/123") == "123"
    assert layout.post_number_from_url("https://soybooru.com/post/view/123/") == "123"
    assert layout.post_number_from_url("https://soybooru.com/") == ""


def test_downloaded_post_numbers_scan_root_and_buckets(tmp_path: Path) -> None:
    bucket = tmp_path / "000000-000999"
    quarantine = bucket / ".quarantine"
    quarantine.mkdir(parents=True)
    (tmp_path / "5_soyjak.png").write_bytes(b"x")
    (tmp_path / "notes.txt").write_text("hello")
    (bucket / "100_soyjak.jpg").write_bytes(b"x")
    (bucket / "101_soyjak.webm").write_bytes(b"x")
    (quarantine / "200_soyjak.1700000000000.abc.part").write_bytes(b"x")

    assert layout.get_downloaded_post_numbers(tmp_path) == {5, 100, 101}
    assert layout.get_last_downloaded_post(tmp_path) == 101


def test_last_downloaded_post_for_missing_dir(tmp_path: Path) -> None:
    assert layout.get_downloaded_post_numbers(tmp_path / "missing") == set()
    assert layout.get_last_downloaded_post(tmp_path / "missing") is None
