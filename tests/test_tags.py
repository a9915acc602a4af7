from __future__ import annotations

from pathlib import Path

import pytest

from soyscraper import tags
from soyscraper.config import RunOptions
from tests.fakes import post_html

LEGACY_HTML = """
<html><body>
<div id="Variantsleft"><div>Variants</div><div><table><tbody>
  <tr><td>1</td><td><a href="#">classic</a></td></tr>
</tbody></table></div></div>
<div id="Tagsleft"><div>Tags</div><div><table><tbody>
  <tr><td><a class="tag_name">legacy_tag</a></td></tr>
  <tr><td><a class="tag_name">legacy_tag</a></td></tr>
</tbody></table></div></div>
</body></html>
"""


class _BrokenPage:
    def content(self) -> str:
        raise RuntimeError("page crashed")


def test_extract_tags_from_labeled_sections() -> None:
    data = tags.extract_tags_from_html(post_html())

    assert data is not None
    assert data["variants"] == ["classic"]
    assert data["tags"] == ["wojak", "Smug_Face"]
    assert data["postedAt"] == "2024-01-02T03:04:05+00:00"
    assert data["size"] == "800x600"
    assert data["filesize"] == "120KB"
    assert data["type"] == "jpg"
    assert data["rating"] == "Safe"
    assert "favorited_by" not in data
    assert "statistics" not in data


def test_extract_tags_deduplicates_in_first_seen_order() -> None:
    data = tags.extract_tags_from_html(post_html(tags=("b", "a", "b", "c", "a")))
    assert data["tags"] == ["b", "a", "c"]


def test_extract_tags_falls_back_to_legacy_selectors() -> None:
    data = tags.extract_tags_from_html(LEGACY_HTML)
    assert data == {"variants": ["classic"], "tags": ["legacy_tag"]}


def test_extract_tags_returns_none_without_tags() -> None:
    assert tags.extract_tags_from_html("<html><body><p>nothing</p></body></html>") is None


def test_extract_tags_never_raises() -> None:
    assert tags.extract_tags(_BrokenPage()) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Variantsleft", "variants"),
        ("Variant", "variants"),
        ("Tagsleft", "tags"),
        ("Subvariantsleft", "subvariants"),
        ("Art Style", "art_style"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_section_key(raw, expected: str) -> None:
    assert tags.normalize_section_key(raw) == expected


def test_normalize_tag_data_keeps_lists_and_known_scalars() -> None:
    normalized = tags.normalize_tag_data(
        {"tags": ["x", "x", " y "], "rating": " Safe ", "unknown": "dropped", "artists": ["z"]}
    )
    assert normalized == {"tags": ["x", "y"], "rating": "Safe", "artists": ["z"], "variants": []}
    assert tags.normalize_tag_data(None) == {"variants": [], "tags": []}


def test_normalize_tag() -> None:
    assert tags.normalize_tag("  Smug__Face  ") == "smug face"
    assert tags.normalize_tag(None) == ""


def test_load_tag_blocklist(tmp_path: Path) -> None:
    blocklist = tmp_path / "nsfw.txt"
    blocklist.write_text("# comment\n// also a comment\n\nSmug_Face\n  GORE   stuff \n", encoding="utf-8")

    assert tags.load_tag_blocklist(blocklist) == {"smug face", "gore stuff"}


def test_load_tag_blocklist_missing_file(tmp_path: Path) -> None:
    assert tags.load_tag_blocklist(tmp_path / "missing.txt") == set()
    assert tags.load_tag_blocklist(None) == set()


def test_build_tag_filters_only_loads_enabled_lists(tmp_path: Path) -> None:
    nsfw = tmp_path / "nsfw.txt"
    nsfw.write_text("wojak\n", encoding="utf-8")
    nsfl = tmp_path / "nsfl.txt"
    nsfl.write_text("gore\n", encoding="utf-8")

    filters = tags.build_tag_filters(
        RunOptions(skip_nsfw=True, nsfw_file=nsfw, skip_nsfl=False, nsfl_file=nsfl)
    )

    assert filters.active
    assert filters.nsfw_blocklist == {"wojak"}
    assert filters.nsfl_blocklist == set()


def test_should_skip_by_tag_filters() -> None:
    filters = tags.TagFilterSet(
        skip_nsfw=True,
        skip_nsfl=True,
        nsfw_blocklist={"lewd"},
        nsfl_blocklist={"smug face"},
    )

    decision = tags.should_skip_by_tag_filters({"tags": ["wojak", "Smug_Face"]}, filters)
    assert decision == tags.FilterDecision(category="NSFL", tag="Smug_Face")

    assert tags.should_skip_by_tag_filters({"tags": ["wojak"]}, filters) is None
    assert tags.should_skip_by_tag_filters(None, filters) is None
    assert tags.should_skip_by_tag_filters({"tags": ["lewd"]}, tags.TagFilterSet()) is None
