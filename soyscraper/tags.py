"""Tag extraction from rendered post pages and tag-based skip filters."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup

from .logging_utils import _scraper_event
from .page import PageCapability
from .utils import log_warning

TagData = Dict[str, Any]

SCALAR_KEYS = ("postedAt", "size", "filesize", "type", "rating")

IGNORED_SECTION_IDS = frozenset(
    {
        "post_controlsleft",
        "report_postleft",
        "navigationleft",
        "advertisementleft",
        "statisticsleft",
    }
)

SECTION_KEY_ALIASES = {
    "variant": "variants",
    "variants": "variants",
    "subvariant": "subvariants",
    "subvariants": "subvariants",
    "tag": "tags",
    "tags": "tags",
    "flag": "flags",
    "flags": "flags",
    "meta": "meta",
    "metas": "meta",
}

LEGACY_VARIANT_SELECTOR = (
    "#Variantleft > div:nth-of-type(2) > table:nth-of-type(1) > tbody tr td:nth-of-type(2) a, "
    "#Variantsleft > div:nth-of-type(2) > table:nth-of-type(1) > tbody tr td:nth-of-type(2) a"
)
LEGACY_TAG_SELECTOR = "#Tagsleft > div:nth-of-type(2) > table:nth-of-type(1) > tbody .tag_name"

_STAT_LABELS = ("Posted", "Size", "Filesize", "Type", "Rating", "Source", "Id")


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def normalize_tag(value: Any) -> str:
    text = str(value if value is not None else "").lower().replace("_", " ")
    return re.sub(r"\s+", " ", text).strip()


def normalize_section_key(raw: Optional[str]) -> str:
    """Map a section id or heading (``Variantsleft``, ``Tags``) to a record key."""

    if not raw:
        return ""
    cleaned = re.sub(r"left$", "", str(raw), flags=re.IGNORECASE)
    cleaned = cleaned.replace("_", " ").strip().lower()
    if not cleaned:
        return ""
    return SECTION_KEY_ALIASES.get(cleaned, re.sub(r"\s+", "_", cleaned))


def _dedupe(values: Iterable[Any]) -> List[str]:
    seen: List[str] = []
    for value in values:
        text = str(value).strip()
        if text and text not in seen:
            seen.append(text)
    return seen


def normalize_tag_data(tag_data: Optional[TagData]) -> TagData:
    """Keep list fields (deduplicated, first-seen order) and known scalar fields."""

    normalized: TagData = {}
    for key, value in (tag_data or {}).items():
        if isinstance(value, (list, tuple)):
            normalized[key] = _dedupe(value)
        elif key in SCALAR_KEYS and value is not None:
            text = str(value).strip()
            if text:
                normalized[key] = text
    normalized.setdefault("variants", [])
    normalized.setdefault("tags", [])
    return normalized


# ---------------------------------------------------------------------------
# Extraction strategies
# ---------------------------------------------------------------------------


def _section_heading(section) -> str:
    heading = section.select_one("h4, h3, h2, h1")
    return heading.get_text(strip=True) if heading else ""


def _section_values(section) -> List[str]:
    nodes = section.select(".tag_name") or section.select("tbody a, a")
    return [node.get_text(strip=True) for node in nodes if node.get_text(strip=True)]


def _extract_section_groups(soup: BeautifulSoup) -> Optional[TagData]:
    data: Dict[str, List[str]] = {}
    for section in soup.select("body nav section"):
        section_id = (section.get("id") or "").strip()
        heading = _section_heading(section)
        if section_id.lower() in IGNORED_SECTION_IDS or "favorited" in heading.lower():
            continue
        key = normalize_section_key(section_id or heading)
        if not key:
            continue
        values = _section_values(section)
        if not values:
            continue
        bucket = data.setdefault(key, [])
        for value in values:
            if value not in bucket:
                bucket.append(value)
    return data or None


def _stat_value(text: str, label: str) -> str:
    pattern = (
        rf"\b{label}\s*:\s*(.+?)"
        rf"(?=\s+\b(?:{'|'.join(_STAT_LABELS)})\s*:|$)"
    )
    match = re.search(pattern, text, flags=re.IGNORECASE)
    return match.group(1).strip() if match else ""


def _extract_statistics(soup: BeautifulSoup) -> Optional[TagData]:
    section = soup.select_one("body nav section#Statisticsleft")
    if section is None:
        return None

    time_el = section.select_one("div.navside.tab time") or section.select_one("time")
    posted_at = ""
    if time_el is not None:
        posted_at = (time_el.get("datetime") or time_el.get_text() or "").strip()

    text = re.sub(r"\s+", " ", section.get_text(" ")).strip()
    stats = {
        "postedAt": posted_at,
        "size": _stat_value(text, "Size"),
        "filesize": _stat_value(text, "Filesize"),
        "type": _stat_value(text, "Type"),
        "rating": _stat_value(text, "Rating"),
    }
    stats = {key: value for key, value in stats.items() if value}
    return stats or None


def _strategy_labeled_sections(soup: BeautifulSoup) -> Optional[TagData]:
    groups = _extract_section_groups(soup)
    stats = _extract_statistics(soup)
    if not groups and not stats:
        return None
    return normalize_tag_data({**(groups or {}), **(stats or {})})


def _strategy_legacy_selectors(soup: BeautifulSoup) -> Optional[TagData]:
    variants = [el.get_text(strip=True) for el in soup.select(LEGACY_VARIANT_SELECTOR)]
    tags = [el.get_text(strip=True) for el in soup.select(LEGACY_TAG_SELECTOR)]
    normalized = normalize_tag_data({"variants": variants, "tags": tags})
    if any(isinstance(value, list) and value for value in normalized.values()):
        return normalized
    return None


TAG_STRATEGIES: Sequence[Callable[[BeautifulSoup], Optional[TagData]]] = (
    _strategy_labeled_sections,
    _strategy_legacy_selectors,
)


def extract_tags_from_html(html: str) -> Optional[TagData]:
    soup = BeautifulSoup(html or "", "html.parser")
    for strategy in TAG_STRATEGIES:
        try:
            data = strategy(soup)
        except Exception as exc:  # noqa: BLE001
            log_warning(f"extract_tags: {strategy.__name__} failed: {exc}")
            continue
        if data:
            return data
    return None


def extract_tags(page: PageCapability) -> Optional[TagData]:
    """Return normalized tag data for the current page, or ``None``. Never raises."""

    try:
        html = page.content()
    except Exception as exc:  # noqa: BLE001
        log_warning(f"extract_tags: unable to read page content: {exc}")
        return None
    return extract_tags_from_html(html)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@dataclass
class TagFilterSet:
    skip_nsfw: bool = False
    skip_nsfl: bool = False
    nsfw_blocklist: set = field(default_factory=set)
    nsfl_blocklist: set = field(default_factory=set)

    @property
    def active(self) -> bool:
        return self.skip_nsfw or self.skip_nsfl


@dataclass(frozen=True)
class FilterDecision:
    category: str
    tag: str


def load_tag_blocklist(path: Optional[Path]) -> set:
    """Read a newline-delimited blocklist; ``#`` and ``//`` lines are comments."""

    if not path:
        return set()
    resolved = Path(path).expanduser().resolve()
    try:
        contents = resolved.read_text(encoding="utf-8")
    except OSError:
        log_warning(f"Tag blocklist not found: {path}")
        return set()

    tags = set()
    for line in contents.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or stripped.startswith("//"):
            continue
        normalized = normalize_tag(stripped)
        if normalized:
            tags.add(normalized)
    return tags


def build_tag_filters(options: Any) -> TagFilterSet:
    skip_nsfw = bool(getattr(options, "skip_nsfw", False))
    skip_nsfl = bool(getattr(options, "skip_nsfl", False))
    filters = TagFilterSet(
        skip_nsfw=skip_nsfw,
        skip_nsfl=skip_nsfl,
        nsfw_blocklist=load_tag_blocklist(getattr(options, "nsfw_file", None)) if skip_nsfw else set(),
        nsfl_blocklist=load_tag_blocklist(getattr(options, "nsfl_file", None)) if skip_nsfl else set(),
    )
    if skip_nsfw and not filters.nsfw_blocklist:
        log_warning("NSFW skip enabled but the tag list is empty.")
    if skip_nsfl and not filters.nsfl_blocklist:
        log_warning("NSFL skip enabled but the tag list is empty.")
    return filters


def find_blocked_tag(tags: Iterable[str], blocklist: set) -> Optional[str]:
    if not blocklist:
        return None
    for tag in tags or []:
        if normalize_tag(tag) in blocklist:
            return tag
    return None


def should_skip_by_tag_filters(
    tag_data: Optional[TagData], filters: Optional[TagFilterSet]
) -> Optional[FilterDecision]:
    if filters is None or not filters.active:
        return None
    if not tag_data or not isinstance(tag_data.get("tags"), list):
        log_warning("Tag filters enabled but no tag data was found; continuing download.")
        return None

    checks = (
        (filters.skip_nsfw, "NSFW", filters.nsfw_blocklist),
        (filters.skip_nsfl, "NSFL", filters.nsfl_blocklist),
    )
    for enabled, category, blocklist in checks:
        if not enabled:
            continue
        match = find_blocked_tag(tag_data["tags"], blocklist)
        if match:
            _scraper_event("state", phase="tag_filter", category=category, tag=match)
            return FilterDecision(category=category, tag=match)
    return None


__all__ = [
    "TagData",
    "TagFilterSet",
    "FilterDecision",
    "normalize_tag",
    "normalize_section_key",
    "normalize_tag_data",
    "extract_tags",
    "extract_tags_from_html",
    "load_tag_blocklist",
    "build_tag_filters",
    "find_blocked_tag",
    "should_skip_by_tag_filters",
]
