"""On-disk layout of downloaded media and the local resume inspectors.

Media for post ``n`` lives either directly under the download root (``flat``)
or in a bucket directory named after the zero-padded id range that contains
``n``. The bucket is derived from the post number alone, so the layout can be
reconstructed without any index.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Set, Union
from urllib.parse import urlparse

from . import config
from .utils import log_line

_LEADING_DIGITS_RE = re.compile(r"^(\d+)")


def ensure_download_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def bucket_bounds(post_number: int, bucket_size: int) -> tuple[int, int]:
    start = (post_number // bucket_size) * bucket_size
    return start, start + bucket_size - 1


def bucket_label(post_number: int, bucket_size: int = config.DEFAULT_BUCKET_SIZE) -> str:
    start, end = bucket_bounds(post_number, bucket_size)
    width = max(len(str(end)), 6)
    return f"{start:0{width}d}-{end:0{width}d}"


def resolve_post_dir(
    root: Path,
    post_number: Union[int, str],
    *,
    layout: Optional[str] = None,
    bucket_size: Optional[int] = None,
) -> Path:
    """Return the directory that holds media for ``post_number``."""

    root = Path(root)
    if (layout or config.image_layout()) == "flat":
        return root
    try:
        parsed = int(str(post_number).strip())
    except ValueError:
        return root
    size = bucket_size if bucket_size and bucket_size > 0 else config.bucket_size()
    return root / bucket_label(parsed, size)


def parse_post_number(filename: str) -> Optional[int]:
    match = _LEADING_DIGITS_RE.match(str(filename or ""))
    if not match:
        return None
    value = int(match.group(1))
    return value if value > 0 else None


def post_number_from_url(url: str) -> str:
    """Return the final non-empty path segment of ``url``."""

    segments = [part for part in urlparse(url).path.split("/") if part]
    return segments[-1] if segments else ""


def _candidate_dirs(root: Path) -> list[Path]:
    dirs = [root]
    for entry in sorted(root.iterdir()):
        # Quarantine (and any other hidden directory) never counts as downloaded.
        if entry.is_dir() and not entry.name.startswith("."):
            dirs.append(entry)
    return dirs


def get_downloaded_post_numbers(root: Path) -> Set[int]:
    """Collect post numbers from media files in ``root`` and its bucket dirs."""

    root = Path(root)
    if not root.is_dir():
        return set()

    posts: Set[int] = set()
    for directory in _candidate_dirs(root):
        for entry in directory.iterdir():
            if not entry.is_file():
                continue
            post_number = parse_post_number(entry.name)
            if post_number is not None:
                posts.add(post_number)
    return posts


def get_last_downloaded_post(root: Path) -> Optional[int]:
    log_line(f"Checking for last downloaded post in {root}")
    posts = get_downloaded_post_numbers(root)
    if not posts:
        return None
    highest = max(posts)
    log_line(f"Highest post number found: {highest}")
    return highest


__all__ = [
    "ensure_download_dir",
    "bucket_bounds",
    "bucket_label",
    "resolve_post_dir",
    "parse_post_number",
    "post_number_from_url",
    "get_downloaded_post_numbers",
    "get_last_downloaded_post",
]
