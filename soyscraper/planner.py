"""Resume/range planning.

Sequential mode continues after the newest local post up to the newest remote
post. Fill-gaps mode backfills the holes in ``[start, end]`` using only the
local download tree, without asking the site for its newest post.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from .config import RunOptions
from .logging_utils import _scraper_event
from .retry_policy import RetryPolicy, call_with_retries
from .utils import log_line, log_warning


@dataclass
class RangePlan:
    mode: str
    start: int
    end: int
    posts: List[int] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not self.posts


def _lookup_remote_max(
    remote_max: Callable[[], int],
    retry_policy: RetryPolicy,
    sleep: Callable[[float], None],
) -> Optional[int]:
    try:
        return call_with_retries(
            lambda attempt: remote_max(),
            retry_policy,
            label="max_post",
            sleep=sleep,
        )
    except Exception as exc:  # noqa: BLE001
        log_warning(f"Could not determine remote max post after retries: {exc}")
        return None


def _plan_fill_gaps(options: RunOptions, downloaded_posts: Iterable[int]) -> RangePlan:
    downloaded = set(downloaded_posts)
    if not downloaded:
        log_line("No downloaded posts found; nothing to fill.")
        return RangePlan(mode="fill_gaps", start=options.start or 1, end=0, reason="no_local_posts")

    start = options.start or 1
    end = options.end if options.end is not None else max(downloaded)
    if end < start:
        return RangePlan(mode="fill_gaps", start=start, end=end, reason="empty_range")

    posts = [n for n in range(start, end + 1) if n not in downloaded]
    if options.max_posts:
        posts = posts[: options.max_posts]
    reason = None if posts else "no_gaps"
    log_line(f"Fill gaps mode: {len(posts)} missing posts between {start} and {end}.")
    return RangePlan(mode="fill_gaps", start=start, end=end, posts=posts, reason=reason)


def _plan_sequential(
    options: RunOptions,
    last_downloaded: Optional[int],
    remote_max: Optional[Callable[[], int]],
    retry_policy: RetryPolicy,
    sleep: Callable[[float], None],
) -> RangePlan:
    if options.start is not None:
        start = options.start
    else:
        start = last_downloaded + 1 if last_downloaded else 1

    if options.end is not None:
        end = options.end
    else:
        found = _lookup_remote_max(remote_max, retry_policy, sleep) if remote_max else None
        if found is None:
            log_warning(f"Falling back to end={start}.")
            end = start
        else:
            end = found

    if options.max_posts:
        end = min(end, start + options.max_posts - 1)

    if end < start:
        return RangePlan(mode="sequential", start=start, end=end, reason="empty_range")
    return RangePlan(mode="sequential", start=start, end=end, posts=list(range(start, end + 1)))


def plan_range(
    options: RunOptions,
    *,
    last_downloaded: Optional[int] = None,
    downloaded_posts: Iterable[int] = (),
    remote_max: Optional[Callable[[], int]] = None,
    retry_policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RangePlan:
    """Return the ascending list of post numbers this run should visit.

    ``remote_max`` is only consulted in sequential mode when no explicit end
    was given; failures are retried per ``retry_policy``.
    """

    policy = retry_policy or RetryPolicy.from_ms(options.retries, options.retry_delay_ms)
    if options.fill_gaps:
        plan = _plan_fill_gaps(options, downloaded_posts)
    else:
        plan = _plan_sequential(options, last_downloaded, remote_max, policy, sleep)

    _scraper_event(
        "state",
        phase="plan",
        mode=plan.mode,
        start=plan.start,
        end=plan.end,
        posts=len(plan.posts),
        reason=plan.reason,
    )
    return plan


__all__ = ["RangePlan", "plan_range"]
