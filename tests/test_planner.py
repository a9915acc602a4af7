from __future__ import annotations

import pytest

from soyscraper.config import RunOptions
from soyscraper.planner import plan_range
from soyscraper.retry_policy import RetryPolicy

NO_JITTER = RetryPolicy(retries=3, base_delay_s=0.01, jitter_max_s=0)


def _remote_should_not_be_called() -> int:
    raise AssertionError("remote lookup must not run")


def test_sequential_resumes_after_last_download() -> None:
    plan = plan_range(RunOptions(), last_downloaded=99, remote_max=lambda: 103)
    assert plan.mode == "sequential"
    assert plan.posts == [100, 101, 102, 103]


def test_sequential_starts_at_one_without_local_posts() -> None:
    plan = plan_range(RunOptions(), last_downloaded=None, remote_max=lambda: 3)
    assert plan.posts == [1, 2, 3]


def test_sequential_explicit_range_skips_remote_lookup() -> None:
    plan = plan_range(
        RunOptions(start=10, end=12), last_downloaded=500, remote_max=_remote_should_not_be_called
    )
    assert plan.posts == [10, 11, 12]


def test_sequential_max_posts_caps_end() -> None:
    plan = plan_range(RunOptions(start=50, max_posts=3), remote_max=lambda: 1000)
    assert (plan.start, plan.end) == (50, 52)
    assert plan.posts == [50, 51, 52]


def test_sequential_empty_when_end_before_start() -> None:
    plan = plan_range(RunOptions(start=10, end=5))
    assert plan.empty
    assert plan.reason == "empty_range"


def test_sequential_falls_back_to_start_when_lookup_keeps_failing() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    def _failing() -> int:
        calls.append(1)
        raise RuntimeError("post list unavailable")

    plan = plan_range(
        RunOptions(),
        last_downloaded=41,
        remote_max=_failing,
        retry_policy=NO_JITTER,
        sleep=sleeps.append,
    )

    assert len(calls) == NO_JITTER.max_attempts
    assert len(sleeps) == NO_JITTER.retries
    assert plan.posts == [42]


def test_sequential_lookup_recovers_after_retries() -> None:
    outcomes = iter([RuntimeError("timeout"), RuntimeError("timeout"), 45])
    sleeps: list[float] = []

    def _flaky() -> int:
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    plan = plan_range(
        RunOptions(), last_downloaded=42, remote_max=_flaky, retry_policy=NO_JITTER, sleep=sleeps.append
    )

    assert plan.posts == [43, 44, 45]
    assert sleeps == [0.01, 0.02]


def test_fill_gaps_targets_missing_posts_only() -> None:
    plan = plan_range(
        RunOptions(fill_gaps=True),
        downloaded_posts={1, 2, 4, 7},
        remote_max=_remote_should_not_be_called,
    )
    assert plan.mode == "fill_gaps"
    assert (plan.start, plan.end) == (1, 7)
    assert plan.posts == [3, 5, 6]


@pytest.mark.parametrize(
    "options, expected",
    [
        (RunOptions(fill_gaps=True, max_posts=2), [3, 5]),
        (RunOptions(fill_gaps=True, start=5), [5, 6]),
        (RunOptions(fill_gaps=True, end=9), [3, 5, 6, 8, 9]),
    ],
)
def test_fill_gaps_respects_bounds_and_cap(options: RunOptions, expected: list[int]) -> None:
    plan = plan_range(options, downloaded_posts={1, 2, 4, 7})
    assert plan.posts == expected


def test_fill_gaps_without_local_posts_plans_nothing() -> None:
    plan = plan_range(RunOptions(fill_gaps=True, end=50), downloaded_posts=set())
    assert plan.empty
    assert plan.reason == "no_local_posts"


def test_fill_gaps_with_no_holes() -> None:
    plan = plan_range(RunOptions(fill_gaps=True), downloaded_posts={1, 2, 3})
    assert plan.empty
    assert plan.reason == "no_gaps"


def test_fill_gaps_plan_completes_the_range() -> None:
    downloaded = {2, 3, 5, 8, 13, 21}
    plan = plan_range(RunOptions(fill_gaps=True), downloaded_posts=downloaded)

    assert set(plan.posts) | downloaded == set(range(1, 22))
    assert not set(plan.posts) & downloaded
    assert plan.posts == sorted(plan.posts)
