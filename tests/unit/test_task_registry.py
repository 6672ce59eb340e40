"""Unit tests for the background task registry and fetch eligibility."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from podcore.schemas.episodes import Episode, PublishStatus
from podcore.schemas.podcasts import Podcast
from podcore.services.external_fetch_service import (
    APPLE_TASK,
    SPOTIFY_TASK,
    is_fetch_eligible,
    platform_enabled,
)
from podcore.services.task_registry import TaskRegistry

NOW = datetime(2026, 3, 1, 12, 0, 0)
DAY = timedelta(hours=24)


class SteppingClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock(NOW)


@pytest.fixture
def registry(clock: SteppingClock) -> TaskRegistry:
    return TaskRegistry(timedelta(hours=1), clock=clock)


class TestTaskRegistry:
    def test_second_start_while_running_is_skipped(self, registry: TaskRegistry) -> None:
        run = registry.try_start(APPLE_TASK, 1, "starting")
        assert run is not None
        assert registry.try_start(APPLE_TASK, 1, "again") is None
        assert registry.try_start(APPLE_TASK, 1, "forced", force=True) is None

    def test_keys_are_per_task_and_podcast(self, registry: TaskRegistry) -> None:
        assert registry.try_start(APPLE_TASK, 1, "a") is not None
        assert registry.try_start(SPOTIFY_TASK, 1, "b") is not None
        assert registry.try_start(APPLE_TASK, 2, "c") is not None

    def test_recent_finish_blocks_until_interval(
        self, registry: TaskRegistry, clock: SteppingClock
    ) -> None:
        run = registry.try_start(APPLE_TASK, 1, "go")
        assert run is not None
        registry.complete(run, "Set 2 URLs")

        clock.now = NOW + timedelta(minutes=59)
        assert registry.try_start(APPLE_TASK, 1, "too soon") is None

        clock.now = NOW + timedelta(hours=1)
        assert registry.try_start(APPLE_TASK, 1, "ok") is not None

    def test_failed_run_also_counts_as_recent(self, registry: TaskRegistry) -> None:
        run = registry.try_start(SPOTIFY_TASK, 1, "go")
        assert run is not None
        registry.fail(run, "Spotify rate limit reached.")
        assert registry.try_start(SPOTIFY_TASK, 1, "retry") is None

    def test_force_ignores_interval(self, registry: TaskRegistry) -> None:
        run = registry.try_start(SPOTIFY_TASK, 1, "go")
        assert run is not None
        registry.complete(run)
        assert registry.try_start(SPOTIFY_TASK, 1, "manual", force=True) is not None

    def test_list_runs_running_first(
        self, registry: TaskRegistry, clock: SteppingClock
    ) -> None:
        first = registry.try_start(APPLE_TASK, 1, "a")
        assert first is not None
        registry.complete(first, "done")
        clock.now = NOW + timedelta(seconds=5)
        second = registry.try_start(SPOTIFY_TASK, 1, "b")
        assert second is not None
        registry.fail(second, "failed")
        running = registry.try_start(APPLE_TASK, 2, "c")
        assert running is not None
        registry.update_progress(running, "3/10: Episode 3")

        runs = registry.list_runs()
        assert [r.task_id for r in runs] == [running.task_id, second.task_id, first.task_id]
        assert runs[0].status == "running"
        assert runs[0].progress_label == "3/10: Episode 3"
        assert runs[1].status == "failed"
        assert runs[2].finished_at == NOW


def _episode(**overrides) -> Episode:
    values = {
        "id": 1,
        "podcast_id": 1,
        "slug": "ep-1",
        "storage_key": "key-1",
        "title": "Episode 1",
        "publish_status": PublishStatus.published,
        "published_at": NOW - DAY - timedelta(minutes=1),
    }
    values.update(overrides)
    return Episode(**values)


class TestFetchEligibility:
    def test_published_more_than_a_day_ago(self) -> None:
        assert is_fetch_eligible(_episode(), APPLE_TASK, NOW, DAY)

    def test_too_recent(self) -> None:
        ep = _episode(published_at=NOW - timedelta(hours=23))
        assert not is_fetch_eligible(ep, APPLE_TASK, NOW, DAY)

    def test_exactly_one_day_is_not_enough(self) -> None:
        ep = _episode(published_at=NOW - DAY)
        assert not is_fetch_eligible(ep, APPLE_TASK, NOW, DAY)

    def test_not_published(self) -> None:
        ep = _episode(publish_status=PublishStatus.scheduled)
        assert not is_fetch_eligible(ep, APPLE_TASK, NOW, DAY)

    def test_url_already_set(self) -> None:
        ep = _episode(apple_podcasts_url="https://apple.test/ep")
        assert not is_fetch_eligible(ep, APPLE_TASK, NOW, DAY)
        assert is_fetch_eligible(ep, SPOTIFY_TASK, NOW, DAY)


class TestPlatformEnabled:
    def test_apple_needs_flag_and_id(self) -> None:
        podcast = Podcast(slug="p", title="P", apple_podcasts_auto_fetch=True)
        assert not platform_enabled(podcast, APPLE_TASK, True)
        podcast.apple_podcasts_id = "123"
        assert platform_enabled(podcast, APPLE_TASK, True)
        podcast.apple_podcasts_auto_fetch = False
        assert not platform_enabled(podcast, APPLE_TASK, True)

    def test_spotify_needs_credentials(self) -> None:
        podcast = Podcast(slug="p", title="P", spotify_auto_fetch=True, spotify_show_id="show")
        assert platform_enabled(podcast, SPOTIFY_TASK, True)
        assert not platform_enabled(podcast, SPOTIFY_TASK, False)

    def test_unknown_task(self) -> None:
        with pytest.raises(ValueError):
            platform_enabled(Podcast(slug="p", title="P"), "youtube", True)
