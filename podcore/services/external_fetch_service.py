"""External URL auto-fetch: Apple Podcasts and Spotify links for published episodes.

Runs sequentially inside the request that started it. Idempotence comes
from the data: an episode is only a candidate while its URL is still null,
so a second run right after a successful one makes no external calls.
URL writes are conditional on the column still being null and never touch
the lifecycle state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from podcore.config import settings
from podcore.models.podcasts import FetchRunResult
from podcore.schemas.episodes import Episode, PublishStatus
from podcore.schemas.podcasts import Podcast
from podcore.services.deploy_service import DeployTrigger, deploy_trigger
from podcore.services.errors import EpisodeCoreError, NotConfigured
from podcore.services.itunes_client import ITunesClient
from podcore.services.podcast_service import get_podcast
from podcore.services.spotify_client import SpotifyClient, get_spotify_client
from podcore.services.task_registry import TaskRegistry, task_registry
from podcore.utils.clock import utc_now

logger = logging.getLogger(__name__)

APPLE_TASK = "apple-podcasts"
SPOTIFY_TASK = "spotify"

URL_FIELDS = {
    APPLE_TASK: "apple_podcasts_url",
    SPOTIFY_TASK: "spotify_url",
}


# Eligibility


def platform_enabled(podcast: Podcast, task_type: str, spotify_configured: bool) -> bool:
    """Auto-fetch flag and platform ID set (and credentials, for Spotify)."""
    if task_type == APPLE_TASK:
        return bool(podcast.apple_podcasts_auto_fetch and podcast.apple_podcasts_id)
    if task_type == SPOTIFY_TASK:
        return bool(podcast.spotify_auto_fetch and podcast.spotify_show_id and spotify_configured)
    raise ValueError(f"Unknown task type: {task_type}")


def is_fetch_eligible(
    episode: Episode, task_type: str, now: datetime, min_age: timedelta
) -> bool:
    """Published, target URL still null, and public for longer than ``min_age``."""
    if episode.publish_status != PublishStatus.published:
        return False
    if getattr(episode, URL_FIELDS[task_type]) is not None:
        return False
    return episode.published_at is not None and episode.published_at < now - min_age


async def load_fetch_candidates(
    db: AsyncSession,
    podcast_id: int,
    task_type: str,
    *,
    now: datetime,
    min_age: timedelta,
) -> list[Episode]:
    """Eligible episodes of one podcast in creation order."""
    url_column = getattr(Episode, URL_FIELDS[task_type])
    async with db.begin():
        result = await db.execute(
            select(Episode)
            .where(
                Episode.podcast_id == podcast_id,  # type: ignore[arg-type]
                Episode.publish_status == PublishStatus.published,  # type: ignore[arg-type]
                url_column.is_(None),
                Episode.published_at < now - min_age,  # type: ignore[operator]
            )
            .order_by(Episode.created_at, Episode.id)
            .execution_options(populate_existing=True)
        )
        episodes = list(result.scalars().all())
    return [ep for ep in episodes if is_fetch_eligible(ep, task_type, now, min_age)]


async def write_url_if_unset(
    db: AsyncSession, episode_id: int, task_type: str, url: str, now: datetime
) -> bool:
    """Set the platform URL unless someone else already did. Returns True if written."""
    field = URL_FIELDS[task_type]
    values = {field: url, "updated_at": now}
    if task_type == APPLE_TASK:
        values["apple_podcasts_fetched_at"] = now

    async with db.begin():
        result = await db.execute(
            update(Episode)
            .where(
                Episode.id == episode_id,  # type: ignore[arg-type]
                getattr(Episode, field).is_(None),
            )
            .values(**values)
            .returning(Episode.id)
            .execution_options(synchronize_session=False)
        )
        written = result.scalar_one_or_none() is not None
    if written:
        logger.info(f"Episode {episode_id}: {field} set to {url}")
    return written


# Runs


def _min_age() -> timedelta:
    return timedelta(hours=settings.auto_fetch_min_age_hours)


async def run_apple_fetch(
    db: AsyncSession,
    podcast: Podcast,
    *,
    client: Optional[ITunesClient] = None,
    registry: Optional[TaskRegistry] = None,
    deploy: Optional[DeployTrigger] = None,
    now: Optional[datetime] = None,
) -> FetchRunResult:
    """Bulk lookup by GUID, then per-episode title search for the rest.

    A 429 ends the run immediately; URLs found before it are kept.
    """
    now = now or utc_now()
    registry = registry or task_registry
    if not platform_enabled(podcast, APPLE_TASK, settings.spotify_configured):
        return FetchRunResult(task_type=APPLE_TASK, status="skipped", message="Auto-fetch disabled")

    candidates = await load_fetch_candidates(
        db, podcast.id, APPLE_TASK, now=now, min_age=_min_age()  # type: ignore[arg-type]
    )
    if not candidates:
        return FetchRunResult(task_type=APPLE_TASK, status="skipped", message="Nothing to fetch")

    run = registry.try_start(APPLE_TASK, podcast.id, "Fetching Apple Podcasts URLs")  # type: ignore[arg-type]
    if run is None:
        return FetchRunResult(task_type=APPLE_TASK, status="skipped", message="Already ran")

    client = client or ITunesClient()
    apple_id = podcast.apple_podcasts_id or ""
    updated = 0
    processed = 0
    try:
        # Phase 1: bulk lookup
        guid_map = await client.lookup_episodes(apple_id)

        # Phase 2: direct GUID matches, title search for the rest
        for episode in candidates:
            registry.update_progress(run, f"{processed}/{len(candidates)}: {episode.title}")
            guid = episode.source_guid or episode.slug
            url = guid_map.get(guid)
            if url is None:
                url = await client.search_episode(episode.title, guid, apple_id)
            if url and await write_url_if_unset(db, episode.id, APPLE_TASK, url, now):  # type: ignore[arg-type]
                updated += 1
            processed += 1
    except EpisodeCoreError as exc:
        registry.fail(run, exc.detail)
        result = FetchRunResult(
            task_type=APPLE_TASK,
            status="failed",
            checked=processed,
            updated=updated,
            message=exc.detail,
        )
    except Exception:
        registry.fail(run, "Unexpected error")
        raise
    else:
        message = f"Set {updated} URLs" if updated else "No matching episodes found"
        registry.complete(run, message)
        result = FetchRunResult(
            task_type=APPLE_TASK,
            status="done",
            checked=processed,
            updated=updated,
            message=message,
        )

    if updated:
        await (deploy or deploy_trigger).notify_change(f"Apple Podcasts URLs set for {updated} episodes")
    return result


async def run_spotify_fetch(
    db: AsyncSession,
    podcast: Podcast,
    *,
    client: Optional[SpotifyClient] = None,
    registry: Optional[TaskRegistry] = None,
    deploy: Optional[DeployTrigger] = None,
    now: Optional[datetime] = None,
    on_demand: bool = False,
) -> FetchRunResult:
    """One bulk fetch of the show's episodes, matched by normalized title.

    ``on_demand`` (the manual endpoint) considers every episode still missing
    a Spotify URL, ignores the recent-run interval, and raises errors instead
    of reporting them in the result.
    """
    now = now or utc_now()
    registry = registry or task_registry
    client = client or get_spotify_client()

    if on_demand:
        if client is None:
            raise NotConfigured("Spotify API credentials not configured")
        if not podcast.spotify_show_id:
            raise NotConfigured("Spotify show ID not configured in settings")
        candidates = await _episodes_missing_spotify_url(db, podcast.id)  # type: ignore[arg-type]
    else:
        if client is None or not platform_enabled(podcast, SPOTIFY_TASK, True):
            return FetchRunResult(task_type=SPOTIFY_TASK, status="skipped", message="Auto-fetch disabled")
        candidates = await load_fetch_candidates(
            db, podcast.id, SPOTIFY_TASK, now=now, min_age=_min_age()  # type: ignore[arg-type]
        )

    if not candidates:
        return FetchRunResult(task_type=SPOTIFY_TASK, status="skipped", message="Nothing to fetch")

    run = registry.try_start(SPOTIFY_TASK, podcast.id, "Fetching Spotify URLs", force=on_demand)  # type: ignore[arg-type]
    if run is None:
        return FetchRunResult(task_type=SPOTIFY_TASK, status="skipped", message="Already running")

    updated = 0
    try:
        registry.update_progress(run, "Connecting to Spotify API")
        matches = await client.match_episodes(
            podcast.spotify_show_id or "",
            [(ep.id, ep.title) for ep in candidates],  # type: ignore[misc]
        )
        for match in matches:
            if match.spotify_url and await write_url_if_unset(
                db, match.episode_id, SPOTIFY_TASK, match.spotify_url, now
            ):
                updated += 1
    except EpisodeCoreError as exc:
        registry.fail(run, exc.detail)
        if updated:
            await (deploy or deploy_trigger).notify_change(f"Spotify URLs set for {updated} episodes")
        if on_demand:
            raise
        return FetchRunResult(
            task_type=SPOTIFY_TASK,
            status="failed",
            checked=len(candidates),
            updated=updated,
            message=exc.detail,
        )
    except Exception:
        registry.fail(run, "Unexpected error")
        raise

    message = f"Set {updated} URLs" if updated else "No matching episodes found"
    registry.complete(run, message)
    if updated:
        await (deploy or deploy_trigger).notify_change(f"Spotify URLs set for {updated} episodes")
    return FetchRunResult(
        task_type=SPOTIFY_TASK,
        status="done",
        checked=len(candidates),
        updated=updated,
        message=message,
    )


async def _episodes_missing_spotify_url(db: AsyncSession, podcast_id: int) -> list[Episode]:
    async with db.begin():
        result = await db.execute(
            select(Episode)
            .where(
                Episode.podcast_id == podcast_id,  # type: ignore[arg-type]
                Episode.spotify_url.is_(None),  # type: ignore[union-attr]
                Episode.publish_status.in_(  # type: ignore[attr-defined]
                    [PublishStatus.scheduled, PublishStatus.published]
                ),
            )
            .order_by(Episode.created_at, Episode.id)
        )
        return list(result.scalars().all())


async def run_all_background_tasks(
    db: AsyncSession,
    podcast_id: int,
    *,
    itunes: Optional[ITunesClient] = None,
    spotify: Optional[SpotifyClient] = None,
    registry: Optional[TaskRegistry] = None,
    deploy: Optional[DeployTrigger] = None,
    now: Optional[datetime] = None,
) -> list[FetchRunResult]:
    """Admin-session kickoff: Apple then Spotify, one deploy for both.

    A failure of one platform (including a 429) does not stop the other.
    """
    podcast = await get_podcast(db, podcast_id)
    trigger = deploy or deploy_trigger
    async with trigger.batch():
        apple = await run_apple_fetch(
            db, podcast, client=itunes, registry=registry, deploy=trigger, now=now
        )
        spotify_result = await run_spotify_fetch(
            db, podcast, client=spotify, registry=registry, deploy=trigger, now=now
        )
    return [apple, spotify_result]


async def fetch_spotify_episodes(
    db: AsyncSession,
    podcast_id: int,
    *,
    client: Optional[SpotifyClient] = None,
    registry: Optional[TaskRegistry] = None,
    deploy: Optional[DeployTrigger] = None,
) -> FetchRunResult:
    """Manual "fetch Spotify URLs" button."""
    podcast = await get_podcast(db, podcast_id)
    return await run_spotify_fetch(
        db, podcast, client=client, registry=registry, deploy=deploy, on_demand=True
    )

