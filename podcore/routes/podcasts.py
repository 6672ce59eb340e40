"""Podcast settings and external URL auto-fetch routes."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from podcore.models.podcasts import (
    AutoFetchResponse,
    FetchRunResult,
    PodcastCreate,
    PodcastSettingsRead,
    PodcastSettingsUpdate,
)
from podcore.services import external_fetch_service as fetch
from podcore.services.deploy_service import DeployTrigger, get_deploy_trigger
from podcore.services.itunes_client import ITunesClient, get_itunes_client
from podcore.services.podcast_service import (
    create_podcast,
    get_podcast,
    to_settings_read,
    update_podcast_settings,
)
from podcore.services.spotify_client import SpotifyClient, get_spotify_client
from podcore.services.task_registry import TaskRegistry, get_task_registry
from podcore.utils.db_async import get_session

router = APIRouter(prefix="/api/podcasts", tags=["podcasts"])


@router.post("", response_model=PodcastSettingsRead, status_code=status.HTTP_201_CREATED)
async def create(
    body: PodcastCreate,
    db: AsyncSession = Depends(get_session),
) -> PodcastSettingsRead:
    return to_settings_read(await create_podcast(db, body))


@router.get("/{podcast_id}/settings", response_model=PodcastSettingsRead)
async def read_settings(
    podcast_id: int,
    db: AsyncSession = Depends(get_session),
) -> PodcastSettingsRead:
    return to_settings_read(await get_podcast(db, podcast_id))


@router.put("/{podcast_id}/settings", response_model=PodcastSettingsRead)
async def write_settings(
    podcast_id: int,
    body: PodcastSettingsUpdate,
    db: AsyncSession = Depends(get_session),
) -> PodcastSettingsRead:
    return to_settings_read(await update_podcast_settings(db, podcast_id, body))


@router.post("/{podcast_id}/auto-fetch", response_model=AutoFetchResponse)
async def auto_fetch(
    podcast_id: int,
    db: AsyncSession = Depends(get_session),
    itunes: ITunesClient = Depends(get_itunes_client),
    spotify: Optional[SpotifyClient] = Depends(get_spotify_client),
    registry: TaskRegistry = Depends(get_task_registry),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> AutoFetchResponse:
    """Called when an admin session starts. Runs to completion before responding.

    Platforms that are disabled, have nothing to fetch, or ran recently in
    this process are reported as ``skipped``.
    """
    results = await fetch.run_all_background_tasks(
        db,
        podcast_id,
        itunes=itunes,
        spotify=spotify,
        registry=registry,
        deploy=deploy,
    )
    return AutoFetchResponse(results=results)


@router.post("/{podcast_id}/spotify/fetch-episodes", response_model=FetchRunResult)
async def spotify_fetch_episodes(
    podcast_id: int,
    db: AsyncSession = Depends(get_session),
    spotify: Optional[SpotifyClient] = Depends(get_spotify_client),
    registry: TaskRegistry = Depends(get_task_registry),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> FetchRunResult:
    """Match every episode still missing a Spotify URL, on demand."""
    return await fetch.fetch_spotify_episodes(
        db, podcast_id, client=spotify, registry=registry, deploy=deploy
    )
