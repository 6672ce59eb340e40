"""Podcast records and their auto-fetch settings."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from podcore.config import settings
from podcore.models.podcasts import PodcastCreate, PodcastSettingsRead, PodcastSettingsUpdate
from podcore.schemas.podcasts import Podcast
from podcore.services.errors import PodcastNotFound, SlugConflict
from podcore.utils.clock import utc_now

logger = logging.getLogger(__name__)


def to_settings_read(podcast: Podcast) -> PodcastSettingsRead:
    return PodcastSettingsRead.model_validate(
        {
            **podcast.model_dump(),
            "spotify_configured": settings.spotify_configured,
        }
    )


async def _load_podcast(db: AsyncSession, podcast_id: int) -> Podcast:
    podcast = await db.get(Podcast, podcast_id)
    if podcast is None:
        raise PodcastNotFound(podcast_id)
    return podcast


async def get_podcast(db: AsyncSession, podcast_id: int) -> Podcast:
    async with db.begin():
        return await _load_podcast(db, podcast_id)


async def create_podcast(db: AsyncSession, data: PodcastCreate) -> Podcast:
    now = utc_now()
    async with db.begin():
        existing = await db.execute(select(Podcast.id).where(Podcast.slug == data.slug))  # type: ignore[arg-type]
        if existing.scalar_one_or_none() is not None:
            raise SlugConflict(f"Podcast slug '{data.slug}' already exists")
        podcast = Podcast(**data.model_dump(), created_at=now, updated_at=now)
        db.add(podcast)
        await db.flush()
        await db.refresh(podcast)
    logger.info(f"Created podcast {podcast.id} ({podcast.slug})")
    return podcast


async def update_podcast_settings(
    db: AsyncSession, podcast_id: int, data: PodcastSettingsUpdate
) -> Podcast:
    """Apply the fields present in the request body."""
    async with db.begin():
        podcast = await _load_podcast(db, podcast_id)
        for name, value in data.model_dump(exclude_unset=True).items():
            if name == "title" and value is None:
                continue
            setattr(podcast, name, value)
        podcast.updated_at = utc_now()
        await db.flush()
        await db.refresh(podcast)
    return podcast
