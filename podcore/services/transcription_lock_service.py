"""Soft-lock job queue for the external transcription worker.

The lock is the ``locked_at`` timestamp on the episode row; it is live for
``transcription_lock_ttl_seconds`` and expiry is computed on read, so a
crashed worker's episode becomes lockable again without any sweeper.

Worker protocol:
    1. ``GET /api/transcription/queue``: inspect lockable episodes (no writes)
    2. ``POST /api/episodes/{id}/transcription-lock``: claim one (409 if taken)
    3. download audio, upload ``transcript.json`` via the presigned URL
    4. ``POST /api/episodes/{id}/transcription-complete``: idempotent callback
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from podcore.config import settings
from podcore.schemas.episodes import Episode, TranscribeStatus
from podcore.services.deploy_service import DeployTrigger, deploy_trigger
from podcore.services.episode_state_machine import (
    AUDIO_READY_PUBLISH_STATUSES,
    LockAcquired,
    LockReleased,
)
from podcore.services.episode_state_service import (
    apply_transcription_result,
    get_episode,
    transition_episode,
)
from podcore.services.errors import InvalidStateTransition, InvalidTranscriptArtifact
from podcore.services.storage_client import StorageClient
from podcore.services.vtt_service import convert_to_vtt, parse_transcript
from podcore.utils.clock import utc_now

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_LIMIT = 1
TRANSCRIPT_CONTENT_TYPE = "application/json"
CAPTION_CONTENT_TYPE = "text/vtt"


def lock_ttl() -> timedelta:
    return timedelta(seconds=settings.transcription_lock_ttl_seconds)


async def get_transcription_queue(
    db: AsyncSession,
    limit: int = DEFAULT_QUEUE_LIMIT,
    *,
    now: Optional[datetime] = None,
) -> list[Episode]:
    """Pending episodes plus those whose lock expired, oldest first. Read-only."""
    now = now or utc_now()
    expired_before = now - lock_ttl()
    limit = max(1, min(limit, settings.transcription_queue_max_limit))

    async with db.begin():
        result = await db.execute(
            select(Episode)
            .where(
                or_(
                    Episode.transcribe_status == TranscribeStatus.pending,  # type: ignore[arg-type]
                    and_(
                        Episode.transcribe_status == TranscribeStatus.transcribing,  # type: ignore[arg-type]
                        or_(
                            Episode.locked_at.is_(None),  # type: ignore[union-attr]
                            Episode.locked_at <= expired_before,  # type: ignore[operator]
                        ),
                    ),
                )
            )
            .order_by(Episode.created_at, Episode.id)
            .limit(limit)
        )
        return list(result.scalars().all())


async def acquire_lock(
    db: AsyncSession, episode_id: int, *, now: Optional[datetime] = None
) -> Episode:
    """Claim the episode for one worker.

    Raises:
        LockConflict: another worker holds a live lock.
        InvalidStateTransition: the episode is not waiting for transcription.
    """
    outcome = await transition_episode(db, episode_id, LockAcquired(lock_ttl()), now=now)
    logger.info(f"Transcription lock acquired for episode {episode_id}")
    return outcome.episode


async def release_lock(db: AsyncSession, episode_id: int) -> Episode:
    """Operator recovery: back to pending. A no-op unless transcribing."""
    outcome = await transition_episode(db, episode_id, LockReleased())
    if outcome.written:
        logger.info(f"Transcription lock released for episode {episode_id}")
    return outcome.episode


async def complete_transcription(
    db: AsyncSession,
    storage: StorageClient,
    episode_id: int,
    status: TranscribeStatus,
    *,
    duration: Optional[int] = None,
    deploy: Optional[DeployTrigger] = None,
) -> Episode:
    """Worker callback.

    On ``completed`` the raw transcript is validated and converted to
    WebVTT before the state changes. A call after the transcription already
    resolved is accepted as a no-op so a worker can safely retry a callback
    whose response it never saw.

    Raises:
        InvalidTranscriptArtifact: ``transcript.json`` is missing or malformed.
        InvalidStateTransition: the episode was never locked for transcription.
    """
    episode = await get_episode(db, episode_id)
    transcript_url = None

    if (
        status == TranscribeStatus.completed
        and episode.transcribe_status == TranscribeStatus.transcribing
    ):
        raw = await storage.get_bytes(episode.raw_transcript_key)
        if raw is None:
            raise InvalidTranscriptArtifact("Transcript file not found")
        data = parse_transcript(raw)
        await storage.put_bytes(
            episode.caption_key, convert_to_vtt(data).encode("utf-8"), CAPTION_CONTENT_TYPE
        )
        transcript_url = storage.get_public_url(episode.caption_key)
        logger.info(f"Episode {episode_id}: {len(data.segments)} caption cues written")

    outcome = await apply_transcription_result(
        db, episode_id, status, transcript_url=transcript_url, duration=duration
    )
    if not outcome.written:
        logger.info(
            f"Episode {episode_id}: duplicate transcription callback "
            f"({outcome.after.transcribe_status.value}), ignoring"
        )
    elif outcome.publish_visible:
        await (deploy or deploy_trigger).notify_change(f"transcript completed (episode {episode_id})")
    return outcome.episode


async def get_audio_download_url(
    db: AsyncSession, storage: StorageClient, episode_id: int
) -> str:
    episode = await get_episode(db, episode_id)
    if episode.publish_status not in AUDIO_READY_PUBLISH_STATUSES:
        raise InvalidStateTransition("Episode has no audio file")
    return storage.presigned_get_url(episode.audio_key)


async def get_transcript_upload_url(
    db: AsyncSession, storage: StorageClient, episode_id: int
) -> str:
    """Presigned PUT for ``transcript.json``; only the lock holder needs one."""
    episode = await get_episode(db, episode_id)
    if episode.transcribe_status != TranscribeStatus.transcribing:
        raise InvalidStateTransition("Episode is not being transcribed")
    return storage.presigned_put_url(episode.raw_transcript_key, TRANSCRIPT_CONTENT_TYPE)
