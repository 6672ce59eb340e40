"""Persistence for episode lifecycle transitions.

Every write to ``publish_status`` / ``transcribe_status`` goes through
``transition_episode``: read a snapshot, let ``apply_transition`` decide the
target, then issue one ``UPDATE ... WHERE`` that only matches if every state
column still equals the snapshot. A writer that loses the race re-reads and
re-validates instead of overwriting.

All functions open their own ``async with db.begin()`` blocks, so callers
must pass a session with no transaction in progress. Deploy notifications are
sent after the transaction has committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from podcore.models.episodes import EpisodeCreate, EpisodeUpdate, UploadCompleteRequest
from podcore.schemas.episodes import Episode, PublishStatus, TranscribeStatus
from podcore.schemas.podcasts import Podcast
from podcore.services.deploy_service import DeployTrigger, deploy_trigger
from podcore.services.episode_state_machine import (
    RESOLVED_TRANSCRIBE_STATUSES,
    EpisodeState,
    PublishDue,
    RequestPublishStatus,
    SetPublishAt,
    Transition,
    TranscriptionFinished,
    TranscriptionReset,
    TranscriptionSkipped,
    UploadCompleted,
    apply_transition,
)
from podcore.services.errors import (
    EpisodeNotFound,
    InvalidStateTransition,
    LockConflict,
    PodcastNotFound,
    SlugConflict,
)
from podcore.services.storage_client import StorageClient
from podcore.utils.clock import utc_now
from podcore.utils.slug import generate_storage_key, generate_unique_episode_slug, is_slug_taken

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 3
AUDIO_CONTENT_TYPE = "audio/mpeg"


@dataclass
class TransitionOutcome:
    """Result of one persisted (or no-op) transition."""

    episode: Episode
    before: EpisodeState
    after: EpisodeState
    written: bool

    @property
    def became_published(self) -> bool:
        return (
            self.after.publish_status == PublishStatus.published
            and self.before.publish_status != PublishStatus.published
        )

    @property
    def publish_visible(self) -> bool:
        """True when the public site shows (or stopped showing) something new."""
        return self.written and PublishStatus.published in (
            self.before.publish_status,
            self.after.publish_status,
        )


def _state_guard(snapshot: EpisodeState) -> list[Any]:
    """WHERE clauses matching only rows whose state still equals ``snapshot``."""
    clauses = []
    for name in EpisodeState.__dataclass_fields__:
        column = getattr(Episode, name)
        value = getattr(snapshot, name)
        clauses.append(column.is_(None) if value is None else column == value)
    return clauses


async def _load_episode(db: AsyncSession, episode_id: int) -> Episode:
    # populate_existing: a retry must see the row as it is now, not the identity map copy
    result = await db.execute(
        select(Episode)
        .where(Episode.id == episode_id)  # type: ignore[arg-type]
        .execution_options(populate_existing=True)
    )
    episode = result.scalar_one_or_none()
    if episode is None:
        raise EpisodeNotFound(episode_id)
    return episode


async def transition_episode(
    db: AsyncSession,
    episode_id: int,
    transition: Optional[Transition],
    *,
    values: Optional[dict[str, Any]] = None,
    write_values_on_noop: bool = False,
    validate: Optional[Callable[[Episode], None]] = None,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    """Apply ``transition`` to one episode with an optimistic compare-and-set.

    Args:
        transition: the lifecycle event, or None for a plain field edit.
        values: non-state columns written in the same UPDATE.
        write_values_on_noop: write ``values`` even when the state is unchanged.
        validate: called with the freshly read row before the transition.

    Raises:
        EpisodeNotFound, InvalidStateTransition, LockConflict
    """
    extra = dict(values or {})
    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        current_time = now or utc_now()
        async with db.begin():
            episode = await _load_episode(db, episode_id)
            if validate is not None:
                validate(episode)
            before = EpisodeState.from_episode(episode)
            after = before if transition is None else apply_transition(before, transition, current_time)
            changes = after.changes_from(before)

            if not changes and not (extra and (write_values_on_noop or transition is None)):
                return TransitionOutcome(episode, before, after, written=False)

            stmt = (
                update(Episode)
                .where(Episode.id == episode_id, *_state_guard(before))  # type: ignore[arg-type]
                .values(**changes, **extra, updated_at=current_time)
                .returning(Episode.id)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            if result.scalar_one_or_none() is not None:
                await db.refresh(episode)
                if changes:
                    logger.info(
                        f"Episode {episode_id}: {type(transition).__name__} "
                        f"{before.publish_status.value}/{before.transcribe_status.value} -> "
                        f"{after.publish_status.value}/{after.transcribe_status.value}"
                    )
                return TransitionOutcome(episode, before, after, written=True)

        logger.info(f"Episode {episode_id} changed concurrently, retrying (attempt {attempt})")

    raise LockConflict(f"Episode {episode_id} is being modified concurrently; retry later")


async def _notify_if_visible(
    outcome: TransitionOutcome, reason: str, deploy: Optional[DeployTrigger]
) -> None:
    if outcome.publish_visible:
        await (deploy or deploy_trigger).notify_change(f"{reason} (episode {outcome.episode.id})")


# Reads


async def get_episode(db: AsyncSession, episode_id: int) -> Episode:
    async with db.begin():
        return await _load_episode(db, episode_id)


async def list_episodes(
    db: AsyncSession,
    *,
    podcast_id: Optional[int] = None,
    publish_status: Optional[PublishStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Episode], int]:
    """Newest first, with the total count for pagination."""
    filters = []
    if podcast_id is not None:
        filters.append(Episode.podcast_id == podcast_id)
    if publish_status is not None:
        filters.append(Episode.publish_status == publish_status)

    async with db.begin():
        total = (
            await db.execute(select(func.count()).select_from(Episode).where(*filters))
        ).scalar_one()
        rows = await db.execute(
            select(Episode)
            .where(*filters)
            .order_by(Episode.created_at.desc(), Episode.id.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(rows.scalars().all()), total


# User operations


async def create_episode(db: AsyncSession, data: EpisodeCreate) -> Episode:
    """Create an episode in ``new``. Audio is uploaded separately."""
    now = utc_now()
    async with db.begin():
        if await db.get(Podcast, data.podcast_id) is None:
            raise PodcastNotFound(data.podcast_id)

        if data.slug:
            if await is_slug_taken(data.slug, db, data.podcast_id):
                raise SlugConflict(f"Slug '{data.slug}' is already used by another episode")
            slug = data.slug
        else:
            slug = await generate_unique_episode_slug(data.title, db, data.podcast_id)

        episode = Episode(
            podcast_id=data.podcast_id,
            slug=slug,
            storage_key=generate_storage_key(slug),
            title=data.title,
            description=data.description,
            publish_at=data.publish_at,
            skip_transcription=data.skip_transcription,
            source_guid=data.source_guid,
            created_at=now,
            updated_at=now,
        )
        db.add(episode)
        await db.flush()
        await db.refresh(episode)

    logger.info(f"Created episode {episode.id} ({episode.slug}) for podcast {episode.podcast_id}")
    return episode


_PLAIN_UPDATE_FIELDS = (
    "title",
    "description",
    "source_guid",
    "apple_podcasts_url",
    "spotify_url",
)


async def update_episode(
    db: AsyncSession,
    episode_id: int,
    data: EpisodeUpdate,
    *,
    deploy: Optional[DeployTrigger] = None,
) -> Episode:
    """Partial update. A ``publishAt`` edit goes through the state machine."""
    fields = data.model_fields_set
    values: dict[str, Any] = {
        name: getattr(data, name) for name in _PLAIN_UPDATE_FIELDS if name in fields
    }
    if "title" in values and values["title"] is None:
        del values["title"]
    if "description" in values and values["description"] is None:
        values["description"] = ""

    new_slug = data.slug if "slug" in fields and data.slug else None
    if new_slug is not None:
        async with db.begin():
            current = await _load_episode(db, episode_id)
            if current.slug != new_slug and await is_slug_taken(
                new_slug, db, current.podcast_id, exclude_id=episode_id
            ):
                raise SlugConflict(f"Slug '{new_slug}' is already used by another episode")
        values["slug"] = new_slug

    def _check_slug_mutable(episode: Episode) -> None:
        if new_slug is not None and new_slug != episode.slug and episode.publish_status != PublishStatus.new:
            raise InvalidStateTransition("Slug can only be changed before audio is uploaded")

    transition = SetPublishAt(data.publish_at) if "publish_at" in fields else None
    outcome = await transition_episode(
        db,
        episode_id,
        transition,
        values=values,
        write_values_on_noop=True,
        validate=_check_slug_mutable,
    )
    await _notify_if_visible(outcome, "episode updated", deploy)
    return outcome.episode


async def request_transition(
    db: AsyncSession,
    episode_id: int,
    *,
    publish_status: Optional[PublishStatus] = None,
    publish_at: Optional[datetime] = None,
    deploy: Optional[DeployTrigger] = None,
) -> Episode:
    """Explicit publish-status request, or a publishAt edit when no status is given.

    Raises:
        InvalidStateTransition: e.g. "publish now" while transcription is pending.
    """
    if publish_status is not None:
        transition: Transition = RequestPublishStatus(publish_status)
    else:
        transition = SetPublishAt(publish_at)
    outcome = await transition_episode(db, episode_id, transition)
    await _notify_if_visible(outcome, "publish status changed", deploy)
    return outcome.episode


async def create_audio_upload_url(
    db: AsyncSession, storage: StorageClient, episode_id: int
) -> str:
    """Presigned PUT for the source audio. Does not change state."""
    episode = await get_episode(db, episode_id)
    if episode.publish_status not in (PublishStatus.new, PublishStatus.uploading):
        raise InvalidStateTransition(
            f"Audio already uploaded (episode is {episode.publish_status.value})"
        )
    return storage.presigned_put_url(episode.audio_key, AUDIO_CONTENT_TYPE)


async def record_upload_complete(
    db: AsyncSession,
    episode_id: int,
    *,
    duration: int,
    file_size: Optional[int] = None,
    skip_transcription: Optional[bool] = None,
    deploy: Optional[DeployTrigger] = None,
) -> Episode:
    """``new -> uploading -> draft`` plus the transcription seed, in one update.

    With transcription skipped and ``publish_at`` already elapsed the episode
    is published by the same update.
    """
    if skip_transcription is None:
        skip_transcription = (await get_episode(db, episode_id)).skip_transcription

    values: dict[str, Any] = {
        "duration_seconds": duration,
        "skip_transcription": skip_transcription,
    }
    if file_size is not None:
        values["file_size_bytes"] = file_size

    outcome = await transition_episode(
        db, episode_id, UploadCompleted(skip_transcription=skip_transcription), values=values
    )
    await _notify_if_visible(outcome, "episode published on upload", deploy)
    return outcome.episode


async def complete_audio_upload(
    db: AsyncSession,
    storage: StorageClient,
    episode_id: int,
    data: UploadCompleteRequest,
    *,
    deploy: Optional[DeployTrigger] = None,
) -> Episode:
    """Upload-complete callback: the audio object must exist before state moves."""
    episode = await get_episode(db, episode_id)
    if not await storage.exists(episode.audio_key):
        raise InvalidStateTransition("Audio file has not been uploaded")
    return await record_upload_complete(
        db,
        episode_id,
        duration=data.duration,
        file_size=data.file_size,
        skip_transcription=data.skip_transcription,
        deploy=deploy,
    )


async def apply_transcription_result(
    db: AsyncSession,
    episode_id: int,
    status: TranscribeStatus,
    *,
    transcript_url: Optional[str] = None,
    duration: Optional[int] = None,
) -> TransitionOutcome:
    """Record the worker's result. Only the lock manager calls this.

    A result arriving after the transcription already resolved is a no-op.
    """
    values: dict[str, Any] = {}
    if transcript_url is not None:
        values["transcript_url"] = transcript_url
    if duration is not None:
        values["duration_seconds"] = duration
    return await transition_episode(
        db, episode_id, TranscriptionFinished(status), values=values
    )


async def reset_transcription(
    db: AsyncSession,
    episode_id: int,
    *,
    deploy: Optional[DeployTrigger] = None,
) -> Episode:
    """Explicit user request to transcribe again (completed/failed/skipped -> pending)."""
    outcome = await transition_episode(
        db,
        episode_id,
        TranscriptionReset(),
        values={"transcript_url": None, "skip_transcription": False},
    )
    await _notify_if_visible(outcome, "transcript reset", deploy)
    return outcome.episode


async def skip_transcription(
    db: AsyncSession,
    episode_id: int,
    *,
    deploy: Optional[DeployTrigger] = None,
) -> Episode:
    """Give up on a transcript; a due publish_at then publishes immediately."""
    outcome = await transition_episode(
        db, episode_id, TranscriptionSkipped(), values={"skip_transcription": True}
    )
    await _notify_if_visible(outcome, "transcription skipped", deploy)
    return outcome.episode


async def publish_due_episodes(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    deploy: Optional[DeployTrigger] = None,
) -> int:
    """Flip scheduled episodes whose publish_at has elapsed. Returns the count."""
    now = now or utc_now()
    async with db.begin():
        result = await db.execute(
            select(Episode.id)
            .where(
                and_(
                    Episode.publish_status == PublishStatus.scheduled,  # type: ignore[arg-type]
                    Episode.publish_at <= now,  # type: ignore[operator]
                    Episode.transcribe_status.in_(RESOLVED_TRANSCRIBE_STATUSES),  # type: ignore[attr-defined]
                )
            )
            .order_by(Episode.publish_at, Episode.id)
        )
        due_ids = list(result.scalars().all())

    published = 0
    trigger = deploy or deploy_trigger
    async with trigger.batch():
        for episode_id in due_ids:
            try:
                outcome = await transition_episode(db, episode_id, PublishDue(), now=now)
            except (EpisodeNotFound, LockConflict) as exc:
                logger.warning(f"Skipping scheduled publish of episode {episode_id}: {exc.detail}")
                continue
            if outcome.became_published:
                published += 1
                await trigger.notify_change("scheduled publish")
    logger.info(f"Scheduled publish sweep: {published}/{len(due_ids)} episodes published")
    return published


async def delete_episode(
    db: AsyncSession,
    storage: StorageClient,
    episode_id: int,
    *,
    deploy: Optional[DeployTrigger] = None,
) -> None:
    """Delete the row, then every artifact under its storage directory."""
    async with db.begin():
        episode = await _load_episode(db, episode_id)
        was_published = episode.publish_status == PublishStatus.published
        prefix = f"episodes/{episode.storage_key}/"
        await db.delete(episode)

    await storage.delete_prefix(prefix)
    logger.info(f"Deleted episode {episode_id}")
    if was_published:
        await (deploy or deploy_trigger).notify_change(f"episode deleted (episode {episode_id})")
