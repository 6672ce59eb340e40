"""Episode lifecycle transition table.

Pure module: no I/O, no clock reads. ``apply_transition`` is the one place
that decides whether a change to ``publish_status`` / ``transcribe_status``
is legal and what the resulting state is. Persistence (and the
compare-and-set that guards it) lives in ``episode_state_service``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from podcore.schemas.episodes import Episode, PublishStatus, TranscribeStatus
from podcore.services.errors import InvalidStateTransition, LockConflict

DEFAULT_LOCK_TTL = timedelta(hours=1)

# Legal publish_status moves. new -> uploading -> draft happens only on
# upload completion; draft/scheduled/published follow publish_at.
PUBLISH_TRANSITIONS: dict[PublishStatus, frozenset[PublishStatus]] = {
    PublishStatus.new: frozenset({PublishStatus.uploading}),
    PublishStatus.uploading: frozenset({PublishStatus.draft}),
    PublishStatus.draft: frozenset({PublishStatus.scheduled, PublishStatus.published}),
    PublishStatus.scheduled: frozenset({PublishStatus.draft, PublishStatus.published}),
    PublishStatus.published: frozenset({PublishStatus.draft, PublishStatus.scheduled}),
}

# Legal transcribe_status moves. completed and skipped are terminal here;
# only the explicit user reset (TranscriptionReset) leaves them.
TRANSCRIBE_TRANSITIONS: dict[TranscribeStatus, frozenset[TranscribeStatus]] = {
    TranscribeStatus.none: frozenset({TranscribeStatus.pending, TranscribeStatus.skipped}),
    TranscribeStatus.pending: frozenset({TranscribeStatus.transcribing, TranscribeStatus.skipped}),
    TranscribeStatus.transcribing: frozenset(
        {
            TranscribeStatus.transcribing,
            TranscribeStatus.completed,
            TranscribeStatus.failed,
            TranscribeStatus.pending,
        }
    ),
    # failed -> transcribing: a worker claims the episode again to retry
    TranscribeStatus.failed: frozenset(
        {TranscribeStatus.pending, TranscribeStatus.skipped, TranscribeStatus.transcribing}
    ),
    TranscribeStatus.completed: frozenset(),
    TranscribeStatus.skipped: frozenset(),
}

RESETTABLE_TRANSCRIBE_STATUSES = frozenset(
    {TranscribeStatus.completed, TranscribeStatus.failed, TranscribeStatus.skipped}
)

# publish_status may only move into scheduled/published from these
RESOLVED_TRANSCRIBE_STATUSES = frozenset(
    {TranscribeStatus.completed, TranscribeStatus.skipped, TranscribeStatus.failed}
)

AUDIO_READY_PUBLISH_STATUSES = frozenset(
    {PublishStatus.draft, PublishStatus.scheduled, PublishStatus.published}
)


@dataclass(frozen=True, slots=True)
class EpisodeState:
    """Snapshot of the lifecycle columns of one episode."""

    publish_status: PublishStatus
    transcribe_status: TranscribeStatus
    publish_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None

    @classmethod
    def from_episode(cls, episode: Episode) -> EpisodeState:
        return cls(
            publish_status=episode.publish_status,
            transcribe_status=episode.transcribe_status,
            publish_at=episode.publish_at,
            published_at=episode.published_at,
            locked_at=episode.locked_at,
        )

    def changes_from(self, previous: EpisodeState) -> dict[str, Any]:
        """Column values that differ from ``previous``."""
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if getattr(self, name) != getattr(previous, name)
        }


# Transition variants


@dataclass(frozen=True, slots=True)
class UploadCompleted:
    skip_transcription: bool = False


@dataclass(frozen=True, slots=True)
class SetPublishAt:
    """User edit of publish_at. Deferred while transcription is unresolved."""

    publish_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class RequestPublishStatus:
    """Explicit "publish now" / "unpublish" / "schedule" request."""

    status: PublishStatus


@dataclass(frozen=True, slots=True)
class PublishDue:
    """Cron sweep: scheduled episodes whose publish_at has elapsed."""


@dataclass(frozen=True, slots=True)
class LockAcquired:
    ttl: timedelta = DEFAULT_LOCK_TTL


@dataclass(frozen=True, slots=True)
class LockReleased:
    pass


@dataclass(frozen=True, slots=True)
class TranscriptionFinished:
    status: TranscribeStatus


@dataclass(frozen=True, slots=True)
class TranscriptionReset:
    pass


@dataclass(frozen=True, slots=True)
class TranscriptionSkipped:
    pass


Transition = Union[
    UploadCompleted,
    SetPublishAt,
    RequestPublishStatus,
    PublishDue,
    LockAcquired,
    LockReleased,
    TranscriptionFinished,
    TranscriptionReset,
    TranscriptionSkipped,
]


def status_for_publish_at(publish_at: Optional[datetime], now: datetime) -> PublishStatus:
    """Map publish_at to the publish status it implies at ``now``."""
    if publish_at is None:
        return PublishStatus.draft
    if publish_at > now:
        return PublishStatus.scheduled
    return PublishStatus.published


def is_lock_live(
    locked_at: Optional[datetime], now: datetime, ttl: timedelta = DEFAULT_LOCK_TTL
) -> bool:
    """A soft lock is live while less than ``ttl`` has passed since it was taken."""
    if locked_at is None:
        return False
    return now - locked_at < ttl


def is_lockable(
    state: EpisodeState, now: datetime, ttl: timedelta = DEFAULT_LOCK_TTL
) -> bool:
    """True when a worker may take the transcription lock right now.

    A failed episode may be claimed again directly; it is not listed in the
    queue, so only an explicit retry picks it up.
    """
    if state.transcribe_status in (TranscribeStatus.pending, TranscribeStatus.failed):
        return True
    return state.transcribe_status == TranscribeStatus.transcribing and not is_lock_live(
        state.locked_at, now, ttl
    )


def can_enter_public_state(transcribe_status: TranscribeStatus) -> bool:
    return transcribe_status in RESOLVED_TRANSCRIBE_STATUSES


def apply_transition(state: EpisodeState, transition: Transition, now: datetime) -> EpisodeState:
    """Return the state after ``transition`` or raise if it is not legal.

    Raises:
        InvalidStateTransition: the transition is not allowed from ``state``.
        LockConflict: a live transcription lock blocks the transition.
    """
    if isinstance(transition, UploadCompleted):
        return _upload_completed(state, transition, now)
    if isinstance(transition, SetPublishAt):
        return _set_publish_at(state, transition, now)
    if isinstance(transition, RequestPublishStatus):
        return _request_publish_status(state, transition, now)
    if isinstance(transition, PublishDue):
        if state.publish_status != PublishStatus.scheduled or not can_enter_public_state(
            state.transcribe_status
        ):
            return state
        return _resolve_publish(state, now, explicit=False)
    if isinstance(transition, LockAcquired):
        return _lock_acquired(state, transition, now)
    if isinstance(transition, LockReleased):
        if state.transcribe_status != TranscribeStatus.transcribing:
            return state
        return _move_transcribe(state, TranscribeStatus.pending)
    if isinstance(transition, TranscriptionFinished):
        return _transcription_finished(state, transition, now)
    if isinstance(transition, TranscriptionReset):
        return _transcription_reset(state)
    if isinstance(transition, TranscriptionSkipped):
        return _transcription_skipped(state, now)
    raise TypeError(f"Unknown transition: {transition!r}")


def _move_transcribe(state: EpisodeState, target: TranscribeStatus) -> EpisodeState:
    if target not in TRANSCRIBE_TRANSITIONS[state.transcribe_status]:
        raise InvalidStateTransition(
            f"Cannot move transcription from {state.transcribe_status.value} to {target.value}"
        )
    locked_at = state.locked_at if target == TranscribeStatus.transcribing else None
    return replace(state, transcribe_status=target, locked_at=locked_at)


def _move_publish(state: EpisodeState, target: PublishStatus, now: datetime) -> EpisodeState:
    if target == state.publish_status:
        return state
    if target not in PUBLISH_TRANSITIONS[state.publish_status]:
        raise InvalidStateTransition(
            f"Cannot move episode from {state.publish_status.value} to {target.value}"
        )
    published_at = state.published_at
    if target == PublishStatus.published:
        published_at = now
    elif state.publish_status == PublishStatus.published:
        published_at = None
    return replace(state, publish_status=target, published_at=published_at)


def _resolve_publish(state: EpisodeState, now: datetime, *, explicit: bool) -> EpisodeState:
    """Move an audio-ready episode to the status its publish_at implies.

    While the transcription is unresolved a draft stays draft (the move is
    deferred until the worker reports back); an explicit request fails.
    """
    if state.publish_status not in AUDIO_READY_PUBLISH_STATUSES:
        return state
    target = status_for_publish_at(state.publish_at, now)
    if (
        target != state.publish_status
        and target in (PublishStatus.scheduled, PublishStatus.published)
        and not can_enter_public_state(state.transcribe_status)
    ):
        if state.publish_status == PublishStatus.draft and not explicit:
            return state
        raise InvalidStateTransition(
            f"Cannot make episode {target.value} while transcription is "
            f"{state.transcribe_status.value}"
        )
    return _move_publish(state, target, now)


def _upload_completed(state: EpisodeState, transition: UploadCompleted, now: datetime) -> EpisodeState:
    if state.publish_status not in (PublishStatus.new, PublishStatus.uploading):
        raise InvalidStateTransition(
            f"Audio upload already completed (episode is {state.publish_status.value})"
        )
    seed = TranscribeStatus.skipped if transition.skip_transcription else TranscribeStatus.pending
    if state.publish_status == PublishStatus.new:
        state = _move_publish(state, PublishStatus.uploading, now)
    state = _move_publish(state, PublishStatus.draft, now)
    state = _move_transcribe(state, seed)
    return _resolve_publish(state, now, explicit=False)


def _set_publish_at(state: EpisodeState, transition: SetPublishAt, now: datetime) -> EpisodeState:
    state = replace(state, publish_at=transition.publish_at)
    return _resolve_publish(state, now, explicit=False)


def _request_publish_status(
    state: EpisodeState, transition: RequestPublishStatus, now: datetime
) -> EpisodeState:
    if state.publish_status not in AUDIO_READY_PUBLISH_STATUSES:
        raise InvalidStateTransition(
            f"Episode has no audio yet (status {state.publish_status.value})"
        )
    target = transition.status
    if target == PublishStatus.draft:
        publish_at = None
    elif target == PublishStatus.published:
        publish_at = state.publish_at
        if publish_at is None or publish_at > now:
            publish_at = now
    elif target == PublishStatus.scheduled:
        if state.publish_at is None or state.publish_at <= now:
            raise InvalidStateTransition("Scheduling requires a publishAt in the future")
        publish_at = state.publish_at
    else:
        raise InvalidStateTransition(f"Cannot request publish status {target.value}")
    return _resolve_publish(replace(state, publish_at=publish_at), now, explicit=True)


def _lock_acquired(state: EpisodeState, transition: LockAcquired, now: datetime) -> EpisodeState:
    if state.transcribe_status == TranscribeStatus.transcribing and is_lock_live(
        state.locked_at, now, transition.ttl
    ):
        raise LockConflict("Episode is already being transcribed")
    if not is_lockable(state, now, transition.ttl):
        raise InvalidStateTransition(
            f"Episode is not waiting for transcription ({state.transcribe_status.value})"
        )
    state = _move_transcribe(state, TranscribeStatus.transcribing)
    return replace(state, locked_at=now)


def _transcription_finished(
    state: EpisodeState, transition: TranscriptionFinished, now: datetime
) -> EpisodeState:
    if transition.status not in (TranscribeStatus.completed, TranscribeStatus.failed):
        raise InvalidStateTransition(
            f"Transcription result must be completed or failed, got {transition.status.value}"
        )
    # A retried callback after the first one landed, or a late one after a skip
    if state.transcribe_status in RESOLVED_TRANSCRIBE_STATUSES:
        return state
    state = _move_transcribe(state, transition.status)
    if transition.status == TranscribeStatus.completed:
        state = _resolve_publish(state, now, explicit=False)
    return state


def _transcription_reset(state: EpisodeState) -> EpisodeState:
    if state.transcribe_status == TranscribeStatus.pending:
        return state
    if state.transcribe_status == TranscribeStatus.transcribing:
        raise LockConflict("Transcription is in progress")
    if state.transcribe_status not in RESETTABLE_TRANSCRIBE_STATUSES:
        raise InvalidStateTransition("Episode has no audio to transcribe")
    return replace(state, transcribe_status=TranscribeStatus.pending, locked_at=None)


def _transcription_skipped(state: EpisodeState, now: datetime) -> EpisodeState:
    if state.transcribe_status == TranscribeStatus.skipped:
        return state
    if state.transcribe_status == TranscribeStatus.transcribing:
        raise LockConflict("Transcription is in progress")
    if state.publish_status not in AUDIO_READY_PUBLISH_STATUSES:
        raise InvalidStateTransition("Episode has no audio yet")
    state = _move_transcribe(state, TranscribeStatus.skipped)
    return _resolve_publish(state, now, explicit=False)
