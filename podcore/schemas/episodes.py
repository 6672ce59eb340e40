"""Episodes table and lifecycle status enums."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Index, Text, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel


class PublishStatus(str, enum.Enum):
    """Where an episode is on the way to the public site."""

    new = "new"
    uploading = "uploading"
    draft = "draft"
    scheduled = "scheduled"
    published = "published"


class TranscribeStatus(str, enum.Enum):
    """Progress of the external transcription job."""

    none = "none"
    pending = "pending"
    transcribing = "transcribing"
    completed = "completed"
    failed = "failed"
    skipped = "skipped"


class Episode(SQLModel, table=True):  # type: ignore[call-arg]
    """A podcast episode and its lifecycle state.

    ``publish_status`` and ``transcribe_status`` are written only through
    ``episode_state_service``. ``locked_at`` is the transcription soft lock:
    it is non-null exactly while ``transcribe_status`` is ``transcribing``.
    """

    __tablename__ = "episodes"
    __table_args__ = (
        UniqueConstraint("podcast_id", "slug", name="uq_episodes_podcast_slug"),
        Index("ix_episodes_transcribe_queue", "transcribe_status", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    podcast_id: int = Field(foreign_key="podcasts.id", index=True)
    slug: str
    # Artifact directory in object storage; fixed at creation
    storage_key: str = Field(unique=True)

    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))

    publish_status: PublishStatus = Field(
        default=PublishStatus.new,
        sa_column=Column(
            SAEnum(PublishStatus, name="publish_status_enum"),
            nullable=False,
            index=True,
        ),
    )
    transcribe_status: TranscribeStatus = Field(
        default=TranscribeStatus.none,
        sa_column=Column(
            SAEnum(TranscribeStatus, name="transcribe_status_enum"),
            nullable=False,
        ),
    )
    skip_transcription: bool = Field(default=False)

    publish_at: Optional[datetime] = Field(default=None)  # None means draft
    published_at: Optional[datetime] = Field(default=None)
    locked_at: Optional[datetime] = Field(default=None)

    # Audio / transcript artifacts
    duration_seconds: Optional[int] = Field(default=None)
    file_size_bytes: Optional[int] = Field(default=None)
    transcript_url: Optional[str] = Field(default=None)

    # External catalog matching
    source_guid: Optional[str] = Field(default=None, index=True)
    apple_podcasts_url: Optional[str] = Field(default=None)
    apple_podcasts_fetched_at: Optional[datetime] = Field(default=None)
    spotify_url: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def audio_key(self) -> str:
        return f"episodes/{self.storage_key}/audio.mp3"

    @property
    def raw_transcript_key(self) -> str:
        return f"episodes/{self.storage_key}/transcript.json"

    @property
    def caption_key(self) -> str:
        return f"episodes/{self.storage_key}/transcript.vtt"
