"""Request/response models for episode and transcription endpoints."""

from datetime import datetime
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, Field, model_validator

from podcore.models.base import ApiModel
from podcore.schemas.episodes import PublishStatus, TranscribeStatus
from podcore.utils.slug import is_valid_slug


class EpisodeRead(ApiModel):
    """Full episode view for the admin UI."""

    id: int
    podcast_id: int
    slug: str
    title: str
    description: str
    publish_status: PublishStatus
    transcribe_status: TranscribeStatus
    skip_transcription: bool
    publish_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    file_size_bytes: Optional[int] = None
    transcript_url: Optional[str] = None
    source_guid: Optional[str] = None
    apple_podcasts_url: Optional[str] = None
    apple_podcasts_fetched_at: Optional[datetime] = None
    spotify_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class EpisodeListResponse(ApiModel):
    items: list[EpisodeRead]
    total: int
    limit: int
    offset: int


def _check_slug(value: str) -> str:
    if not is_valid_slug(value):
        raise ValueError("Use lowercase letters, numbers, and hyphens only")
    return value


Slug = Annotated[str, AfterValidator(_check_slug)]


class EpisodeCreate(ApiModel):
    """Metadata-only episode creation; audio is uploaded afterwards."""

    podcast_id: int
    title: str = Field(min_length=1)
    description: str = ""
    slug: Optional[Slug] = None
    publish_at: Optional[datetime] = None  # None keeps the episode a draft
    skip_transcription: bool = False
    source_guid: Optional[str] = None


class EpisodeUpdate(ApiModel):
    """Partial update. Only fields present in the body are applied.

    Sending ``publishAt: null`` explicitly moves the episode back to draft.
    """

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    slug: Optional[Slug] = None
    publish_at: Optional[datetime] = None
    source_guid: Optional[str] = None
    apple_podcasts_url: Optional[str] = None
    spotify_url: Optional[str] = None


class TransitionRequest(ApiModel):
    """Either a target publish status or a new publishAt, not both."""

    publish_status: Optional[PublishStatus] = None
    publish_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "TransitionRequest":
        wants_status = self.publish_status is not None
        wants_publish_at = "publish_at" in self.model_fields_set
        if wants_status == wants_publish_at:
            raise ValueError("Provide exactly one of publishStatus or publishAt")
        return self


class UploadUrlResponse(ApiModel):
    upload_url: str
    expires_in: int


class AudioUrlResponse(ApiModel):
    download_url: str
    expires_in: int


class UploadCompleteRequest(ApiModel):
    duration: int = Field(ge=0)
    file_size: Optional[int] = Field(default=None, ge=0)
    # None keeps the choice made at creation time
    skip_transcription: Optional[bool] = None


class TranscriptionQueueItem(ApiModel):
    id: int
    slug: str
    title: str
    duration_seconds: Optional[int] = None
    transcribe_status: TranscribeStatus
    locked_at: Optional[datetime] = None
    created_at: datetime


class TranscriptionQueueResponse(ApiModel):
    episodes: list[TranscriptionQueueItem]


class TranscriptionCompleteRequest(ApiModel):
    status: Literal["completed", "failed"]
    duration: Optional[int] = Field(default=None, ge=0)


class TranscriptionStatusResponse(ApiModel):
    success: bool = True
    publish_status: PublishStatus
    transcribe_status: TranscribeStatus
