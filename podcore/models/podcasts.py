"""Request/response models for podcast settings, auto-fetch tasks and deploys."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from podcore.models.base import ApiModel
from podcore.models.episodes import Slug


class PodcastCreate(ApiModel):
    slug: Slug
    title: str = Field(min_length=1)
    apple_podcasts_id: Optional[str] = None
    apple_podcasts_auto_fetch: bool = False
    spotify_show_id: Optional[str] = None
    spotify_auto_fetch: bool = False


class PodcastSettingsRead(ApiModel):
    """Per-podcast auto-fetch settings as shown in the admin settings page."""

    id: int
    slug: str
    title: str
    apple_podcasts_id: Optional[str] = None
    apple_podcasts_auto_fetch: bool
    spotify_show_id: Optional[str] = None
    spotify_auto_fetch: bool
    # Derived from server credentials, not stored
    spotify_configured: bool = False


class PodcastSettingsUpdate(ApiModel):
    """Partial settings update; absent fields are left untouched."""

    title: Optional[str] = Field(default=None, min_length=1)
    apple_podcasts_id: Optional[str] = None
    apple_podcasts_auto_fetch: Optional[bool] = None
    spotify_show_id: Optional[str] = None
    spotify_auto_fetch: Optional[bool] = None


class TaskRunRead(ApiModel):
    task_id: str
    task_type: str
    podcast_id: int
    status: Literal["running", "done", "failed"]
    started_at: datetime
    finished_at: Optional[datetime] = None
    progress_label: str = ""
    message: Optional[str] = None


class TaskListResponse(ApiModel):
    tasks: list[TaskRunRead]


class FetchRunResult(ApiModel):
    """Outcome of one Apple or Spotify fetch run for a podcast."""

    task_type: str
    status: Literal["done", "failed", "skipped"]
    checked: int = 0
    updated: int = 0
    message: Optional[str] = None


class AutoFetchResponse(ApiModel):
    results: list[FetchRunResult]


class DeployResponse(ApiModel):
    triggered: bool
