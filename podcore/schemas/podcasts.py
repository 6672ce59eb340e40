"""Podcast table carrying the per-podcast auto-fetch settings."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Podcast(SQLModel, table=True):  # type: ignore[call-arg]
    """A podcast managed by the admin.

    Settings for the external URL auto-fetch live here and are only
    mutated by the user.
    """

    __tablename__ = "podcasts"

    id: Optional[int] = Field(default=None, primary_key=True)
    slug: str = Field(unique=True)
    title: str

    # Apple Podcasts collectionId
    apple_podcasts_id: Optional[str] = Field(default=None)
    apple_podcasts_auto_fetch: bool = Field(default=False)

    spotify_show_id: Optional[str] = Field(default=None)
    spotify_auto_fetch: bool = Field(default=False)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
