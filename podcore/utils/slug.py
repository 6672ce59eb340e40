"""Slug generation utilities for episode URLs."""

import re
import secrets
import unicodedata
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

SLUG_PATTERN = re.compile(r"^[a-z0-9]$|^[a-z0-9][a-z0-9-]*[a-z0-9]$")


def is_valid_slug(slug: str) -> bool:
    """Lowercase letters, digits and inner hyphens only."""
    return bool(SLUG_PATTERN.match(slug))


def generate_slug(name: str) -> str:
    """Convert a title to a URL-safe slug.

    Args:
        name: The title to convert (e.g., "Episode 12: Hello, World")

    Returns:
        URL-safe slug (e.g., "episode-12-hello-world")
    """
    if not name:
        return ""

    # Normalize unicode characters (é -> e, etc.)
    normalized = unicodedata.normalize("NFKD", name)
    ascii_text = normalized.encode("ascii", "ignore").decode("ascii")

    lower = ascii_text.lower()

    # Replace spaces and underscores with hyphens
    hyphenated = re.sub(r"[\s_]+", "-", lower)

    # Remove any character that isn't alphanumeric or hyphen
    cleaned = re.sub(r"[^a-z0-9-]", "", hyphenated)

    collapsed = re.sub(r"-+", "-", cleaned)
    return collapsed.strip("-")


def generate_storage_key(slug: str) -> str:
    """Unguessable artifact directory name for an episode."""
    return f"{slug}-{secrets.token_hex(6)}"


def _slug_query(slug: str, podcast_id: int, exclude_id: Optional[int]):
    from podcore.schemas.episodes import Episode

    query = select(Episode.id).where(
        Episode.podcast_id == podcast_id,  # type: ignore[arg-type]
        Episode.slug == slug,  # type: ignore[arg-type]
    )
    if exclude_id is not None:
        query = query.where(Episode.id != exclude_id)  # type: ignore[arg-type]
    return query


async def is_slug_taken(
    slug: str,
    db: AsyncSession,
    podcast_id: int,
    exclude_id: Optional[int] = None,
) -> bool:
    """Return True when another episode of the podcast already uses ``slug``."""
    result = await db.execute(_slug_query(slug, podcast_id, exclude_id))
    return result.first() is not None


async def generate_unique_episode_slug(
    title: str,
    db: AsyncSession,
    podcast_id: int,
    exclude_id: Optional[int] = None,
) -> str:
    """Slug unique within the podcast: ``base``, then ``base-2``, ``base-3``...

    Titles with no ASCII content (e.g. Japanese titles) fall back to
    ``ep-<n>`` numbered by the podcast's episode count.
    """
    from podcore.schemas.episodes import Episode

    base = generate_slug(title)
    if not base:
        count = await db.execute(
            select(func.count()).select_from(Episode).where(Episode.podcast_id == podcast_id)  # type: ignore[arg-type]
        )
        base = f"ep-{count.scalar_one() + 1:03d}"

    candidate, n = base, 1
    while await is_slug_taken(candidate, db, podcast_id, exclude_id):
        n += 1
        candidate = f"{base}-{n}"
    return candidate
