"""Initial schema: podcasts and episodes.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from alembic import op  # type: ignore[attr-defined]
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None

PUBLISH_STATUSES = ("new", "uploading", "draft", "scheduled", "published")
TRANSCRIBE_STATUSES = ("none", "pending", "transcribing", "completed", "failed", "skipped")


def _enums():
    return (
        postgresql.ENUM(*PUBLISH_STATUSES, name="publish_status_enum", create_type=False),
        postgresql.ENUM(*TRANSCRIBE_STATUSES, name="transcribe_status_enum", create_type=False),
    )


def upgrade() -> None:
    publish_status_enum, transcribe_status_enum = _enums()
    publish_status_enum.create(op.get_bind(), checkfirst=True)
    transcribe_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "podcasts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("apple_podcasts_id", sa.String(), nullable=True),
        sa.Column("apple_podcasts_auto_fetch", sa.Boolean(), nullable=False),
        sa.Column("spotify_show_id", sa.String(), nullable=True),
        sa.Column("spotify_auto_fetch", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "episodes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("podcast_id", sa.Integer(), sa.ForeignKey("podcasts.id"), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("storage_key", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("publish_status", publish_status_enum, nullable=False),
        sa.Column("transcribe_status", transcribe_status_enum, nullable=False),
        sa.Column("skip_transcription", sa.Boolean(), nullable=False),
        sa.Column("publish_at", sa.DateTime(), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("file_size_bytes", sa.Integer(), nullable=True),
        sa.Column("transcript_url", sa.String(), nullable=True),
        sa.Column("source_guid", sa.String(), nullable=True),
        sa.Column("apple_podcasts_url", sa.String(), nullable=True),
        sa.Column("apple_podcasts_fetched_at", sa.DateTime(), nullable=True),
        sa.Column("spotify_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("storage_key"),
        sa.UniqueConstraint("podcast_id", "slug", name="uq_episodes_podcast_slug"),
    )
    op.create_index("ix_episodes_podcast_id", "episodes", ["podcast_id"])
    op.create_index("ix_episodes_publish_status", "episodes", ["publish_status"])
    op.create_index("ix_episodes_source_guid", "episodes", ["source_guid"])
    op.create_index(
        "ix_episodes_transcribe_queue", "episodes", ["transcribe_status", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_episodes_transcribe_queue", table_name="episodes")
    op.drop_index("ix_episodes_source_guid", table_name="episodes")
    op.drop_index("ix_episodes_publish_status", table_name="episodes")
    op.drop_index("ix_episodes_podcast_id", table_name="episodes")
    op.drop_table("episodes")
    op.drop_table("podcasts")
    publish_status_enum, transcribe_status_enum = _enums()
    transcribe_status_enum.drop(op.get_bind(), checkfirst=True)
    publish_status_enum.drop(op.get_bind(), checkfirst=True)
