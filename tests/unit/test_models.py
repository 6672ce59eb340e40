"""Unit tests for request/response models and slug helpers."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from podcore.models.episodes import (
    EpisodeCreate,
    EpisodeUpdate,
    TranscriptionCompleteRequest,
    TransitionRequest,
    UploadCompleteRequest,
)
from podcore.models.podcasts import PodcastCreate
from podcore.schemas.episodes import PublishStatus
from podcore.utils.slug import generate_slug, is_valid_slug


class TestTransitionRequest:
    def test_status_only(self) -> None:
        req = TransitionRequest.model_validate({"publishStatus": "published"})
        assert req.publish_status == PublishStatus.published

    def test_publish_at_only(self) -> None:
        req = TransitionRequest.model_validate({"publishAt": "2026-03-02T09:00:00"})
        assert req.publish_at == datetime(2026, 3, 2, 9, 0)

    def test_explicit_null_publish_at_counts(self) -> None:
        req = TransitionRequest.model_validate({"publishAt": None})
        assert "publish_at" in req.model_fields_set
        assert req.publish_at is None

    def test_both_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TransitionRequest.model_validate(
                {"publishStatus": "draft", "publishAt": "2026-03-02T09:00:00"}
            )

    def test_neither_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TransitionRequest.model_validate({})

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TransitionRequest.model_validate({"publishStatus": "archived"})


class TestEpisodeBodies:
    def test_camel_case_aliases(self) -> None:
        body = EpisodeCreate.model_validate(
            {"podcastId": 3, "title": "Hello", "skipTranscription": True}
        )
        assert body.podcast_id == 3
        assert body.skip_transcription is True
        assert body.publish_at is None

    def test_invalid_slug(self) -> None:
        with pytest.raises(ValidationError):
            EpisodeCreate.model_validate({"podcastId": 1, "title": "x", "slug": "Bad Slug"})

    def test_update_tracks_present_fields(self) -> None:
        body = EpisodeUpdate.model_validate({"publishAt": None, "title": "New"})
        assert body.model_fields_set == {"publish_at", "title"}

    def test_upload_complete_rejects_negative_duration(self) -> None:
        with pytest.raises(ValidationError):
            UploadCompleteRequest.model_validate({"duration": -1})

    def test_transcription_complete_status(self) -> None:
        assert TranscriptionCompleteRequest.model_validate({"status": "failed"}).status == "failed"
        with pytest.raises(ValidationError):
            TranscriptionCompleteRequest.model_validate({"status": "skipped"})

    def test_podcast_slug_validated(self) -> None:
        with pytest.raises(ValidationError):
            PodcastCreate.model_validate({"slug": "-x-", "title": "P"})


class TestSlugs:
    def test_generate_slug(self) -> None:
        assert generate_slug("Episode 12: Hello, World") == "episode-12-hello-world"

    def test_non_ascii_title_is_empty(self) -> None:
        assert generate_slug("日本語のタイトル") == ""

    @pytest.mark.parametrize("slug", ["a", "ep-12", "0-9"])
    def test_valid(self, slug: str) -> None:
        assert is_valid_slug(slug)

    @pytest.mark.parametrize("slug", ["", "-a", "a-", "A", "a_b", "a b"])
    def test_invalid(self, slug: str) -> None:
        assert not is_valid_slug(slug)
