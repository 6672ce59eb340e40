"""Unit tests for transcript validation and WebVTT rendering."""

import json

import pytest

from podcore.models.transcripts import TranscriptData, TranscriptSegment
from podcore.services.errors import InvalidTranscriptArtifact
from podcore.services.vtt_service import convert_to_vtt, format_vtt_time, parse_transcript


class TestFormatVttTime:
    def test_zero(self) -> None:
        assert format_vtt_time(0) == "00:00:00.000"

    def test_minutes_and_fraction(self) -> None:
        assert format_vtt_time(125.5) == "00:02:05.500"

    def test_hours(self) -> None:
        assert format_vtt_time(3661.25) == "01:01:01.250"

    def test_rounding_carries_into_seconds(self) -> None:
        """0.9996s rounds up to a full second instead of printing 1000ms."""
        assert format_vtt_time(0.9996) == "00:00:01.000"


class TestConvertToVtt:
    def test_cues_are_numbered_and_separated(self) -> None:
        data = TranscriptData(
            segments=[
                TranscriptSegment(start=0, end=1.5, text="Hello"),
                TranscriptSegment(start=1.5, end=3, text="World"),
            ]
        )
        assert convert_to_vtt(data) == (
            "WEBVTT\n"
            "\n"
            "1\n"
            "00:00:00.000 --> 00:00:01.500\n"
            "Hello\n"
            "\n"
            "2\n"
            "00:00:01.500 --> 00:00:03.000\n"
            "World\n"
        )

    def test_speaker_becomes_voice_span(self) -> None:
        data = TranscriptData(
            segments=[TranscriptSegment(start=0, end=2, text="Hi there", speaker="Host")]
        )
        assert "<v Host>Hi there</v>" in convert_to_vtt(data)

    def test_empty_transcript_is_header_only(self) -> None:
        assert convert_to_vtt(TranscriptData(segments=[])) == "WEBVTT\n"


class TestParseTranscript:
    def test_valid_artifact(self) -> None:
        raw = json.dumps(
            {
                "segments": [{"start": 0, "end": 1, "text": "a", "speaker": "A"}],
                "language": "ja",
            }
        ).encode()
        data = parse_transcript(raw)
        assert data.language == "ja"
        assert data.segments[0].speaker == "A"

    def test_not_json(self) -> None:
        with pytest.raises(InvalidTranscriptArtifact):
            parse_transcript(b"not json")

    def test_missing_segments(self) -> None:
        with pytest.raises(InvalidTranscriptArtifact):
            parse_transcript(b'{"language": "en"}')

    def test_negative_start(self) -> None:
        raw = b'{"segments": [{"start": -1, "end": 1, "text": "a"}]}'
        with pytest.raises(InvalidTranscriptArtifact):
            parse_transcript(raw)

    def test_non_string_text(self) -> None:
        raw = b'{"segments": [{"start": 0, "end": 1, "text": 5}]}'
        with pytest.raises(InvalidTranscriptArtifact):
            parse_transcript(raw)
