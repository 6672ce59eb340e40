"""Raw transcript JSON to WebVTT captions."""

import json

from pydantic import ValidationError

from podcore.models.transcripts import TranscriptData
from podcore.services.errors import InvalidTranscriptArtifact


def format_vtt_time(seconds: float) -> str:
    """125.5 -> "00:02:05.500"."""
    total_ms = int(round(seconds * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, ms = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{ms:03d}"


def convert_to_vtt(data: TranscriptData) -> str:
    """Render segments as numbered cues; speakers become ``<v>`` voice spans."""
    lines = ["WEBVTT", ""]
    for index, segment in enumerate(data.segments, start=1):
        lines.append(str(index))
        lines.append(f"{format_vtt_time(segment.start)} --> {format_vtt_time(segment.end)}")
        if segment.speaker:
            lines.append(f"<v {segment.speaker}>{segment.text}</v>")
        else:
            lines.append(segment.text)
        lines.append("")
    return "\n".join(lines)


def parse_transcript(raw: bytes) -> TranscriptData:
    """Decode and validate the worker's transcript artifact.

    Raises:
        InvalidTranscriptArtifact: the body is not JSON or does not match
            ``{"segments": [{start, end, text, speaker?}], "language"?}``.
    """
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidTranscriptArtifact(f"Transcript is not valid JSON: {exc}") from exc
    try:
        return TranscriptData.model_validate(payload)
    except ValidationError as exc:
        raise InvalidTranscriptArtifact(
            f"Transcript has an invalid shape ({exc.error_count()} errors)"
        ) from exc
