"""Raw transcript artifact uploaded by the transcription worker."""

from typing import Optional

from pydantic import BaseModel, Field, model_validator


class TranscriptSegment(BaseModel):
    start: float = Field(ge=0)
    end: float = Field(ge=0)
    text: str
    speaker: Optional[str] = None

    @model_validator(mode="after")
    def _ordered(self) -> "TranscriptSegment":
        if self.end < self.start:
            raise ValueError("segment end must not precede its start")
        return self


class TranscriptData(BaseModel):
    """``{"segments": [...], "language": "ja"}`` as written by the worker."""

    segments: list[TranscriptSegment]
    language: Optional[str] = None
