"""Error taxonomy for the episode lifecycle core.

Each error carries the HTTP status and a stable machine-readable code so the
UI and the transcription worker can tell "already being processed" apart
from "not ready yet". ``podcore.main`` turns them into JSON responses.
"""


class EpisodeCoreError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidStateTransition(EpisodeCoreError):
    """Requested transition is not legal from the current state. Never retried."""

    status_code = 400
    code = "invalid_state"


class InvalidTranscriptArtifact(EpisodeCoreError):
    """The worker-uploaded transcript is missing or malformed."""

    status_code = 400
    code = "invalid_transcript"


class LockConflict(EpisodeCoreError):
    """Another live lock (or a concurrent writer) holds the episode.

    Expected under concurrent workers; callers back off and re-poll.
    """

    status_code = 409
    code = "lock_conflict"


class NotFound(EpisodeCoreError):
    status_code = 404
    code = "not_found"


class EpisodeNotFound(NotFound):
    def __init__(self, episode_id: int) -> None:
        super().__init__(f"Episode {episode_id} not found")
        self.episode_id = episode_id


class PodcastNotFound(NotFound):
    def __init__(self, podcast_id: int) -> None:
        super().__init__(f"Podcast {podcast_id} not found")
        self.podcast_id = podcast_id


class RateLimited(EpisodeCoreError):
    """A third-party API answered 429. Stops the current run; not retried."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, service: str, retry_after: str | None = None) -> None:
        message = f"{service} rate limit reached. Wait a while and retry."
        if retry_after:
            message = f"{service} rate limit reached. Retry after {retry_after} seconds."
        super().__init__(message)
        self.service = service
        self.retry_after = retry_after


class UpstreamUnavailable(EpisodeCoreError):
    """Network error or 5xx from a third-party API. Callers retry with backoff."""

    status_code = 502
    code = "upstream_unavailable"


class SlugConflict(EpisodeCoreError):
    status_code = 409
    code = "slug_conflict"


class NotConfigured(EpisodeCoreError):
    """A platform ID or API credential needed for the request is missing."""

    status_code = 400
    code = "not_configured"
