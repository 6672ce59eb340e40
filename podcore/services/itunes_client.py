"""Apple Podcasts (iTunes Search API) catalog client.

Both endpoints share one process-wide gate enforcing a minimum spacing
between requests. A 429 raises ``RateLimited`` and is never retried here.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import httpx

from podcore.config import settings
from podcore.services.errors import RateLimited, UpstreamUnavailable
from podcore.services.rate_limiter import MinIntervalGate, apple_rate_limiter

logger = logging.getLogger(__name__)

ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup"
ITUNES_SEARCH_URL = "https://itunes.apple.com/search"
SEARCH_RESULT_LIMIT = 20

_ITUNES_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)
_TRACKING_SUFFIX = re.compile(r"&uo=\d+$")


def clean_track_url(url: str) -> str:
    """Drop the trailing ``&uo=N`` tracking parameter Apple appends."""
    return _TRACKING_SUFFIX.sub("", url)


def _episode_results(payload: Any) -> list[dict[str, Any]]:
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        return []
    return [
        item
        for item in results
        if isinstance(item, dict)
        and item.get("wrapperType") == "podcastEpisode"
        and item.get("episodeGuid")
        and item.get("trackViewUrl")
    ]


class ITunesClient:
    """Bulk lookup and per-episode title search against the iTunes API."""

    def __init__(
        self,
        *,
        gate: Optional[MinIntervalGate] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._gate = gate
        self._transport = transport

    @property
    def gate(self) -> MinIntervalGate:
        return self._gate or apple_rate_limiter()

    async def _get(self, url: str, params: dict[str, Any]) -> httpx.Response:
        await self.gate.wait()
        async with httpx.AsyncClient(timeout=_ITUNES_TIMEOUT, transport=self._transport) as client:
            response = await client.get(url, params=params)
        if response.status_code == 429:
            logger.warning(f"Apple API rate limited ({url})")
            raise RateLimited("Apple Podcasts", response.headers.get("Retry-After"))
        return response

    async def lookup_episodes(
        self, podcast_id: str, limit: Optional[int] = None
    ) -> dict[str, str]:
        """Map episode GUID -> Apple Podcasts URL for the show's recent episodes.

        Apple returns at most 200 episodes; older ones need ``search_episode``.

        Raises:
            RateLimited: Apple answered 429.
            UpstreamUnavailable: network error, non-2xx status or unparseable body.
        """
        params = {
            "id": podcast_id,
            "media": "podcast",
            "entity": "podcastEpisode",
            "limit": limit or settings.apple_lookup_limit,
        }
        try:
            response = await self._get(ITUNES_LOOKUP_URL, params)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Cannot reach Apple API: {exc}") from exc

        if not response.is_success:
            raise UpstreamUnavailable(f"iTunes lookup error: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("iTunes lookup returned an unreadable body") from exc

        episode_map = {
            item["episodeGuid"]: clean_track_url(item["trackViewUrl"])
            for item in _episode_results(payload)
        }
        logger.info(f"iTunes lookup for {podcast_id}: {len(episode_map)} episodes")
        return episode_map

    async def search_episode(
        self, title: str, guid: str, podcast_id: Optional[str] = None
    ) -> Optional[str]:
        """Find one episode by title, confirmed by GUID (and collection id).

        Returns None on no match or on any failure other than 429.
        """
        params = {
            "term": title,
            "media": "podcast",
            "entity": "podcastEpisode",
            "limit": SEARCH_RESULT_LIMIT,
        }
        try:
            response = await self._get(ITUNES_SEARCH_URL, params)
        except httpx.HTTPError as exc:
            logger.warning(f"iTunes search failed for '{title}': {exc}")
            return None

        if not response.is_success:
            logger.warning(f"iTunes search error {response.status_code} for '{title}'")
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"iTunes search returned an unreadable body for '{title}'")
            return None

        for item in _episode_results(payload):
            if item["episodeGuid"] != guid:
                continue
            if podcast_id and str(item.get("collectionId")) != str(podcast_id):
                continue
            return clean_track_url(item["trackViewUrl"])
        return None


def get_itunes_client() -> ITunesClient:
    return ITunesClient()
