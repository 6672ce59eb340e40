"""Spotify Web API client (client credentials flow).

Fetches a show's episodes in bulk and matches them to local episodes by
normalized title.
"""

from __future__ import annotations

import logging
import re
import time
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import httpx

from podcore.config import settings
from podcore.services.errors import RateLimited, UpstreamUnavailable

logger = logging.getLogger(__name__)

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE = "https://api.spotify.com/v1"
PAGE_SIZE = 50  # API maximum
TOKEN_REFRESH_MARGIN_SECONDS = 60

_SPOTIFY_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)
_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """NFKC (full-width to half-width), lowercase, collapsed whitespace."""
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFKC", title).lower()).strip()


@dataclass(frozen=True)
class SpotifyEpisode:
    id: str
    name: str
    url: str


@dataclass(frozen=True)
class SpotifyMatch:
    episode_id: int
    spotify_url: Optional[str]
    matched_title: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.spotify_url is not None


def match_episodes_by_title(
    local_episodes: Sequence[tuple[int, str]],
    spotify_episodes: Sequence[SpotifyEpisode],
) -> list[SpotifyMatch]:
    """Exact normalized-title match first, then containment either way."""
    by_title: dict[str, SpotifyEpisode] = {}
    for episode in spotify_episodes:
        by_title.setdefault(normalize_title(episode.name), episode)

    matches = []
    for episode_id, title in local_episodes:
        wanted = normalize_title(title)
        found = by_title.get(wanted)
        if found is None and wanted:
            for candidate_title, candidate in by_title.items():
                if wanted in candidate_title or candidate_title in wanted:
                    found = candidate
                    break
        if found is None:
            logger.info(f"Spotify: no match for '{title}'")
            matches.append(SpotifyMatch(episode_id, None))
        else:
            matches.append(SpotifyMatch(episode_id, found.url, found.name))
    return matches


class SpotifyClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        market: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.market = market or settings.spotify_market
        self._transport = transport
        self._clock = clock
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=_SPOTIFY_TIMEOUT, transport=self._transport)

    async def get_access_token(self) -> str:
        """Cached bearer token, refreshed a minute before it expires."""
        if self._access_token and self._clock() < self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token

        try:
            async with self._http() as client:
                response = await client.post(
                    SPOTIFY_TOKEN_URL,
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Cannot reach Spotify: {exc}") from exc

        if not response.is_success:
            logger.error(f"Spotify token error: {response.status_code} - {response.text[:200]}")
            raise UpstreamUnavailable(f"Spotify token error: {response.status_code}")

        data = response.json()
        self._access_token = data["access_token"]
        self._token_expires_at = self._clock() + float(data.get("expires_in", 3600))
        logger.info(f"Spotify token acquired, expires in {data.get('expires_in')}s")
        return self._access_token

    async def fetch_show_episodes(self, show_id: str) -> list[SpotifyEpisode]:
        """Every episode of the show, following ``next`` page links.

        Raises:
            RateLimited: Spotify answered 429 (carries Retry-After).
            UpstreamUnavailable: any other failure.
        """
        token = await self.get_access_token()
        episodes: list[SpotifyEpisode] = []
        offset = 0

        async with self._http() as client:
            while True:
                params: dict[str, Any] = {
                    "market": self.market,
                    "limit": PAGE_SIZE,
                    "offset": offset,
                }
                try:
                    response = await client.get(
                        f"{SPOTIFY_API_BASE}/shows/{show_id}/episodes",
                        params=params,
                        headers={"Authorization": f"Bearer {token}"},
                    )
                except httpx.HTTPError as exc:
                    raise UpstreamUnavailable(f"Cannot reach Spotify: {exc}") from exc

                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After")
                    logger.error(f"Spotify API rate limited, retry after: {retry_after}s")
                    raise RateLimited("Spotify", retry_after)
                if not response.is_success:
                    logger.error(f"Spotify API error: {response.status_code} - {response.text[:200]}")
                    raise UpstreamUnavailable(f"Spotify API error: {response.status_code}")

                data = response.json()
                for item in data.get("items") or []:
                    # Unavailable episodes come back as null entries
                    if not item:
                        continue
                    url = (item.get("external_urls") or {}).get("spotify")
                    if url:
                        episodes.append(SpotifyEpisode(item["id"], item.get("name", ""), url))

                total = data.get("total", 0)
                logger.info(f"Spotify: fetched page at offset {offset} ({len(episodes)}/{total})")
                if not data.get("next") or offset + PAGE_SIZE >= total:
                    break
                offset += PAGE_SIZE

        return episodes

    async def match_episodes(
        self, show_id: str, local_episodes: Sequence[tuple[int, str]]
    ) -> list[SpotifyMatch]:
        return match_episodes_by_title(local_episodes, await self.fetch_show_episodes(show_id))


_client: Optional[SpotifyClient] = None


def get_spotify_client() -> Optional[SpotifyClient]:
    """Shared client so the access token is reused; None without credentials."""
    global _client
    if not settings.spotify_configured:
        return None
    if _client is None:
        _client = SpotifyClient(settings.spotify_client_id, settings.spotify_client_secret)  # type: ignore[arg-type]
    return _client
