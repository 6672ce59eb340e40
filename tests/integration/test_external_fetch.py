"""Integration tests for Apple Podcasts / Spotify URL auto-fetch (HTTP mocked with respx)."""

from datetime import timedelta

import httpx
import pytest
import respx
from sqlalchemy.ext.asyncio import AsyncSession

from podcore.schemas.episodes import Episode
from podcore.schemas.podcasts import Podcast
from podcore.services import external_fetch_service as fetch
from podcore.services.episode_state_service import get_episode
from podcore.services.errors import NotConfigured, RateLimited
from podcore.services.itunes_client import ITUNES_LOOKUP_URL, ITUNES_SEARCH_URL, ITunesClient
from podcore.services.spotify_client import SPOTIFY_API_BASE, SPOTIFY_TOKEN_URL, SpotifyClient
from podcore.services.task_registry import TaskRegistry
from podcore.utils.clock import utc_now
from tests.fakes import InstantGate, RecordingDeployTrigger
from tests.integration.factories import make_uploaded_episode


def _apple_item(guid: str, url: str) -> dict:
    return {
        "wrapperType": "podcastEpisode",
        "episodeGuid": guid,
        "trackViewUrl": url,
        "collectionId": 1500000001,
    }


async def _published(db: AsyncSession, podcast: Podcast, title: str, guid: str) -> Episode:
    return await make_uploaded_episode(
        db,
        podcast.id,  # type: ignore[arg-type]
        title=title,
        source_guid=guid,
        publish_at=utc_now() - timedelta(minutes=1),
        skip_transcription=True,
    )


def _two_days_later():
    return utc_now() + timedelta(days=2)


@pytest.mark.asyncio
class TestAppleFetch:
    async def test_lookup_then_search_then_idempotent(
        self,
        db_session: AsyncSession,
        podcast: Podcast,
        registry: TaskRegistry,
        apple_gate: InstantGate,
        deploy: RecordingDeployTrigger,
    ) -> None:
        first = await _published(db_session, podcast, "Episode One", "guid-1")
        second = await _published(db_session, podcast, "Episode Two", "guid-2")
        client = ITunesClient(gate=apple_gate)
        now = _two_days_later()

        with respx.mock() as router:
            lookup = router.get(ITUNES_LOOKUP_URL).mock(
                return_value=httpx.Response(
                    200, json={"results": [_apple_item("guid-1", "https://apple.test/1&uo=4")]}
                )
            )
            search = router.get(ITUNES_SEARCH_URL).mock(
                return_value=httpx.Response(
                    200, json={"results": [_apple_item("guid-2", "https://apple.test/2")]}
                )
            )
            result = await fetch.run_apple_fetch(
                db_session, podcast, client=client, registry=registry, deploy=deploy, now=now
            )

            assert result.status == "done"
            assert result.updated == 2
            assert lookup.call_count == 1
            assert search.call_count == 1
            assert search.calls.last.request.url.params["term"] == "Episode Two"
            assert len(deploy.calls) == 1

            # Everything matched: a new run finds nothing to do and calls nobody
            again = await fetch.run_apple_fetch(
                db_session,
                podcast,
                client=client,
                registry=TaskRegistry(timedelta(0)),
                deploy=deploy,
                now=now,
            )
            assert again.status == "skipped"
            assert lookup.call_count == 1
            assert search.call_count == 1

        assert apple_gate.passed == 2
        one = await get_episode(db_session, first.id)  # type: ignore[arg-type]
        two = await get_episode(db_session, second.id)  # type: ignore[arg-type]
        assert one.apple_podcasts_url == "https://apple.test/1"
        assert one.apple_podcasts_fetched_at == now
        assert two.apple_podcasts_url == "https://apple.test/2"

    async def test_recent_episodes_are_not_candidates(
        self,
        db_session: AsyncSession,
        podcast: Podcast,
        registry: TaskRegistry,
        apple_gate: InstantGate,
    ) -> None:
        await _published(db_session, podcast, "Fresh", "guid-fresh")
        result = await fetch.run_apple_fetch(
            db_session, podcast, client=ITunesClient(gate=apple_gate), registry=registry
        )
        assert result.status == "skipped"
        assert apple_gate.passed == 0
        assert registry.list_runs() == []

    async def test_rate_limit_stops_the_run(
        self,
        db_session: AsyncSession,
        podcast: Podcast,
        registry: TaskRegistry,
        apple_gate: InstantGate,
        deploy: RecordingDeployTrigger,
    ) -> None:
        for n in range(3):
            await _published(db_session, podcast, f"Episode {n}", f"guid-{n}")

        with respx.mock() as router:
            router.get(ITUNES_LOOKUP_URL).mock(return_value=httpx.Response(200, json={"results": []}))
            search = router.get(ITUNES_SEARCH_URL).mock(
                return_value=httpx.Response(429, headers={"Retry-After": "120"})
            )
            result = await fetch.run_apple_fetch(
                db_session,
                podcast,
                client=ITunesClient(gate=apple_gate),
                registry=registry,
                deploy=deploy,
                now=_two_days_later(),
            )

        assert result.status == "failed"
        assert result.updated == 0
        assert search.call_count == 1
        assert deploy.calls == []
        [run] = registry.list_runs()
        assert run.status == "failed"

    async def test_disabled_platform_is_skipped(
        self,
        db_session: AsyncSession,
        podcast: Podcast,
        registry: TaskRegistry,
    ) -> None:
        podcast.apple_podcasts_auto_fetch = False
        result = await fetch.run_apple_fetch(db_session, podcast, registry=registry)
        assert result.status == "skipped"


@pytest.mark.asyncio
class TestSpotifyFetch:
    async def test_on_demand_matches_titles(
        self,
        db_session: AsyncSession,
        podcast: Podcast,
        registry: TaskRegistry,
        deploy: RecordingDeployTrigger,
    ) -> None:
        episode = await _published(db_session, podcast, "＃１ Ｐｉｌｏｔ", "guid-1")
        client = SpotifyClient("id", "secret")

        with respx.mock() as router:
            router.post(SPOTIFY_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
            )
            router.get(f"{SPOTIFY_API_BASE}/shows/show123/episodes").mock(
                return_value=httpx.Response(
                    200,
                    json={
                        "items": [
                            {
                                "id": "sp1",
                                "name": "#1 Pilot",
                                "external_urls": {"spotify": "https://open.spotify.com/episode/sp1"},
                            },
                            None,
                        ],
                        "next": None,
                        "total": 2,
                    },
                )
            )
            result = await fetch.fetch_spotify_episodes(
                db_session, podcast.id, client=client, registry=registry, deploy=deploy  # type: ignore[arg-type]
            )

        assert result.status == "done"
        assert result.updated == 1
        assert len(deploy.calls) == 1
        fresh = await get_episode(db_session, episode.id)  # type: ignore[arg-type]
        assert fresh.spotify_url == "https://open.spotify.com/episode/sp1"

    async def test_on_demand_rate_limit_raises(
        self,
        db_session: AsyncSession,
        podcast: Podcast,
        registry: TaskRegistry,
    ) -> None:
        await _published(db_session, podcast, "Pilot", "guid-1")
        with respx.mock() as router:
            router.post(SPOTIFY_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
            )
            router.get(f"{SPOTIFY_API_BASE}/shows/show123/episodes").mock(
                return_value=httpx.Response(429, headers={"Retry-After": "30"})
            )
            with pytest.raises(RateLimited):
                await fetch.fetch_spotify_episodes(
                    db_session, podcast.id, client=SpotifyClient("id", "secret"), registry=registry  # type: ignore[arg-type]
                )
        [run] = registry.list_runs()
        assert run.status == "failed"

    async def test_on_demand_without_credentials(
        self,
        db_session: AsyncSession,
        podcast: Podcast,
        registry: TaskRegistry,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(fetch, "get_spotify_client", lambda: None)
        with pytest.raises(NotConfigured):
            await fetch.fetch_spotify_episodes(db_session, podcast.id, registry=registry)  # type: ignore[arg-type]

    async def test_background_run_skips_without_client(
        self,
        db_session: AsyncSession,
        podcast: Podcast,
        registry: TaskRegistry,
        apple_gate: InstantGate,
        deploy: RecordingDeployTrigger,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(fetch, "get_spotify_client", lambda: None)
        results = await fetch.run_all_background_tasks(
            db_session,
            podcast.id,  # type: ignore[arg-type]
            itunes=ITunesClient(gate=apple_gate),
            registry=registry,
            deploy=deploy,
        )
        assert [r.status for r in results] == ["skipped", "skipped"]
        assert apple_gate.passed == 0
