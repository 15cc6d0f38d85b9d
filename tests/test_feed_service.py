"""Tests for the feed orchestration service."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.services.feed import FeedService
from app.services.health import InstanceHealthCache
from app.services.peertube import PeerTubeClient
from app.services.state_store import StateStore

PRIMARY = "https://primary.example"
SECOND = "https://second.example"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {
        "DEFAULT_INSTANCE_URL": PRIMARY,
        "INDEX_INSTANCES": "",
        "SEPIA_SEARCH_URL": "https://sepia.example",
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


class FakeInstances:
    """Serve PeerTube endpoints for a few hosts and record every request."""

    def __init__(self, version: str = "6.0.0") -> None:
        self.version = version
        self.requests: list[httpx.Request] = []
        self.failing: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = f"{request.url.scheme}://{request.url.host}"
        if host in self.failing:
            return httpx.Response(503)
        path = request.url.path
        if path == "/api/v1/config":
            return httpx.Response(200, json={"serverVersion": self.version})
        if path.endswith("/views"):
            return httpx.Response(204)
        prefix = host.split("//", 1)[1].split(".", 1)[0]
        data = [
            {"uuid": f"{prefix}-{index}", "name": f"{prefix} {index}", "channel": {"name": f"{prefix}-c{index}"}}
            for index in range(3)
        ]
        return httpx.Response(200, json={"total": 3, "data": data})

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


def _service(fake: FakeInstances, clock, **overrides: Any) -> tuple[httpx.AsyncClient, FeedService]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    client = PeerTubeClient(http_client, InstanceHealthCache(600, clock=clock))
    service = FeedService(build_settings(**overrides), client, state_store=StateStore(clock=clock))
    return http_client, service


@pytest.mark.anyio("asyncio")
async def test_enable_without_state_fetches_server_version(clock) -> None:
    fake = FakeInstances(version="5.2.1")
    http_client, service = _service(fake, clock)

    async with http_client:
        settings = await service.enable(None, None)

    assert settings.instances == (PRIMARY,)
    assert service.server_version == "5.2.1"
    assert fake.paths() == ["/api/v1/config"]


@pytest.mark.anyio("asyncio")
async def test_enable_with_saved_state_restores_without_network(clock) -> None:
    fake = FakeInstances()
    http_client, service = _service(fake, clock)
    blob = json.dumps(
        {
            "serverVersion": "3.0.0",
            "seenIds": ["old-1", "old-2"],
            "unhealthyHosts": {SECOND: clock.now + 120},
        }
    )

    async with http_client:
        await service.enable({"instancesList": [PRIMARY, SECOND], "seenMax": 1}, blob)

    assert fake.requests == []
    assert service.server_version == "3.0.0"
    assert service.seen.snapshot() == ["old-1"]
    assert service.health.is_unhealthy(SECOND) is True


@pytest.mark.anyio("asyncio")
async def test_home_feed_uses_best_sort_and_languages(clock) -> None:
    fake = FakeInstances(version="3.1.0")
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable(
            {"instancesList": [PRIMARY, SECOND], "instanceSampleSize": 2, "preferredLanguages": "en,fr"},
            None,
        )
        result = await service.get_home()

    listing_requests = [request for request in fake.requests if request.url.path == "/api/v1/videos"]
    assert len(listing_requests) == 2
    params = listing_requests[0].url.params
    assert params["sort"] == "best"
    assert params.get_list("languageOneOf") == ["en", "fr"]
    assert [item.id for item in result.items] == [
        "primary-0", "primary-1", "primary-2", "second-0", "second-1", "second-2"
    ]
    assert result.hosts == [PRIMARY, SECOND]


@pytest.mark.anyio("asyncio")
async def test_old_servers_get_no_sort(clock) -> None:
    fake = FakeInstances(version="3.0.9")
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable(None, None)
        await service.get_home()

    assert "sort" not in fake.requests[-1].url.params


@pytest.mark.anyio("asyncio")
async def test_consecutive_home_feeds_do_not_repeat_items(clock) -> None:
    fake = FakeInstances()
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable(None, None)
        first = await service.get_home()
        second = await service.get_home()

    assert len(first.items) == 3
    assert second.items == []
    saved = json.loads(service.save_state())
    assert saved["seenIds"] == ["primary-2", "primary-1", "primary-0"]
    assert saved["serverVersion"] == "6.0.0"


@pytest.mark.anyio("asyncio")
async def test_failed_hosts_are_persisted_in_state(clock) -> None:
    fake = FakeInstances()
    fake.failing.add(SECOND)
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable({"instancesList": [PRIMARY, SECOND], "instanceSampleSize": 2}, None)
        await service.get_home()

    saved = json.loads(service.save_state())
    assert list(saved["unhealthyHosts"]) == [SECOND]

    fake_after = FakeInstances()
    http_client, restored = _service(fake_after, clock)
    async with http_client:
        await restored.enable({"instancesList": [PRIMARY, SECOND]}, service.save_state())

    assert restored.select_instances() == [PRIMARY]


@pytest.mark.anyio("asyncio")
async def test_search_on_instances_maps_order_and_type(clock) -> None:
    fake = FakeInstances()
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable(None, None)
        result = await service.search("  cats ", "streams", "chronological")

    request = fake.requests[-1]
    assert request.url.host == "primary.example"
    assert request.url.path == "/api/v1/search/videos"
    assert request.url.params["search"] == "cats"
    assert request.url.params["sort"] == "-publishedAt"
    assert request.url.params["isLive"] == "true"
    assert len(result.items) == 3


@pytest.mark.anyio("asyncio")
async def test_search_with_sepia_queries_the_index(clock) -> None:
    fake = FakeInstances()
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable({"searchEngineIndex": 1}, None)
        await service.search("cats", "videos", "-views")

    request = fake.requests[-1]
    assert request.url.host == "sepia.example"
    assert request.url.params["resultType"] == "videos"
    assert request.url.params["nsfw"] == "false"
    assert request.url.params["sort"] == "-createdAt"
    assert request.url.params["isLive"] == "false"


@pytest.mark.anyio("asyncio")
async def test_repeated_search_returns_the_same_results(clock) -> None:
    fake = FakeInstances()
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable(None, None)
        first = await service.search("cats")
        second = await service.search("cats")
        home = await service.get_home()

    expected = ["primary-0", "primary-1", "primary-2"]
    assert [item.id for item in first.items] == expected
    assert [item.id for item in second.items] == expected
    assert [item.id for item in home.items] == expected


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("query", ["", "   ", "https://primary.example/w/abc123"])
async def test_search_rejects_empty_queries_and_video_urls(clock, query) -> None:
    fake = FakeInstances()
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable(None, "{}")
        with pytest.raises(ValueError):
            await service.search(query)


@pytest.mark.anyio("asyncio")
async def test_update_settings_resizes_seen_history(clock) -> None:
    fake = FakeInstances()
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable(None, json.dumps({"seenIds": ["a", "b", "c"]}))

    updated = service.update_settings('{"seenMax": "2", "maxPerChannel": 1}')

    assert updated.max_per_channel == 1
    assert service.settings is updated
    assert service.seen.snapshot() == ["a", "b"]


@pytest.mark.anyio("asyncio")
async def test_report_view_requires_submit_activity(clock) -> None:
    fake = FakeInstances()
    http_client, service = _service(fake, clock)
    url = "https://other.example/videos/watch/abc"

    async with http_client:
        await service.enable(None, "{}")
        assert await service.report_view(url, 10) is False
        service.update_settings({"submitActivity": True})
        assert await service.report_view(url, 10, seek=True) is True
        with pytest.raises(ValueError):
            await service.report_view("https://other.example/c/channel", 10)

    view_request = fake.requests[-1]
    assert view_request.url.host == "other.example"
    assert view_request.url.path == "/api/v1/videos/abc/views"


@pytest.mark.anyio("asyncio")
async def test_probe_instances_reports_health(clock) -> None:
    fake = FakeInstances()
    fake.failing.add(SECOND)
    http_client, service = _service(fake, clock)

    async with http_client:
        await service.enable({"instancesList": [PRIMARY, SECOND]}, "{}")
        statuses = await service.probe_instances()

    by_host = {status.host: status for status in statuses}
    assert by_host[PRIMARY].healthy is True
    assert by_host[SECOND].healthy is False
    assert by_host[SECOND].unhealthy_until == clock.now + 600
