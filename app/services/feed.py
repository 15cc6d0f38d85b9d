"""High level orchestration of aggregated PeerTube feeds."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..config import Settings
from ..feed_settings import FeedSettings, normalize_settings
from ..models import AggregatedResult, FeedType
from ..utils import base_url_safe, extract_video_id, server_version_at_least
from .aggregator import FeedAggregator
from .health import InstanceHealthCache
from .peertube import SEARCH_VIDEOS_PATH, VIDEOS_PATH, PeerTubeClient
from .seen import SeenIdHistory
from .selector import InstanceSelector
from .state_store import PersistedState, StateStore

logger = logging.getLogger(__name__)

BEST_SORT_MIN_VERSION = "3.1.0"
CHRONOLOGICAL_ORDER = "chronological"


@dataclass(slots=True)
class InstanceStatus:
    host: str
    healthy: bool
    unhealthy_until: float | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "healthy": self.healthy,
            "unhealthyUntil": self.unhealthy_until,
        }


class FeedService:
    """Hold the per-process feed state and answer home and search requests.

    The service is created once at start-up, :meth:`enable` is called with
    the stored settings and state blob, and :meth:`save_state` produces the
    blob to persist again.
    """

    def __init__(
        self,
        config: Settings,
        client: PeerTubeClient,
        *,
        selector: InstanceSelector | None = None,
        state_store: StateStore | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._health: InstanceHealthCache = client.health
        self._selector = selector or InstanceSelector(config.index_instances)
        self._state_store = state_store or StateStore()
        self._aggregator = FeedAggregator(client, page_size=config.feed_page_size)
        self._settings = normalize_settings(None, default_instance=config.default_instance)
        self._seen = SeenIdHistory(self._settings.seen_max)
        self._server_version = ""

    @property
    def settings(self) -> FeedSettings:
        return self._settings

    @property
    def seen(self) -> SeenIdHistory:
        return self._seen

    @property
    def health(self) -> InstanceHealthCache:
        return self._health

    @property
    def server_version(self) -> str:
        return self._server_version

    @property
    def primary_instance(self) -> str:
        if self._settings.instances:
            return self._settings.instances[0]
        return self._config.default_instance

    @property
    def uses_sepia_search(self) -> bool:
        return self._settings.search_engine == "sepia"

    async def enable(self, raw_settings: Any, state_blob: str | bytes | None) -> FeedSettings:
        """Normalise settings, restore saved state and learn the server version.

        The primary instance is only asked for its version when no saved
        state was found.
        """

        self._settings = normalize_settings(
            raw_settings, default_instance=self._config.default_instance
        )
        state = self._state_store.load(state_blob)
        has_saved_state = bool(
            state.server_version or state.seen_ids or state.unhealthy_hosts
        )

        self._seen = SeenIdHistory(self._settings.seen_max, state.seen_ids)
        self._health.restore(state.unhealthy_hosts)
        self._server_version = state.server_version

        if not has_saved_state:
            version = await self._client.fetch_server_version(self.primary_instance)
            if version:
                self._server_version = version
            else:
                logger.warning(
                    "Could not determine server version of %s", self.primary_instance
                )

        logger.info(
            "Feed enabled with %s instance(s), %s seen ID(s), search engine %s",
            len(self._settings.instances),
            len(self._seen),
            self._settings.search_engine,
        )
        return self._settings

    def current_state(self) -> PersistedState:
        return PersistedState(
            server_version=self._server_version,
            seen_ids=self._seen.snapshot(),
            unhealthy_hosts=self._health.snapshot(),
        )

    def save_state(self) -> str:
        return self._state_store.save(self.current_state())

    def update_settings(self, raw_settings: Any) -> FeedSettings:
        """Replace the active settings; the seen history is resized in place."""

        self._settings = normalize_settings(
            raw_settings, default_instance=self._config.default_instance
        )
        self._seen.resize(self._settings.seen_max)
        return self._settings

    def select_instances(self) -> list[str]:
        return self._selector.select(self._settings, self._health)

    async def get_home(self) -> AggregatedResult:
        params: dict[str, Any] = {}
        if server_version_at_least(self._server_version, BEST_SORT_MIN_VERSION):
            params["sort"] = "best"
        if self._settings.preferred_languages:
            params["languageOneOf"] = list(self._settings.preferred_languages)

        hosts = self.select_instances()
        return await self._aggregator.aggregate(
            hosts, self._settings, self._seen, path=VIDEOS_PATH, params=params
        )

    async def search(
        self,
        query: str,
        feed_type: FeedType | None = None,
        order: str | None = None,
    ) -> AggregatedResult:
        """Search the selected instances, or Sepia Search when configured.

        Raises ``ValueError`` for an empty query or one that is itself a
        video URL.
        """

        query = (query or "").strip()
        if not query:
            raise ValueError("Search query cannot be empty")
        if base_url_safe(query) and extract_video_id(query):
            raise ValueError("Query is a video URL; open it directly instead of searching")

        sort = order or None
        if sort == CHRONOLOGICAL_ORDER:
            sort = "-publishedAt"
        params: dict[str, Any] = {"search": query, "sort": sort}
        if feed_type == "streams":
            params["isLive"] = True
        elif feed_type == "videos":
            params["isLive"] = False
        if self._settings.preferred_languages:
            params["languageOneOf"] = list(self._settings.preferred_languages)

        if self.uses_sepia_search:
            params.update(resultType="videos", nsfw=False, sort="-createdAt")
            hosts = [self._config.sepia_search_host]
        else:
            hosts = self.select_instances()

        return await self._aggregator.aggregate(
            hosts,
            self._settings,
            self._seen,
            path=SEARCH_VIDEOS_PATH,
            params=params,
            is_search=True,
            track_seen=False,
        )

    async def report_view(self, url: str, current_time: int, *, seek: bool = False) -> bool:
        """Forward playback progress when activity reporting is enabled."""

        if not self._settings.submit_activity:
            return False
        host = base_url_safe(url)
        video_id = extract_video_id(url)
        if not host or not video_id:
            raise ValueError(f"Not a PeerTube video URL: {url}")
        return await self._client.report_view(host, video_id, current_time, seek=seek)

    def instance_statuses(self) -> list[InstanceStatus]:
        statuses: list[InstanceStatus] = []
        for host in self._selector.candidates(self._settings):
            until = self._health.unhealthy_until(host)
            statuses.append(InstanceStatus(host=host, healthy=until is None, unhealthy_until=until))
        return statuses

    async def probe_instances(self) -> list[InstanceStatus]:
        """Probe every candidate now; failures start a cooldown."""

        candidates = self._selector.candidates(self._settings)
        await asyncio.gather(*(self._client.probe(host) for host in candidates))
        return self.instance_statuses()
