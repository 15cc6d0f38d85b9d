"""Utilities for communicating with PeerTube instances."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import httpx

from ..models import ListingRecord
from ..utils import build_query_params
from .health import InstanceHealthCache

logger = logging.getLogger(__name__)

VIDEOS_PATH = "/api/v1/videos"
SEARCH_VIDEOS_PATH = "/api/v1/search/videos"
CONFIG_PATH = "/api/v1/config"
VIEW_CLIENT_NAME = "PeerFeed"


class FetchErrorKind(str, Enum):
    HOST_UNREACHABLE = "host_unreachable"
    HOST_BAD_RESPONSE = "host_bad_response"
    HOST_MALFORMED_PAYLOAD = "host_malformed_payload"


@dataclass(slots=True)
class FetchError:
    """A listing request that produced no usable records."""

    host: str
    kind: FetchErrorKind
    detail: str = ""
    status_code: int | None = None


@dataclass(slots=True)
class ListingPage:
    """Records from one successful listing call and the reported total."""

    host: str
    records: list[ListingRecord] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


FetchResult = ListingPage | FetchError


class PeerTubeClient:
    """Thin wrapper around the PeerTube REST API of many instances.

    Every request is bounded by ``timeout``. Failures are reported to the
    health cache and returned as :class:`FetchError` values rather than
    raised.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        health: InstanceHealthCache,
        *,
        page_size: int = 20,
        timeout: float = 10.0,
        user_agent: str = "PeerFeed",
    ) -> None:
        self._client = http_client
        self._health = health
        self._page_size = page_size
        self._timeout = httpx.Timeout(timeout, connect=min(timeout, 5.0))
        self._headers = {"Accept": "application/json", "User-Agent": user_agent}

    @property
    def health(self) -> InstanceHealthCache:
        return self._health

    async def fetch_listing(
        self,
        host: str,
        path: str = VIDEOS_PATH,
        params: Mapping[str, Any] | None = None,
        *,
        page: int = 0,
    ) -> FetchResult:
        """Fetch one page of videos from ``host``."""

        count = self._page_size
        start = max(0, page) * count
        query = build_query_params({**(params or {}), "start": start, "count": count})
        url = f"{host}{path}"

        try:
            response = await self._client.get(
                url, params=query, headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            return self._fail(
                host, FetchErrorKind.HOST_UNREACHABLE, f"{exc.__class__.__name__}: {exc}"
            )

        if not response.is_success:
            return self._fail(
                host,
                FetchErrorKind.HOST_BAD_RESPONSE,
                f"HTTP {response.status_code} from {path}",
                status_code=response.status_code,
            )

        if not response.content.strip():
            return self._fail(host, FetchErrorKind.HOST_MALFORMED_PAYLOAD, "empty body")
        try:
            payload = response.json()
        except ValueError:
            return self._fail(host, FetchErrorKind.HOST_MALFORMED_PAYLOAD, "body is not JSON")
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            return self._fail(
                host, FetchErrorKind.HOST_MALFORMED_PAYLOAD, "missing 'data' array"
            )

        records: list[ListingRecord] = []
        for entry in payload["data"]:
            if not isinstance(entry, dict):
                continue
            try:
                record = ListingRecord.from_payload(entry, source_host=host)
            except (TypeError, ValueError, OverflowError) as exc:
                logger.warning("Skipping malformed video from %s: %s", host, exc)
                continue
            if record is not None:
                records.append(record)

        total = self._extract_total(payload.get("total"), fallback=len(payload["data"]))
        return ListingPage(
            host=host,
            records=records,
            total=total,
            has_more=total > start + count,
        )

    async def fetch_server_config(self, host: str) -> dict[str, Any] | None:
        """Return the instance's ``/api/v1/config`` payload, or ``None``."""

        try:
            response = await self._client.get(
                f"{host}{CONFIG_PATH}", headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            self._health.mark_unhealthy(host, f"probe failed: {exc.__class__.__name__}")
            return None
        if not response.is_success:
            self._health.mark_unhealthy(host, f"probe returned HTTP {response.status_code}")
            return None
        try:
            data = response.json()
        except ValueError:
            self._health.mark_unhealthy(host, "probe body is not JSON")
            return None
        if not isinstance(data, dict):
            self._health.mark_unhealthy(host, "probe body is not an object")
            return None
        return data

    async def probe(self, host: str) -> bool:
        """Return whether ``host`` answers its config endpoint.

        A successful probe clears any cooldown for the host.
        """

        ok = await self.fetch_server_config(host) is not None
        if ok:
            self._health.mark_healthy(host)
        return ok

    async def fetch_server_version(self, host: str) -> str | None:
        config = await self.fetch_server_config(host)
        if not config:
            return None
        version = config.get("serverVersion")
        return str(version) if version else None

    async def report_view(
        self,
        host: str,
        video_id: str,
        current_time: int,
        *,
        seek: bool = False,
    ) -> bool:
        """Report playback progress for a video; returns whether it was accepted."""

        body: dict[str, Any] = {"currentTime": int(current_time), "client": VIEW_CLIENT_NAME}
        if seek:
            body["viewEvent"] = "seek"
        try:
            response = await self._client.post(
                f"{host}{VIDEOS_PATH}/{video_id}/views",
                json=body,
                headers=self._headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("Failed to report view for %s on %s: %s", video_id, host, exc)
            return False
        if not response.is_success:
            logger.warning(
                "View report for %s on %s returned HTTP %s",
                video_id,
                host,
                response.status_code,
            )
            return False
        return True

    def _fail(
        self,
        host: str,
        kind: FetchErrorKind,
        detail: str,
        *,
        status_code: int | None = None,
    ) -> FetchError:
        logger.warning("Failed to fetch videos from %s (%s): %s", host, kind.value, detail)
        self._health.mark_unhealthy(host, f"{kind.value}: {detail}")
        return FetchError(host=host, kind=kind, detail=detail, status_code=status_code)

    @staticmethod
    def _extract_total(value: Any, *, fallback: int = 0) -> int:
        if isinstance(value, bool):
            return fallback
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            return fallback
