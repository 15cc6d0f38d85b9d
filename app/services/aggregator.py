"""Fan-out, merge and filtering of listings from several instances."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..feed_settings import FeedSettings
from ..models import AggregatedResult, FeedItem, ListingRecord
from .peertube import VIDEOS_PATH, FetchError, ListingPage, PeerTubeClient
from .seen import SeenIdHistory

logger = logging.getLogger(__name__)

ItemMapper = Callable[[ListingRecord, bool], FeedItem]


def _default_mapper(record: ListingRecord, is_search: bool) -> FeedItem:
    return FeedItem.from_record(record, is_search=is_search)


def select_records(
    records: Iterable[ListingRecord],
    settings: FeedSettings,
    seen_ids: Iterable[str],
    *,
    limit: int,
) -> list[ListingRecord]:
    """Apply dedup, recency, language and per-channel filters in that order.

    Records are taken in the order given and selection stops once ``limit``
    records have been accepted.
    """

    recent = set(seen_ids)
    accepted_ids: set[str] = set()
    per_channel: Counter[str] = Counter()
    accepted: list[ListingRecord] = []

    for record in records:
        if len(accepted) >= limit:
            break
        if record.id in accepted_ids:
            continue
        if record.id in recent:
            continue
        if not record.matches_languages(settings.preferred_languages):
            continue
        if per_channel[record.author_key] >= settings.max_per_channel:
            continue
        accepted_ids.add(record.id)
        per_channel[record.author_key] += 1
        accepted.append(record)
    return accepted


class FeedAggregator:
    """Query the selected instances and merge them into a single page."""

    def __init__(
        self,
        client: PeerTubeClient,
        *,
        page_size: int = 20,
        mapper: ItemMapper | None = None,
    ) -> None:
        self._client = client
        self._page_size = page_size
        self._mapper = mapper or _default_mapper

    async def aggregate(
        self,
        hosts: Sequence[str],
        settings: FeedSettings,
        seen: SeenIdHistory,
        *,
        path: str = VIDEOS_PATH,
        params: Mapping[str, Any] | None = None,
        is_search: bool = False,
        track_seen: bool = True,
    ) -> AggregatedResult:
        """Build one aggregated page; failing hosts simply contribute nothing.

        With ``track_seen`` off the recency filter is skipped and accepted
        IDs are not added to ``seen``.
        """

        recent = seen.snapshot() if track_seen else []
        results = await asyncio.gather(
            *(self._client.fetch_listing(host, path, params) for host in hosts)
        )

        candidates: list[ListingRecord] = []
        items: dict[int, FeedItem] = {}
        failed: list[str] = []
        for result in results:
            if isinstance(result, FetchError):
                failed.append(result.host)
                continue
            if not isinstance(result, ListingPage):
                continue
            for record in result.records:
                item = self._map(record, is_search)
                if item is not None:
                    items[id(record)] = item
                    candidates.append(record)

        accepted = select_records(candidates, settings, recent, limit=self._page_size)
        if track_seen:
            for record in accepted:
                seen.push(record.id)

        logger.info(
            "Aggregated %s of %s videos from %s host(s) (%s failed)",
            len(accepted),
            len(candidates),
            len(hosts),
            len(failed),
        )
        return AggregatedResult(
            items=[items[id(record)] for record in accepted],
            hosts=list(hosts),
        )

    def _map(self, record: ListingRecord, is_search: bool) -> FeedItem | None:
        try:
            return self._mapper(record, is_search)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Skipping video %s from %s that could not be mapped: %s",
                record.id,
                record.source_host,
                exc,
            )
            return None
