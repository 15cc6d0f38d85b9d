"""Choose which instances a feed request should query."""

from __future__ import annotations

import logging
import random
from typing import Iterable

from ..feed_settings import FeedSettings
from ..utils import normalize_instance_url
from .health import InstanceHealthCache

logger = logging.getLogger(__name__)


class InstanceSelector:
    """Sample hosts from the configured instances plus a fallback index."""

    def __init__(
        self,
        fallback_instances: Iterable[str] = (),
        *,
        rng: random.Random | None = None,
    ) -> None:
        normalized = (normalize_instance_url(host) for host in fallback_instances)
        self._fallback = tuple(dict.fromkeys(host for host in normalized if host))
        self._rng = rng or random.Random()

    def candidates(self, settings: FeedSettings) -> list[str]:
        """Configured instances followed by the fallback list, without duplicates."""

        return list(dict.fromkeys([*settings.instances, *self._fallback]))

    def select(self, settings: FeedSettings, health: InstanceHealthCache) -> list[str]:
        candidates = self.candidates(settings)
        size = max(1, settings.sample_size)
        healthy = [host for host in candidates if not health.is_unhealthy(host)]

        if not healthy:
            logger.info(
                "No healthy instances among %s candidates; trying the first %s anyway",
                len(candidates),
                size,
            )
            return candidates[:size]

        if not settings.randomize:
            return healthy[:size]

        # Fisher-Yates
        shuffled = list(healthy)
        for index in range(len(shuffled) - 1, 0, -1):
            swap = self._rng.randint(0, index)
            shuffled[index], shuffled[swap] = shuffled[swap], shuffled[index]
        return shuffled[:size]
