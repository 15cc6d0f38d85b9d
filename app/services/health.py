"""Cooldown tracking for instances that recently failed."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Mapping

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class InstanceHealthCache:
    """Remember failing hosts until their cooldown elapses.

    A host is healthy when it has no entry. Entries are never swept in the
    background: :meth:`is_unhealthy` drops an expired entry the first time
    it is consulted after its deadline.
    """

    def __init__(self, cooldown_seconds: float = 600.0, *, clock: Clock = time.time) -> None:
        self._cooldown = float(cooldown_seconds)
        self._clock = clock
        self._until: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown

    def mark_unhealthy(self, host: str, reason: str = "") -> float:
        """Start (or restart) the cooldown for ``host`` and return its deadline."""

        until = self._clock() + self._cooldown
        with self._lock:
            self._until[host] = until
        logger.warning(
            "Marking %s unhealthy for %.0fs: %s", host, self._cooldown, reason or "unspecified"
        )
        return until

    def is_unhealthy(self, host: str) -> bool:
        with self._lock:
            until = self._until.get(host)
            if until is None:
                return False
            if self._clock() < until:
                return True
            del self._until[host]
        logger.info("Cooldown for %s elapsed; host eligible again", host)
        return False

    def unhealthy_until(self, host: str) -> float | None:
        """Return the active deadline for ``host`` or ``None`` when healthy."""

        if not self.is_unhealthy(host):
            return None
        with self._lock:
            return self._until.get(host)

    def mark_healthy(self, host: str) -> None:
        with self._lock:
            self._until.pop(host, None)

    def snapshot(self) -> dict[str, float]:
        """Return the live (non-expired) entries."""

        now = self._clock()
        with self._lock:
            return {host: until for host, until in self._until.items() if now < until}

    def restore(self, entries: Mapping[str, float]) -> None:
        """Replace the cache contents, skipping entries already expired."""

        now = self._clock()
        with self._lock:
            self._until = {
                host: float(until) for host, until in entries.items() if now < float(until)
            }

    def __len__(self) -> int:
        return len(self.snapshot())
