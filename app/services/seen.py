"""Bounded history of recently returned video identifiers."""

from __future__ import annotations

import threading
from typing import Iterable, Iterator


class SeenIdHistory:
    """Most-recent-first list of IDs with uniqueness and a size cap.

    Membership is a linear scan; the history holds a few hundred IDs.
    """

    def __init__(self, max_size: int = 500, ids: Iterable[str] = ()) -> None:
        self._max_size = max(0, int(max_size))
        self._ids: list[str] = []
        self._lock = threading.Lock()
        for value in ids:
            if value and value not in self._ids:
                self._ids.append(value)
        del self._ids[self._max_size:]

    @property
    def max_size(self) -> int:
        return self._max_size

    def push(self, video_id: str) -> None:
        """Insert ``video_id`` at the front unless it is already present."""

        if not video_id:
            return
        with self._lock:
            if video_id in self._ids:
                return
            self._ids.insert(0, video_id)
            del self._ids[self._max_size:]

    def contains(self, video_id: str) -> bool:
        with self._lock:
            return video_id in self._ids

    def resize(self, max_size: int) -> None:
        with self._lock:
            self._max_size = max(0, int(max_size))
            del self._ids[self._max_size:]

    def snapshot(self) -> list[str]:
        with self._lock:
            return list(self._ids)

    def __contains__(self, video_id: object) -> bool:
        return isinstance(video_id, str) and self.contains(video_id)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
