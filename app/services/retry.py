"""Bounded retry policy used when reading settings and saved state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_present(value: object) -> bool:
    """Readiness check for loaded settings or state blobs."""

    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list, tuple)):
        return bool(value)
    return True


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff with a fixed number of attempts."""

    max_attempts: int = 5
    base_delay: float = 0.15
    max_delay: float = 5.0

    @classmethod
    def from_milliseconds(cls, max_attempts: int, base_delay_ms: int) -> "RetryPolicy":
        return cls(max_attempts=max(1, max_attempts), base_delay=max(0, base_delay_ms) / 1000)

    def delays(self) -> Iterator[float]:
        """Yield the pause before each retry (one fewer than the attempts)."""

        for attempt in range(max(0, self.max_attempts - 1)):
            yield min(self.base_delay * (2**attempt), self.max_delay)

    async def wait_for(
        self,
        loader: Callable[[], Awaitable[T]],
        *,
        is_ready: Callable[[T], bool] = is_present,
        retry_on: tuple[type[BaseException], ...] = (),
        label: str = "value",
    ) -> T | None:
        """Call ``loader`` until its result is ready or attempts run out.

        The last result is returned even when it never became ready; only
        exceptions listed in ``retry_on`` are retried, and if the final
        attempt raises one of them ``None`` is returned.
        """

        delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            result: T | None = None
            try:
                result = await loader()
            except retry_on as exc:
                logger.info("Loading %s failed on attempt %s: %s", label, attempt, exc)
            else:
                if is_ready(result):
                    return result
            delay = next(delays, None)
            if delay is None:
                logger.info("%s not ready after %s attempt(s); continuing", label, attempt)
                return result
            await asyncio.sleep(delay)
