"""Serialisation of the state kept between process runs."""

from __future__ import annotations

import logging
import time
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

EMPTY_STATE_BLOB = "{}"


class PersistedState(BaseModel):
    """Snapshot of seen IDs, host cooldowns and the primary server version."""

    server_version: str = Field(default="", alias="serverVersion")
    seen_ids: list[str] = Field(default_factory=list, alias="seenIds")
    unhealthy_hosts: dict[str, float] = Field(default_factory=dict, alias="unhealthyHosts")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("server_version", mode="before")
    @classmethod
    def _coerce_version(cls, value: object) -> str:
        return "" if value is None else str(value)

    @field_validator("seen_ids", mode="before")
    @classmethod
    def _clean_seen_ids(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        cleaned: list[str] = []
        for entry in value:
            if isinstance(entry, str) and entry and entry not in cleaned:
                cleaned.append(entry)
        return cleaned


class StateStore:
    """Load and save :class:`PersistedState` as an opaque JSON string."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def load(self, blob: str | bytes | None) -> PersistedState:
        """Parse ``blob``; anything unreadable yields a fresh state.

        Cooldowns that have already elapsed are dropped here as well.
        """

        if blob is None:
            return PersistedState()
        if isinstance(blob, bytes):
            blob = blob.decode("utf-8", "replace")
        if not isinstance(blob, str) or not blob.strip():
            logger.info("Saved state is empty or absent; starting fresh")
            return PersistedState()
        try:
            state = PersistedState.model_validate_json(blob)
        except ValidationError as exc:
            logger.warning(
                "Saved state is corrupt (length=%s, snippet=%r): %s",
                len(blob),
                blob[:200],
                exc.errors()[:3],
            )
            return PersistedState()

        now = self._clock()
        live = {host: until for host, until in state.unhealthy_hosts.items() if now < until}
        dropped = len(state.unhealthy_hosts) - len(live)
        if dropped:
            logger.info("Dropped %s expired host cooldown(s) from saved state", dropped)
        return state.model_copy(update={"unhealthy_hosts": live})

    def save(self, state: PersistedState) -> str:
        try:
            return state.model_dump_json(by_alias=True)
        except (TypeError, ValueError) as exc:
            logger.warning("Could not serialise state, saving an empty one: %s", exc)
            return EMPTY_STATE_BLOB
