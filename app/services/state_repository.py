"""Database access for stored feed settings and state blobs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import FeedProfile
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_ID = "default"


@dataclass(slots=True)
class StoredProfile:
    """Settings and state as last written for a profile."""

    id: str
    settings: dict[str, Any] | None
    state_blob: str | None
    updated_at: datetime | None = None


class StateRepository:
    """Read and write one :class:`FeedProfile` row per profile ID."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        profile_id: str = DEFAULT_PROFILE_ID,
    ) -> None:
        self._session_factory = session_factory
        self._profile_id = profile_id

    @property
    def profile_id(self) -> str:
        return self._profile_id

    async def load(self) -> StoredProfile | None:
        async with self._session_factory() as session:
            profile = await session.get(FeedProfile, self._profile_id)
            if profile is None:
                return None
            return StoredProfile(
                id=profile.id,
                settings=profile.settings,
                state_blob=profile.state_blob,
                updated_at=profile.updated_at,
            )

    async def load_with_retry(self, policy: RetryPolicy) -> StoredProfile | None:
        """Load the profile, retrying only when the database itself fails.

        A missing row is a final answer and returns ``None`` immediately.
        """

        return await policy.wait_for(
            self.load,
            is_ready=lambda _: True,
            retry_on=(SQLAlchemyError,),
            label="stored profile",
        )

    async def save_settings(self, settings: Any) -> None:
        """Persist raw or normalised settings as a JSON document."""

        await self._upsert(settings=_as_json_document(settings))

    async def save_state_blob(self, blob: str) -> None:
        await self._upsert(state_blob=blob)

    async def _upsert(self, **values: Any) -> None:
        async with self._session_factory() as session:
            profile = await session.get(FeedProfile, self._profile_id)
            now = datetime.utcnow()
            if profile is None:
                profile = FeedProfile(id=self._profile_id, created_at=now, updated_at=now)
                session.add(profile)
            for key, value in values.items():
                setattr(profile, key, value)
            profile.updated_at = now
            await session.commit()
        logger.debug("Stored %s for profile %s", ", ".join(values), self._profile_id)


def _as_json_document(settings: Any) -> dict[str, Any] | None:
    """Coerce settings into something the JSON column accepts."""

    if settings is None:
        return None
    if hasattr(settings, "model_dump"):
        return settings.model_dump(mode="json")
    if isinstance(settings, (str, bytes)):
        try:
            decoded = json.loads(settings)
        except ValueError:
            logger.warning("Refusing to store settings that are not JSON")
            return None
        return decoded if isinstance(decoded, dict) else None
    if isinstance(settings, dict):
        return json.loads(json.dumps(settings, default=str))
    return None
