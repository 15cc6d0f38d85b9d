"""Pydantic models describing listing records and feed payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .utils import (
    PEERTUBE_LOGO_URL,
    add_channel_url_hint,
    add_content_url_hint,
    base_url_safe,
)

FeedType = Literal["mixed", "videos", "streams"]

_RECORD_URL_KEYS = ("url", "embedUrl", "previewUrl", "thumbnailUrl")


def _language_tag(value: Any) -> str | None:
    """Return a lowercase language tag from a string or ``{id, label}`` object."""

    if isinstance(value, dict):
        value = value.get("id")
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, ValueError, OSError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ListingRecord(BaseModel):
    """One video entry as returned by an instance listing endpoint."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    author_key: str = "unknown"
    published_at: datetime | None = None
    languages: tuple[str, ...] = ()
    source_host: str
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, data: dict[str, Any], *, source_host: str) -> "ListingRecord | None":
        """Build a record from a PeerTube video object, or ``None`` without an ID."""

        video_id = data.get("uuid") or data.get("shortUUID")
        if not video_id:
            return None

        channel = data.get("channel") if isinstance(data.get("channel"), dict) else {}
        author_key = str(channel.get("name") or channel.get("displayName") or "").strip()

        candidates: list[str] = []
        for value in (data.get("language"), data.get("languageId")):
            tag = _language_tag(value)
            if tag:
                candidates.append(tag)
                break
        languages = data.get("languages")
        if isinstance(languages, list):
            candidates.extend(tag for tag in map(_language_tag, languages) if tag)
        nested = data.get("video")
        if isinstance(nested, dict):
            tag = _language_tag(nested.get("language"))
            if tag:
                candidates.append(tag)

        return cls(
            id=str(video_id),
            title=str(data.get("name") or ""),
            author_key=author_key or "unknown",
            published_at=_parse_timestamp(data.get("publishedAt")),
            languages=tuple(dict.fromkeys(candidates)),
            source_host=source_host,
            raw=data,
        )

    def matches_languages(self, preferred: tuple[str, ...]) -> bool:
        """Return whether the record passes the preferred-language filter.

        Records without language metadata always pass.
        """

        if not preferred or not self.languages:
            return True
        return any(tag in candidate for candidate in self.languages for tag in preferred)

    def instance_base_url(self) -> str | None:
        """Derive the originating instance from the record's own URLs."""

        account = self.raw.get("account") if isinstance(self.raw.get("account"), dict) else {}
        channel = self.raw.get("channel") if isinstance(self.raw.get("channel"), dict) else {}
        candidates = [self.raw.get(key) for key in _RECORD_URL_KEYS]
        candidates += [account.get("url"), channel.get("url")]
        for candidate in candidates:
            if not candidate:
                continue
            resolved = base_url_safe(candidate)
            if resolved:
                return resolved
        return None


class FeedAuthor(BaseModel):
    id: str
    name: str
    url: str | None = None
    avatar: str = PEERTUBE_LOGO_URL


class FeedItem(BaseModel):
    """Display-ready representation of one aggregated video."""

    id: str
    name: str
    url: str
    thumbnail: str | None = None
    author: FeedAuthor
    timestamp: int | None = None
    duration: int | None = None
    view_count: int | None = None
    is_live: bool = False
    language: str | None = None
    source_host: str

    @classmethod
    def from_record(cls, record: ListingRecord, *, is_search: bool = False) -> "FeedItem":
        """Map a listing record to a feed item.

        Search results may come from an index such as Sepia Search, so their
        media paths are resolved against the instance that owns the video.
        """

        raw = record.raw
        origin = record.instance_base_url() or record.source_host
        instance = origin if is_search else record.source_host
        channel = raw.get("channel") if isinstance(raw.get("channel"), dict) else {}

        content_url = add_content_url_hint(
            _text(raw.get("url")) or f"{origin}/videos/watch/{record.id}"
        )
        thumbnail_path = _text(raw.get("thumbnailPath"))
        thumbnail = f"{instance}{thumbnail_path}" if thumbnail_path else _text(raw.get("thumbnailUrl"))

        return cls(
            id=record.id,
            name=record.title,
            url=content_url or "",
            thumbnail=thumbnail,
            author=FeedAuthor(
                id=str(channel.get("name") or ""),
                name=str(channel.get("displayName") or channel.get("name") or ""),
                url=add_channel_url_hint(_text(channel.get("url")) or ""),
                avatar=avatar_url(raw, instance),
            ),
            timestamp=int(record.published_at.timestamp()) if record.published_at else None,
            duration=_optional_int(raw.get("duration")),
            view_count=_optional_int(raw.get("views")),
            is_live=bool(raw.get("isLive")),
            language=record.languages[0] if record.languages else None,
            source_host=record.source_host,
        )


class AggregatedResult(BaseModel):
    """A bounded page of aggregated feed items."""

    items: list[FeedItem] = Field(default_factory=list)
    has_more: Literal[False] = False
    hosts: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, object]:
        return {
            "items": [item.model_dump(mode="json", by_alias=True) for item in self.items],
            "hasMore": self.has_more,
            "hosts": list(self.hosts),
        }


def avatar_url(obj: dict[str, Any], instance: str) -> str:
    """Return the most specific avatar for ``obj`` or the PeerTube logo."""

    def _nested(key: str) -> dict[str, Any]:
        value = obj.get(key)
        return value if isinstance(value, dict) else {}

    def _single(container: dict[str, Any]) -> str | None:
        avatar = container.get("avatar")
        return _text(avatar.get("path")) if isinstance(avatar, dict) else None

    def _last(container: dict[str, Any]) -> str | None:
        avatars = container.get("avatars")
        if isinstance(avatars, list) and avatars and isinstance(avatars[-1], dict):
            return _text(avatars[-1].get("path"))
        return None

    containers = [obj, _nested("channel"), _nested("account"), _nested("ownerAccount")]
    paths = [_single(container) for container in containers]
    paths += [_last(container) for container in containers]
    for path in paths:
        if path:
            return f"{instance}{path}"
    return PEERTUBE_LOGO_URL


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _text(value: Any) -> str | None:
    """Return ``value`` when it is a non-empty string, otherwise ``None``."""

    return value if isinstance(value, str) and value else None
