"""Lenient normalisation of user-supplied feed settings.

The host application hands over settings in whatever shape it has at hand:
a mapping, a JSON string, an object with attributes, or values wrapped in
objects exposing ``.value``. Everything is resolved here, once, into a
strict :class:`FeedSettings`; nothing downstream sees the raw shapes.
Malformed fields fall back to their defaults instead of raising.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .utils import normalize_instance_url

logger = logging.getLogger(__name__)

DEFAULT_INSTANCE = "https://peertube.futo.org"
DEFAULT_SAMPLE_SIZE = 3
DEFAULT_MAX_PER_CHANNEL = 2
DEFAULT_SEEN_MAX = 500

SearchEngine = Literal["instance", "sepia"]
SEARCH_ENGINE_OPTIONS: tuple[SearchEngine, ...] = ("instance", "sepia")

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}


class FeedSettings(BaseModel):
    """Canonical aggregation settings."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    instances: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("instancesList", "instances", "instances_list"),
    )
    randomize: bool = Field(
        default=False,
        validation_alias=AliasChoices("randomizeInstances", "randomize", "randomize_instances"),
    )
    sample_size: int = Field(
        default=DEFAULT_SAMPLE_SIZE,
        ge=1,
        validation_alias=AliasChoices("instanceSampleSize", "sampleSize", "sample_size"),
    )
    max_per_channel: int = Field(
        default=DEFAULT_MAX_PER_CHANNEL,
        ge=1,
        validation_alias=AliasChoices("maxPerChannel", "max_per_channel"),
    )
    preferred_languages: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("preferredLanguages", "preferred_languages"),
    )
    seen_max: int = Field(
        default=DEFAULT_SEEN_MAX,
        ge=0,
        validation_alias=AliasChoices("seenMax", "seen_max"),
    )
    submit_activity: bool = Field(
        default=False,
        validation_alias=AliasChoices("submitActivity", "submit_activity"),
    )
    search_engine: SearchEngine = Field(
        default="instance",
        validation_alias=AliasChoices("searchEngine", "searchEngineIndex", "search_engine"),
    )

    @field_validator("instances", mode="before")
    @classmethod
    def _parse_instances(cls, value: object) -> tuple[str, ...]:
        cleaned: list[str] = []
        for entry in _as_string_list(value, field="instances"):
            normalized = normalize_instance_url(entry)
            if normalized is None:
                logger.debug("Dropping invalid instance URL %r", entry)
                continue
            if normalized not in cleaned:
                cleaned.append(normalized)
        return tuple(cleaned)

    @field_validator("preferred_languages", mode="before")
    @classmethod
    def _parse_languages(cls, value: object) -> tuple[str, ...]:
        tags = (entry.lower() for entry in _as_string_list(value, field="preferred_languages"))
        return tuple(dict.fromkeys(tags))

    @field_validator("randomize", "submit_activity", mode="before")
    @classmethod
    def _parse_bool(cls, value: object, info: ValidationInfo) -> bool:
        default = cls.model_fields[info.field_name].default
        return coerce_bool(_unwrap(value), default=default, field=info.field_name)

    @field_validator("sample_size", "max_per_channel", "seen_max", mode="before")
    @classmethod
    def _parse_int(cls, value: object, info: ValidationInfo) -> int:
        field = cls.model_fields[info.field_name]
        minimum = 0 if info.field_name == "seen_max" else 1
        parsed = coerce_int(_unwrap(value), default=field.default, field=info.field_name)
        return max(minimum, parsed)

    @field_validator("search_engine", mode="before")
    @classmethod
    def _parse_search_engine(cls, value: object) -> str:
        value = _unwrap(value)
        if isinstance(value, str) and value.strip().lower() in {"sepia", "sepia search"}:
            return "sepia"
        if isinstance(value, str) and value.strip().lower() == "instance":
            return "instance"
        index = coerce_int(value, default=0, field="search_engine")
        if 0 <= index < len(SEARCH_ENGINE_OPTIONS):
            return SEARCH_ENGINE_OPTIONS[index]
        logger.debug("Unknown search engine %r; using the configured instance", value)
        return "instance"


def normalize_settings(raw: Any, *, default_instance: str = DEFAULT_INSTANCE) -> FeedSettings:
    """Resolve ``raw`` into :class:`FeedSettings` without ever raising."""

    payload = _as_mapping(raw)
    try:
        result = FeedSettings.model_validate(payload)
    except ValidationError as exc:
        # Field validators already fall back per field; this only guards
        # against shapes they did not anticipate.
        logger.warning("Feed settings could not be validated, using defaults: %s", exc)
        result = FeedSettings()
    if not result.instances:
        seed = normalize_instance_url(default_instance) or DEFAULT_INSTANCE
        result = result.model_copy(update={"instances": (seed,)})
    return result


def coerce_bool(value: object, *, default: bool, field: str = "value") -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False if lowered else default
    elif isinstance(value, (int, float)):
        return bool(value)
    logger.debug("Malformed boolean for %s: %r", field, value)
    return default


def coerce_int(value: object, *, default: int, field: str = "value") -> int:
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text, 10)
        except ValueError:
            pass
    logger.debug("Malformed integer for %s: %r", field, value)
    return default


def _unwrap(value: object) -> object:
    """Peel ``.value`` wrappers and decode JSON-looking strings."""

    for _ in range(5):
        if isinstance(value, Mapping) and set(value) == {"value"}:
            value = value["value"]
            continue
        if not isinstance(value, (str, bytes, Mapping, Iterable)) and hasattr(value, "value"):
            value = getattr(value, "value")
            continue
        break
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    if isinstance(value, str):
        text = value.strip()
        if text[:1] in {"[", "{"} or (len(text) > 1 and text[0] == '"' and text[-1] == '"'):
            try:
                return json.loads(text)
            except ValueError:
                logger.debug("Value %r looked like JSON but did not parse", text[:200])
                return text
        return text
    return value


def _as_string_list(value: object, *, field: str) -> list[str]:
    value = _unwrap(value)
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, Mapping):
        logger.debug("Ignoring mapping supplied for %s", field)
        return []
    elif isinstance(value, Iterable):
        parts = [str(item) for part in value if (item := _unwrap(part)) is not None]
    else:
        logger.debug("Malformed list for %s: %r", field, value)
        return []
    return [part.strip() for part in parts if part and part.strip()]


def _as_mapping(raw: Any) -> dict[str, Any]:
    """Return a plain dict view of the top-level settings container."""

    if raw is None:
        return {}
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
        text = text.strip()
        if not text:
            return {}
        try:
            decoded = json.loads(text)
        except ValueError:
            logger.warning(
                "Top-level feed settings are not valid JSON (length=%s, snippet=%r)",
                len(text),
                text[:200],
            )
            return {}
        return _as_mapping(decoded) if isinstance(decoded, dict) else {}
    if isinstance(raw, FeedSettings):
        return raw.model_dump()
    if isinstance(raw, Mapping):
        return {str(key): value for key, value in raw.items()}
    if hasattr(raw, "__dict__"):
        return {key: value for key, value in vars(raw).items() if not key.startswith("_")}
    logger.warning("Unsupported feed settings container %s", type(raw).__name__)
    return {}
