"""Utility helpers for the PeerFeed service."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

PEERTUBE_LOGO_URL = "https://plugins.grayjay.app/PeerTube/peertube.png"

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
VIDEO_PATH_RE = re.compile(
    r"^/(videos/(watch|embed)/|w/|api/v1/videos/)([a-zA-Z0-9\-_]+)(?:/.*)?$"
)


def base_url(url: str) -> str:
    """Return ``scheme://host[:port]`` for ``url``.

    Raises ``ValueError`` when the value is not an absolute URL. Callers
    that only need a best-effort answer should use :func:`base_url_safe`.
    """

    if not isinstance(url, str):
        raise ValueError("URL must be a string")
    candidate = url.strip()
    if not candidate:
        raise ValueError("URL cannot be empty")
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"Invalid URL format: {url}") from exc
    host = parts.hostname
    if not parts.scheme or not host or any(char.isspace() for char in host):
        raise ValueError(f"Invalid URL: {url}")
    if ":" in host:
        host = f"[{host}]"
    if port is not None:
        host = f"{host}:{port}"
    return f"{parts.scheme.lower()}://{host}"


def base_url_safe(url: object) -> str | None:
    """Best-effort variant of :func:`base_url`, retrying with ``https://``."""

    if not isinstance(url, str):
        return None
    try:
        return base_url(url)
    except ValueError:
        pass
    if not _SCHEME_RE.match(url.strip()):
        try:
            return base_url(f"https://{url.strip()}")
        except ValueError:
            return None
    return None


def normalize_instance_url(value: object) -> str | None:
    """Normalise a configured instance into ``scheme://host`` or ``None``."""

    if value is None:
        return None
    candidate = str(value).strip()
    if not candidate:
        return None
    if not _SCHEME_RE.match(candidate):
        candidate = f"https://{candidate}"
    candidate = candidate.rstrip("/")
    try:
        normalized = base_url(candidate)
    except ValueError:
        return None
    if not normalized.startswith(("http://", "https://")):
        return None
    return normalized


def add_url_hint(url: str | None, hint_param: str, hint_value: str = "1") -> str | None:
    """Append ``hint_param=hint_value`` to ``url`` unless already present."""

    if not url:
        return url
    if f"{hint_param}={hint_value}" in url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        logger.debug("Could not add %s hint to %s: %s", hint_param, url, exc)
        return url
    if not parts.scheme or not parts.netloc:
        return url
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append((hint_param, hint_value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def add_content_url_hint(url: str | None) -> str | None:
    return add_url_hint(url, "isPeertubeContent")


def add_channel_url_hint(url: str | None) -> str | None:
    return add_url_hint(url, "isPeertubeChannel")


def extract_video_id(url: str | None) -> str | None:
    """Return the PeerTube video identifier embedded in ``url``."""

    if not url:
        return None
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    match = VIDEO_PATH_RE.match(path)
    return match.group(3) if match else None


def server_version_at_least(version: str | None, minimum: str) -> bool:
    """Compare dotted PeerTube server versions, ignoring suffixes like ``-rc.1``."""

    def _parts(value: str) -> list[int]:
        numbers: list[int] = []
        for chunk in value.split("-", 1)[0].split("."):
            match = re.match(r"\d+", chunk)
            numbers.append(int(match.group(0)) if match else 0)
        return numbers

    if not version:
        return False
    current = _parts(version)
    target = _parts(minimum)
    width = max(len(current), len(target))
    current += [0] * (width - len(current))
    target += [0] * (width - len(target))
    return current >= target


def build_query_params(params: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Flatten query parameters, repeating keys for list values.

    ``None`` and empty-string values are skipped; booleans are rendered in
    lowercase so PeerTube accepts them.
    """

    def _render(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    flattened: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None or value == "":
            continue
        values: Iterable[Any]
        if isinstance(value, (list, tuple, set, frozenset)):
            values = value
        else:
            values = (value,)
        for item in values:
            if item is None or item == "":
                continue
            flattened.append((key, _render(item)))
    return flattened
