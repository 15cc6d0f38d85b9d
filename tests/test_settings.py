"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.config import DEFAULT_INDEX_INSTANCES, Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.default_instance == "https://peertube.futo.org"
    assert settings.sepia_search_host == "https://sepiasearch.org"
    assert settings.index_instances == DEFAULT_INDEX_INSTANCES
    assert settings.health_cooldown_seconds == 600
    assert settings.feed_page_size == 20
    assert settings.feed_settings is None


def test_index_instances_from_comma_list() -> None:
    """Fallback instances should be split, trimmed and deduplicated."""

    settings = Settings(_env_file=None, INDEX_INSTANCES=" a.example, b.example ,a.example,")

    assert settings.index_instances == ("a.example", "b.example")


def test_blank_index_instances_disable_fallback() -> None:
    settings = Settings(_env_file=None, INDEX_INSTANCES="")

    assert settings.index_instances == ()


def test_index_instances_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INDEX_INSTANCES", "x.example,y.example")
    monkeypatch.setenv("PEERTUBE_BASE_URL", "https://tube.example/")

    settings = Settings(_env_file=None)

    assert settings.index_instances == ("x.example", "y.example")
    assert settings.default_instance == "https://tube.example"


def test_out_of_range_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, HOST_PAGE_SIZE=0)
