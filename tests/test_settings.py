"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.config import Settings


def test_defaults_point_at_public_providers() -> None:
    settings = Settings(_env_file=None)

    assert str(settings.tmdb_api_url).startswith("https://api.themoviedb.org/3")
    assert str(settings.omdb_api_url).startswith("https://www.omdbapi.com")
    assert settings.enrichment_head_size == 4
    assert settings.rating_display_size == 10
    assert settings.recent_search_limit == 10
    assert settings.omdb_timeout_seconds == 2.0


def test_blank_credentials_are_treated_as_missing() -> None:
    """Whitespace-only keys should not count as configured credentials."""

    settings = Settings(_env_file=None, TMDB_API_KEY="   ", OMDB_API_KEY=" key ")

    assert settings.tmdb_api_key is None
    assert settings.omdb_api_key == "key"


def test_support_email_alias_is_accepted() -> None:
    settings = Settings(_env_file=None, SUPPORT_EMAIL="help@example.com")

    assert settings.contact_email == "help@example.com"


def test_head_size_is_bounded() -> None:
    """Enrichment head sizes outside 0-20 should be rejected."""

    with pytest.raises(ValidationError):
        Settings(_env_file=None, ENRICHMENT_HEAD_SIZE=21)

    assert Settings(_env_file=None, ENRICHMENT_HEAD_SIZE=0).enrichment_head_size == 0
