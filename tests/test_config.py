"""
Unit Tests for Configuration Helpers
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from datetime import timedelta

import pytest

from gitfeed.config import (
    Settings,
    normalize_gitlab_base_url,
    parse_allowed_repos,
    parse_time_range,
    validate_settings,
)
from gitfeed.errors import ConfigurationError


def make_settings(**overrides):
    values = {
        "platform": "gitlab",
        "gitlab_token": "",
        "github_token": "",
        "allowed_repos": "",
        "gitlab_host": "",
        "local_mode": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1h", timedelta(hours=1)),
        ("2d", timedelta(days=2)),
        ("3w", timedelta(weeks=3)),
        ("4m", timedelta(days=120)),
        ("1y", timedelta(days=365)),
    ],
)
def test_parse_time_range(raw, expected):
    assert parse_time_range(raw) == expected


@pytest.mark.parametrize("raw", ["", "d", "0d", "-1d", "1x", "1.5d", "abc"])
def test_parse_time_range_rejects_bad_input(raw):
    with pytest.raises(ConfigurationError):
        parse_time_range(raw)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("", "https://gitlab.com/api/v4"),
        ("http://10.0.0.5/", "http://10.0.0.5/api/v4"),
        ("https://example.com/gitlab", "https://example.com/gitlab/api/v4"),
        ("https://example.com/api/v4/", "https://example.com/api/v4"),
    ],
)
def test_normalize_gitlab_base_url(raw, expected):
    assert normalize_gitlab_base_url(raw) == expected


def test_normalize_gitlab_base_url_requires_scheme():
    with pytest.raises(ConfigurationError):
        normalize_gitlab_base_url("gitlab.example.com")


def test_parse_allowed_repos():
    assert parse_allowed_repos(" team/api, /platform/tool/ ,,") == {"team/api", "platform/tool"}
    assert parse_allowed_repos(None) == set()


def test_validate_requires_token_online():
    with pytest.raises(ConfigurationError, match="token"):
        validate_settings(make_settings(allowed_repos="team/api"))


def test_validate_requires_allowed_repos_online():
    with pytest.raises(ConfigurationError, match="ALLOWED_REPOS"):
        validate_settings(make_settings(gitlab_token="secret"))


def test_validate_rejects_unknown_platform():
    with pytest.raises(ConfigurationError):
        validate_settings(make_settings(platform="bitbucket"))


def test_validate_checks_gitlab_host():
    settings = make_settings(
        gitlab_token="secret", allowed_repos="team/api", gitlab_host="not-a-url"
    )

    with pytest.raises(ConfigurationError):
        validate_settings(settings)


def test_local_mode_skips_credentials():
    validate_settings(make_settings(local_mode=True))


def test_token_and_username_follow_platform():
    settings = make_settings(
        platform="github", github_token=" gh ", github_username="octo", gitlab_token="gl"
    )

    assert settings.token == "gh"
    assert settings.username == "octo"


def test_resolved_cache_path_defaults_per_platform():
    settings = make_settings(platform="github", cache_path="")

    assert settings.resolved_cache_path.name == "github.db"
