"""
Entry Point Tests

Local mode is exercised end to end against a temporary cache file.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from gitfeed.config import Settings
from gitfeed.errors import ConfigurationError
from gitfeed.integrations import create_platform_client
from gitfeed.integrations.github import GitHubClient
from gitfeed.integrations.gitlab import GitLabClient
from gitfeed.main import resolve_current_user, run
from gitfeed.models.activity import RequestModel, UserRef
from gitfeed.models.labels import Label
from gitfeed.services.cache import ActivityCache
from gitfeed.services.store import open_store


class CollectingReporter:
    def __init__(self):
        self.results = []

    def report(self, result):
        self.results.append(result)


def make_settings(**overrides):
    values = {"platform": "gitlab", "gitlab_host": "", "allowed_repos": ""}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_run_local_mode_replays_cache(tmp_path):
    cache_path = tmp_path / "gitlab.db"
    store = open_store(cache_path)
    recent = datetime.now(timezone.utc) - timedelta(days=1)
    ActivityCache(store).upsert_request(
        "team/api", RequestModel(number=1, title="Add cache", updated_at=recent), Label.AUTHORED
    )
    store.close()

    reporter = CollectingReporter()
    settings = make_settings(local_mode=True, cache_path=str(cache_path), time_range="1w")

    result = asyncio.run(run(settings, reporter=reporter))

    assert [a.request.number for a in result.requests] == [1]
    assert reporter.results == [result]


def test_run_rejects_missing_token_before_network():
    settings = make_settings(gitlab_token="", allowed_repos="team/api")

    with pytest.raises(ConfigurationError):
        asyncio.run(run(settings, reporter=CollectingReporter()))


def test_create_platform_client_selects_implementation():
    gitlab = create_platform_client(
        make_settings(gitlab_token="t", gitlab_host="https://gitlab.example.com")
    )
    github = create_platform_client(make_settings(platform="github", github_token="t"))

    assert isinstance(gitlab, GitLabClient)
    assert gitlab.base_url == "https://gitlab.example.com/api/v4"
    assert isinstance(github, GitHubClient)


def test_create_platform_client_rejects_unknown_platform():
    with pytest.raises(ConfigurationError):
        create_platform_client(make_settings(platform="bitbucket"))


class StubUserClient:
    def __init__(self, user):
        self.user = user

    async def get_current_user(self):
        return self.user


def test_resolve_current_user_prefers_api_identity():
    client = StubUserClient(UserRef(username="alice", id=42))

    user = asyncio.run(resolve_current_user(client, "someone-else"))

    assert user == UserRef(username="alice", id=42)


def test_resolve_current_user_falls_back_to_configured_username():
    client = StubUserClient(UserRef(username="", id=42))

    user = asyncio.run(resolve_current_user(client, " alice "))

    assert user == UserRef(username="alice", id=42)


def test_resolve_current_user_without_any_username_fails():
    client = StubUserClient(UserRef(username="  ", id=42))

    with pytest.raises(ConfigurationError):
        asyncio.run(resolve_current_user(client))
