"""
Activity Feed Pipeline Tests

Runs the full online and offline pipeline against an in-memory platform
client and an in-memory cache.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from gitfeed.errors import (
    ActivityFetchError,
    ConfigurationError,
    FetchCancelledError,
    PlatformAPIError,
)
from gitfeed.integrations.base import PlatformClient
from gitfeed.models.activity import (
    ApprovalState,
    ClosingIssueRef,
    IssueCandidate,
    IssueModel,
    NoteRecord,
    Project,
    RequestCandidate,
    RequestModel,
    UserRef,
)
from gitfeed.models.labels import ItemType, Label
from gitfeed.services.cache import ActivityCache
from gitfeed.services.feed import ActivityFeed, FeedContext
from gitfeed.services.store import memory_store

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
CUTOFF = NOW - timedelta(days=30)
ME = UserRef(username="alice", id=42)
BOB = UserRef(username="bob", id=7)


def ago(days):
    return NOW - timedelta(days=days)


class FakePlatform(PlatformClient):
    """In-memory platform keyed by lower-cased project path."""

    def __init__(self):
        super().__init__()
        self.requests = {}
        self.issues = {}
        self.notes = {}
        self.closes = {}
        self.approvals = {}
        self.fail_notes_for = set()
        self.calls = []

    async def resolve_project(self, path):
        self.calls.append(("resolve", path))
        if path == "missing/repo":
            raise PlatformAPIError(404, "project not found")
        return Project(path=path.title(), id=len(self.calls))

    async def list_requests(self, project, cutoff):
        return list(self.requests.get(project.path.lower(), []))

    async def list_issues(self, project, cutoff):
        return list(self.issues.get(project.path.lower(), []))

    async def get_approval_state(self, project, number):
        self.calls.append(("approvals", number))
        return ApprovalState(approved_by=self.approvals.get(number, []))

    async def list_notes(self, project, item_type, number):
        self.calls.append(("notes", ItemType(item_type).value, number))
        if number in self.fail_notes_for:
            raise PlatformAPIError(403, "forbidden")
        return self.notes.get((ItemType(item_type), number), [])

    async def get_issues_closed_by(self, project, number):
        if number not in self.closes:
            raise PlatformAPIError(404, "no closes endpoint")
        return self.closes[number]

    async def get_current_user(self):
        return ME


def mr(number, updated, author=BOB, body="", state="open", merged=False, reviewers=()):
    return RequestCandidate(
        model=RequestModel(
            number=number,
            title=f"MR {number}",
            body=body,
            state=state,
            merged=merged,
            updated_at=updated,
            author=author.username,
        ),
        author=author,
        reviewers=list(reviewers),
    )


def iss(number, updated, author=BOB, assignees=()):
    return IssueCandidate(
        model=IssueModel(number=number, title=f"Issue {number}", updated_at=updated, author=author.username),
        author=author,
        assignees=list(assignees),
    )


def build_feed(platform, cache=None, allowed=("team/api",), **kwargs):
    context = FeedContext(
        user=kwargs.pop("user", ME),
        allowed_projects=set(allowed),
        cache=cache,
        **kwargs,
    )
    return ActivityFeed(context, platform)


@pytest.fixture
def platform():
    fake = FakePlatform()
    fake.requests["team/api"] = [
        mr(1, ago(1), author=ME, body="Fixes #10"),
        mr(2, ago(3), reviewers=[ME]),
        mr(3, ago(60), author=ME),  # older than the cutoff
        mr(1, ago(1), author=ME),  # duplicate listing
        mr(4, None, author=ME),  # no update time
    ]
    fake.issues["team/api"] = [
        iss(10, ago(2), assignees=[ME]),
        iss(11, ago(5)),
    ]
    fake.notes[(ItemType.ISSUE, 11)] = [
        NoteRecord(
            project_path="Team/Api",
            item_type=ItemType.ISSUE,
            item_number=11,
            note_id=1,
            body="ping @alice",
        )
    ]
    return fake


def test_online_pipeline(platform):
    cache = ActivityCache(memory_store())

    result = asyncio.run(build_feed(platform, cache).fetch_online(CUTOFF))

    assert [a.request.number for a in result.requests] == [1, 2]
    assert result.requests[0].label == Label.AUTHORED
    assert result.requests[0].project_path == "Team/Api"
    assert result.requests[1].label == Label.REVIEW_REQUESTED
    assert [i.issue.number for i in result.requests[0].issues] == [10]
    assert result.requests[0].issues[0].label == Label.ASSIGNED
    assert [i.issue.number for i in result.issues] == [11]
    assert result.issues[0].label == Label.MENTIONED
    assert result.cache_error_count == 0


def test_online_pipeline_short_circuits_decisive_labels(platform):
    asyncio.run(build_feed(platform).fetch_online(CUTOFF))

    assert ("approvals", 1) not in platform.calls
    assert ("approvals", 2) in platform.calls
    assert ("notes", "issue", 10) not in platform.calls
    assert ("notes", "issue", 11) in platform.calls


def test_online_pipeline_persists_for_offline_replay(platform):
    cache = ActivityCache(memory_store())
    online = asyncio.run(build_feed(platform, cache).fetch_online(CUTOFF))

    offline = asyncio.run(build_feed(None, cache, local_mode=True).collect(CUTOFF))

    assert offline.requests == online.requests
    assert offline.issues == online.issues
    assert [n.note_id for n in cache.get_notes("team/api", ItemType.ISSUE, 11)] == [1]


def test_has_updates_flags_newer_items(platform):
    cache = ActivityCache(memory_store())
    cache.upsert_request("team/api", RequestModel(number=1, updated_at=ago(10)), Label.AUTHORED)
    cache.upsert_request("team/api", RequestModel(number=2, updated_at=ago(3)), Label.REVIEW_REQUESTED)

    result = asyncio.run(build_feed(platform, cache).fetch_online(CUTOFF))

    flags = {a.request.number: a.has_updates for a in result.requests}
    assert flags == {1: True, 2: False}
    assert all(not i.has_updates for i in result.issues)


def test_offline_respects_cutoff_and_allowed_projects():
    cache = ActivityCache(memory_store())
    cache.upsert_request("team/api", RequestModel(number=1, updated_at=ago(2)), Label.AUTHORED)
    cache.upsert_request("team/api", RequestModel(number=2, updated_at=ago(90)), Label.AUTHORED)
    cache.upsert_request("other/repo", RequestModel(number=3, updated_at=ago(2)), Label.AUTHORED)
    cache.upsert_issue("team/api", IssueModel(number=4, updated_at=None), Label.AUTHORED)

    result = asyncio.run(build_feed(None, cache, local_mode=True).load_offline(CUTOFF))

    assert [a.request.number for a in result.requests] == [1]
    assert result.issues == []


def test_offline_without_allowed_projects_keeps_everything():
    cache = ActivityCache(memory_store())
    cache.upsert_request("team/api", RequestModel(number=1, updated_at=ago(2)), Label.AUTHORED)
    cache.upsert_request("other/repo", RequestModel(number=3, updated_at=ago(1)), Label.AUTHORED)

    result = asyncio.run(build_feed(None, cache, allowed=(), local_mode=True).load_offline(CUTOFF))

    assert [a.request.number for a in result.requests] == [3, 1]


def test_allowed_projects_are_normalized_once():
    context = FeedContext(user=ME, allowed_projects={" /Team/API/ ", "Other/Repo", ""})

    assert context.allowed_projects == {"team/api", "other/repo"}
    assert context.is_project_allowed("team/api")
    assert context.is_project_allowed("TEAM/Api/")
    assert not context.is_project_allowed("team/web")


def test_empty_username_fails_before_network(platform):
    with pytest.raises(ConfigurationError):
        asyncio.run(build_feed(platform, user=UserRef(username="  ")).fetch_online(CUTOFF))

    assert platform.calls == []


def test_missing_client_fails_fast():
    with pytest.raises(ConfigurationError):
        asyncio.run(build_feed(None).fetch_online(CUTOFF))


def test_no_allowed_projects_gives_empty_result(platform):
    result = asyncio.run(build_feed(platform, allowed=()).fetch_online(CUTOFF))

    assert result.requests == [] and result.issues == []
    assert platform.calls == []


def test_item_failure_aborts_fetch(platform):
    platform.fail_notes_for.add(11)

    with pytest.raises(ActivityFetchError) as exc_info:
        asyncio.run(build_feed(platform).fetch_online(CUTOFF))

    assert "team/api#11" in str(exc_info.value).lower()


def test_project_resolution_failure_aborts_fetch(platform):
    with pytest.raises(ActivityFetchError):
        asyncio.run(build_feed(platform, allowed=("team/api", "missing/repo")).fetch_online(CUTOFF))


@pytest.mark.asyncio
async def test_cancelled_fetch_raises(platform):
    event = asyncio.Event()
    event.set()

    with pytest.raises(FetchCancelledError):
        await build_feed(platform, cancel_event=event).fetch_online(CUTOFF)


def test_closes_endpoint_links_across_projects(platform):
    platform.requests["team/api"] = [mr(5, ago(1), author=ME)]
    platform.issues["team/web"] = [iss(8, ago(2))]
    platform.closes[5] = [ClosingIssueRef(number=8, full_reference="team/web#8")]

    result = asyncio.run(
        build_feed(platform, allowed=("team/api", "team/web")).fetch_online(CUTOFF)
    )

    assert [i.issue.number for i in result.requests[0].issues] == [8]
    assert 8 not in [i.issue.number for i in result.issues]
    assert result.requests[0].issues[0].project_path == "Team/Web"
