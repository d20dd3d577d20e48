"""
Activity Feed Orchestrator

Responsibilities:
- Resolve allowed projects and list candidate requests/issues
- Dedupe by identity, apply the cutoff, derive labels
- Persist items, labels and notes to the cache (best effort)
- Link cross references and return sorted request/issue collections
- Replay the same pipeline from the cache in local mode
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from gitfeed.errors import (
    ActivityFetchError,
    ConfigurationError,
    FetchCancelledError,
    LabelDerivationError,
)
from gitfeed.models.activity import (
    FeedResult,
    IssueActivity,
    NoteRecord,
    Project,
    RequestActivity,
    UserRef,
)
from gitfeed.models.identity import (
    issue_key,
    normalize_project_path,
    project_path_from_key,
    request_key,
)
from gitfeed.models.labels import ItemType
from gitfeed.services.cache import ActivityCache
from gitfeed.services.labels import LabelDeriver
from gitfeed.services.linker import CrossReferenceLinker

logger = logging.getLogger(__name__)


@dataclass
class FeedContext:
    """Everything one fetch cycle needs, passed explicitly."""

    user: UserRef
    allowed_projects: Set[str] = field(default_factory=set)
    cache: Optional[ActivityCache] = None
    local_mode: bool = False
    debug: bool = False
    cancel_event: Optional[asyncio.Event] = None

    def __post_init__(self):
        normalized = (normalize_project_path(p) for p in self.allowed_projects)
        self.allowed_projects = {p for p in normalized if p}

    def is_project_allowed(self, project_path: str) -> bool:
        if not self.allowed_projects:
            return True
        return normalize_project_path(project_path) in self.allowed_projects


def within_cutoff(updated_at: Optional[datetime], cutoff: Optional[datetime]) -> bool:
    if updated_at is None:
        return False
    return cutoff is None or updated_at >= cutoff


def is_newer(current: Optional[datetime], previous: Optional[datetime]) -> bool:
    if current is None or previous is None:
        return False
    return current > previous


class ActivityFeed:
    """Per-platform pipeline producing the final activity collections."""

    def __init__(
        self,
        context: FeedContext,
        client=None,
        deriver: Optional[LabelDeriver] = None,
        linker: Optional[CrossReferenceLinker] = None,
    ):
        self.context = context
        self.client = client
        self.deriver = deriver or LabelDeriver()
        self.linker = linker or CrossReferenceLinker(context.cache)

    async def collect(self, cutoff: Optional[datetime]) -> FeedResult:
        if self.context.local_mode:
            return await self.load_offline(cutoff)
        return await self.fetch_online(cutoff)

    async def fetch_online(self, cutoff: Optional[datetime]) -> FeedResult:
        """
        Fetch activity from the platform.

        Raises:
            ConfigurationError: No current user or no client
            ActivityFetchError: A project or item failed; the whole fetch aborts
            FetchCancelledError: The cancel event fired
        """
        user = self.context.user
        if user is None or not user.username.strip():
            raise ConfigurationError("current username is required")
        if self.client is None:
            raise ConfigurationError("platform client is not configured")

        if not self.context.allowed_projects:
            logger.info("No allowed projects configured, nothing to fetch")
            return FeedResult()

        projects = await self._resolve_projects()
        projects_by_path = {normalize_project_path(p.path): p for p in projects}

        requests: List[RequestActivity] = []
        issues: List[IssueActivity] = []
        notes_by_request: Dict[str, Optional[List[NoteRecord]]] = {}
        seen: Set[str] = set()

        for project in projects:
            logger.info(f"Fetching activity for {project.path}")
            await self._collect_requests(project, cutoff, seen, requests, notes_by_request)
            await self._collect_issues(project, cutoff, seen, issues)

        nested, standalone = await self.linker.link_online(
            self.client, projects_by_path, requests, issues, notes_by_request
        )
        result = FeedResult(
            requests=nested,
            issues=standalone,
            cache_error_count=self._cache_errors(),
        )
        logger.info(
            f"Fetched {len(result.requests)} requests and {len(result.issues)} standalone issues"
        )
        return result

    async def load_offline(self, cutoff: Optional[datetime]) -> FeedResult:
        """Rebuild the feed from the cache without any network access."""
        cache = self.context.cache
        if cache is None:
            logger.warning("No cache available, local mode returns no activity")
            return FeedResult()

        request_models, request_labels, request_paths = cache.get_all_requests()
        requests: List[RequestActivity] = []
        for key, model in request_models.items():
            project_path = request_paths.get(key) or project_path_from_key(key)
            if not project_path or not within_cutoff(model.updated_at, cutoff):
                continue
            if not self.context.is_project_allowed(project_path):
                continue
            requests.append(RequestActivity.build(project_path, model, request_labels[key]))

        issue_models, issue_labels, issue_paths = cache.get_all_issues()
        issues: List[IssueActivity] = []
        for key, model in issue_models.items():
            project_path = issue_paths.get(key) or project_path_from_key(key)
            if not project_path or not within_cutoff(model.updated_at, cutoff):
                continue
            if not self.context.is_project_allowed(project_path):
                continue
            issues.append(IssueActivity.build(project_path, model, issue_labels[key]))

        nested, standalone = self.linker.link_offline(requests, issues)
        logger.info(
            f"Loaded {len(nested)} requests and {len(standalone)} standalone issues from cache"
        )
        return FeedResult(requests=nested, issues=standalone, cache_error_count=0)

    def _check_cancelled(self, operation: str) -> None:
        event = self.context.cancel_event
        if event is not None and event.is_set():
            raise FetchCancelledError(operation)

    async def _resolve_projects(self) -> List[Project]:
        projects: List[Project] = []
        seen: Set[str] = set()
        for path in sorted(self.context.allowed_projects):
            if not path or path in seen:
                continue
            seen.add(path)
            self._check_cancelled("resolve projects")
            try:
                projects.append(await self.client.resolve_project(path))
            except FetchCancelledError:
                raise
            except Exception as e:
                raise ActivityFetchError(f"resolve project {path}: {e}") from e
        return projects

    async def _collect_requests(
        self,
        project: Project,
        cutoff: Optional[datetime],
        seen: Set[str],
        out: List[RequestActivity],
        notes_by_request: Dict[str, Optional[List[NoteRecord]]],
    ) -> None:
        try:
            candidates = await self.client.list_requests(project, cutoff)
        except FetchCancelledError:
            raise
        except Exception as e:
            raise ActivityFetchError(f"list requests for {project.path}: {e}") from e

        for candidate in candidates:
            model = candidate.model
            key = request_key(project.path, model.number)
            if key in seen:
                continue
            seen.add(key)
            if not within_cutoff(model.updated_at, cutoff):
                continue

            self._check_cancelled(f"derive label {project.path}!{model.number}")
            try:
                label, notes = await self.deriver.derive_request_label(
                    self.client, project, candidate, self.context.user
                )
            except LabelDerivationError as e:
                raise ActivityFetchError(str(e)) from e

            has_updates = False
            cache = self.context.cache
            if cache is not None:
                has_updates = self._request_has_updates(project, model)
                cache.upsert_request(project.path, model, label)
                if notes:
                    cache.append_notes(project.path, ItemType.REQUEST, model.number, notes)

            notes_by_request[key] = notes
            out.append(RequestActivity.build(project.path, model, label, has_updates))

    async def _collect_issues(
        self,
        project: Project,
        cutoff: Optional[datetime],
        seen: Set[str],
        out: List[IssueActivity],
    ) -> None:
        try:
            candidates = await self.client.list_issues(project, cutoff)
        except FetchCancelledError:
            raise
        except Exception as e:
            raise ActivityFetchError(f"list issues for {project.path}: {e}") from e

        for candidate in candidates:
            model = candidate.model
            key = issue_key(project.path, model.number)
            if key in seen:
                continue
            seen.add(key)
            if not within_cutoff(model.updated_at, cutoff):
                continue

            self._check_cancelled(f"derive label {project.path}#{model.number}")
            try:
                label, notes = await self.deriver.derive_issue_label(
                    self.client, project, candidate, self.context.user
                )
            except LabelDerivationError as e:
                raise ActivityFetchError(str(e)) from e

            has_updates = False
            cache = self.context.cache
            if cache is not None:
                has_updates = self._issue_has_updates(project, model)
                cache.upsert_issue(project.path, model, label)
                if notes:
                    cache.append_notes(project.path, ItemType.ISSUE, model.number, notes)

            out.append(IssueActivity.build(project.path, model, label, has_updates))

    def _request_has_updates(self, project: Project, model) -> bool:
        try:
            previous = self.context.cache.get_request(project.path, model.number)
        except Exception as e:
            logger.warning(f"Failed to read cached {project.path}!{model.number}: {e}")
            return False
        return previous is not None and is_newer(model.updated_at, previous.updated_at)

    def _issue_has_updates(self, project: Project, model) -> bool:
        try:
            previous = self.context.cache.get_issue(project.path, model.number)
        except Exception as e:
            logger.warning(f"Failed to read cached {project.path}#{model.number}: {e}")
            return False
        return previous is not None and is_newer(model.updated_at, previous.updated_at)

    def _cache_errors(self) -> int:
        cache = self.context.cache
        return cache.write_error_count if cache is not None else 0
