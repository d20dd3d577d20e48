"""
GitLab API Client

Responsibilities:
- REST v4 calls with PRIVATE-TOKEN authentication
- X-Next-Page pagination with one retry scope per page
- Merge request / issue listing, approvals, notes and "closes issues"
- Normalizing GitLab states (opened/merged/locked) to open/closed + merged
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from gitfeed.errors import PlatformAPIError
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
from gitfeed.models.labels import ItemType
from gitfeed.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

PER_PAGE = 100
REQUEST_TIMEOUT = 30


def to_user_ref(data: Optional[Dict[str, Any]]) -> Optional[UserRef]:
    if not data:
        return None
    return UserRef(username=data.get("username") or "", id=data.get("id") or 0)


def user_list(*sources) -> List[UserRef]:
    """Flatten single users and user lists, dropping duplicates by id/username."""
    users: List[UserRef] = []
    seen = set()
    for source in sources:
        if not source:
            continue
        items = source if isinstance(source, list) else [source]
        for item in items:
            user = to_user_ref(item)
            if user is None:
                continue
            marker = user.id or user.username.lower()
            if marker in seen:
                continue
            seen.add(marker)
            users.append(user)
    return users


def normalize_state(state: Optional[str], merged_at: Optional[str] = None):
    """Return (state, merged) with state reduced to open/closed."""
    state = (state or "").strip().lower()
    merged = state == "merged" or merged_at is not None
    if merged or state in ("closed", "locked"):
        return "closed", merged
    return "open", False


def format_cutoff(cutoff: Optional[datetime]) -> Optional[str]:
    if cutoff is None:
        return None
    return cutoff.isoformat()


class GitLabClient(PlatformClient):
    """GitLab REST v4 client wrapper built on requests."""

    name = "gitlab"

    def __init__(
        self,
        token: str,
        base_url: str,
        retry: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(retry)
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"PRIVATE-TOKEN": token})
        logger.info(f"GitLab client initialized for {self.base_url}")

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        response = self.session.get(
            f"{self.base_url}{path}", params=params, timeout=REQUEST_TIMEOUT
        )
        if response.status_code >= 400:
            raise PlatformAPIError(response.status_code, response.text, response.headers)
        return response

    async def _get_json(self, path: str, label: str, params: Optional[Dict[str, Any]] = None):
        response = await self._call(lambda: self._get(path, params), label)
        return response.json()

    async def _get_all(
        self, path: str, label: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Collect every page of a list endpoint."""
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            page_params = dict(params or {}, per_page=PER_PAGE, page=page)
            response = await self._call(
                lambda: self._get(path, page_params), f"{label} page {page}"
            )
            items.extend(response.json() or [])

            next_page = (response.headers.get("X-Next-Page") or "").strip()
            if not next_page.isdigit() or int(next_page) <= page:
                break
            page = int(next_page)
        return items

    @staticmethod
    def _project_ref(project: Project) -> str:
        if project.id > 0:
            return str(project.id)
        return quote(project.path, safe="")

    async def resolve_project(self, path: str) -> Project:
        path = path.strip().strip("/")
        try:
            data = await self._get_json(
                f"/projects/{quote(path, safe='')}", f"GitLabGetProject {path}"
            )
        except PlatformAPIError as e:
            logger.error(f"GitLab API error resolving project {path}: {e}")
            raise
        return Project(path=data.get("path_with_namespace") or path, id=data.get("id") or 0)

    async def list_requests(
        self, project: Project, cutoff: Optional[datetime]
    ) -> List[RequestCandidate]:
        params = {"state": "all"}
        if cutoff is not None:
            params["updated_after"] = format_cutoff(cutoff)
        items = await self._get_all(
            f"/projects/{self._project_ref(project)}/merge_requests",
            f"GitLabListProjectMergeRequests {project.path}",
            params,
        )
        logger.info(f"Found {len(items)} merge requests in {project.path}")
        return [self._to_request_candidate(item) for item in items]

    async def list_issues(
        self, project: Project, cutoff: Optional[datetime]
    ) -> List[IssueCandidate]:
        params = {"state": "all"}
        if cutoff is not None:
            params["updated_after"] = format_cutoff(cutoff)
        items = await self._get_all(
            f"/projects/{self._project_ref(project)}/issues",
            f"GitLabListProjectIssues {project.path}",
            params,
        )
        logger.info(f"Found {len(items)} issues in {project.path}")
        return [self._to_issue_candidate(item) for item in items]

    async def get_approval_state(self, project: Project, number: int) -> ApprovalState:
        data = await self._get_json(
            f"/projects/{self._project_ref(project)}/merge_requests/{number}/approval_state",
            f"GitLabGetApprovalState {project.path}!{number}",
        )
        approvers = [rule.get("approved_by") for rule in data.get("rules") or []]
        return ApprovalState(approved_by=user_list(*approvers))

    async def list_notes(
        self, project: Project, item_type: ItemType, number: int
    ) -> List[NoteRecord]:
        item_type = ItemType(item_type)
        if item_type == ItemType.REQUEST:
            path = f"/projects/{self._project_ref(project)}/merge_requests/{number}/notes"
            label = f"GitLabListMergeRequestNotes {project.path}!{number}"
        else:
            path = f"/projects/{self._project_ref(project)}/issues/{number}/notes"
            label = f"GitLabListIssueNotes {project.path}#{number}"

        items = await self._get_all(path, label)
        notes = []
        for item in items:
            author = to_user_ref(item.get("author")) or UserRef()
            notes.append(
                NoteRecord(
                    project_path=project.path,
                    item_type=item_type,
                    item_number=number,
                    note_id=item.get("id") or 0,
                    body=item.get("body") or "",
                    author_username=author.username,
                    author_id=author.id,
                )
            )
        return notes

    async def get_issues_closed_by(
        self, project: Project, number: int
    ) -> List[ClosingIssueRef]:
        path = f"/projects/{self._project_ref(project)}/merge_requests/{number}/closes_issues"
        refs: List[ClosingIssueRef] = []
        page = 1
        while True:
            params = {"per_page": PER_PAGE, "page": page}
            response = await self._call_once(lambda: self._get(path, params))
            for item in response.json() or []:
                full_reference = (item.get("references") or {}).get("full")
                refs.append(
                    ClosingIssueRef(number=item.get("iid") or 0, full_reference=full_reference)
                )
            next_page = (response.headers.get("X-Next-Page") or "").strip()
            if not next_page.isdigit() or int(next_page) <= page:
                break
            page = int(next_page)
        return refs

    async def get_current_user(self) -> UserRef:
        try:
            data = await self._get_json("/user", "GitLabCurrentUser")
        except PlatformAPIError as e:
            logger.error(f"GitLab API error resolving current user: {e}")
            raise
        return UserRef(username=data.get("username") or "", id=data.get("id") or 0)

    def _to_request_candidate(self, item: Dict[str, Any]) -> RequestCandidate:
        state, merged = normalize_state(item.get("state"), item.get("merged_at"))
        author = to_user_ref(item.get("author"))
        model = RequestModel(
            number=item["iid"],
            title=item.get("title") or "",
            body=item.get("description") or "",
            state=state,
            merged=merged,
            updated_at=item.get("updated_at"),
            web_url=item.get("web_url") or "",
            author=author.username if author else "",
        )
        return RequestCandidate(
            model=model,
            author=author,
            assignees=user_list(item.get("assignee"), item.get("assignees")),
            reviewers=user_list(item.get("reviewers")),
        )

    def _to_issue_candidate(self, item: Dict[str, Any]) -> IssueCandidate:
        state, _ = normalize_state(item.get("state"))
        author = to_user_ref(item.get("author"))
        model = IssueModel(
            number=item["iid"],
            title=item.get("title") or "",
            body=item.get("description") or "",
            state=state,
            updated_at=item.get("updated_at"),
            web_url=item.get("web_url") or "",
            author=author.username if author else "",
        )
        return IssueCandidate(
            model=model,
            author=author,
            assignees=user_list(item.get("assignee"), item.get("assignees")),
        )
