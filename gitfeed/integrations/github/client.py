"""
GitHub API Client

Responsibilities:
- Repository lookup and current-user resolution
- Pull request / issue listing bounded by the cutoff
- Reviews, issue comments and review comments
- "Closes" lookup through the GraphQL closingIssuesReferences field
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from github import Auth, Github
from github.GithubException import GithubException
from github.Repository import Repository

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
from gitfeed.models.identity import normalize_project_path, split_project_path
from gitfeed.models.labels import ItemType
from gitfeed.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"
GRAPHQL_TIMEOUT = 30

CLOSING_ISSUES_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      closingIssuesReferences(first: 100) {
        nodes {
          number
          repository { nameWithOwner }
        }
      }
    }
  }
}
"""


def graphql_url(base_url: str) -> str:
    """
    GraphQL endpoint for a REST base URL.

    github.com serves /graphql next to the REST root; GitHub Enterprise
    serves /api/graphql next to /api/v3.
    """
    base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
    if base_url.endswith("/api/v3"):
        return base_url[: -len("/v3")] + "/graphql"
    return base_url + "/graphql"


def to_user_ref(user) -> Optional[UserRef]:
    if user is None:
        return None
    return UserRef(username=user.login or "", id=user.id or 0)


class GitHubClient(PlatformClient):
    """GitHub API client wrapper built on PyGithub."""

    name = "github"

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        retry: Optional[RetryPolicy] = None,
        client: Optional[Github] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(retry)
        self.token = token
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        # Retries are owned by RetryPolicy, not by PyGithub
        self.client = client or Github(
            auth=Auth.Token(token), base_url=self.base_url, retry=None
        )
        self.session = session or requests.Session()
        self._repos: Dict[str, Repository] = {}
        logger.info(f"GitHub client initialized for {self.base_url}")

    def _repo(self, project: Project) -> Repository:
        key = normalize_project_path(project.path)
        repo = self._repos.get(key)
        if repo is None:
            repo = self.client.get_repo(project.path)
            self._repos[key] = repo
        return repo

    async def resolve_project(self, path: str) -> Project:
        def fetch():
            repo = self.client.get_repo(path.strip().strip("/"))
            self._repos[normalize_project_path(repo.full_name)] = repo
            return Project(path=repo.full_name, id=repo.id)

        try:
            return await self._call(fetch, f"get repo {path}")
        except GithubException as e:
            logger.error(f"GitHub API error resolving repository {path}: {e}")
            raise

    async def list_requests(
        self, project: Project, cutoff: Optional[datetime]
    ) -> List[RequestCandidate]:
        def fetch():
            pulls = self._repo(project).get_pulls(
                state="all", sort="updated", direction="desc"
            )
            candidates = []
            for pr in pulls:
                # Sorted by update time: everything after this is older
                if cutoff is not None and pr.updated_at is not None and pr.updated_at < cutoff:
                    break
                candidates.append(self._to_request_candidate(pr))
            return candidates

        try:
            candidates = await self._call(fetch, f"list pull requests {project.path}")
        except GithubException as e:
            logger.error(f"GitHub API error listing pull requests for {project.path}: {e}")
            raise
        logger.info(f"Found {len(candidates)} pull requests in {project.path}")
        return candidates

    async def list_issues(
        self, project: Project, cutoff: Optional[datetime]
    ) -> List[IssueCandidate]:
        def fetch():
            params: Dict[str, Any] = {
                "state": "all",
                "sort": "updated",
                "direction": "desc",
            }
            if cutoff is not None:
                params["since"] = cutoff
            candidates = []
            for issue in self._repo(project).get_issues(**params):
                # The issues endpoint also returns pull requests
                if issue.pull_request is not None:
                    continue
                candidates.append(self._to_issue_candidate(issue))
            return candidates

        try:
            candidates = await self._call(fetch, f"list issues {project.path}")
        except GithubException as e:
            logger.error(f"GitHub API error listing issues for {project.path}: {e}")
            raise
        logger.info(f"Found {len(candidates)} issues in {project.path}")
        return candidates

    async def get_approval_state(self, project: Project, number: int) -> ApprovalState:
        """Everyone who submitted a review counts as having reviewed."""

        def fetch():
            reviewers: Dict[str, UserRef] = {}
            for review in self._repo(project).get_pull(number).get_reviews():
                if review.state == "PENDING":
                    continue
                user = to_user_ref(review.user)
                if user is not None:
                    reviewers.setdefault(user.username.lower(), user)
            return ApprovalState(approved_by=list(reviewers.values()))

        return await self._call(fetch, f"get reviews {project.path}#{number}")

    async def list_notes(
        self, project: Project, item_type: ItemType, number: int
    ) -> List[NoteRecord]:
        item_type = ItemType(item_type)

        def fetch():
            repo = self._repo(project)
            if item_type == ItemType.REQUEST:
                pull = repo.get_pull(number)
                comments = list(pull.get_issue_comments())
                comments.extend(pull.get_review_comments())
            else:
                comments = list(repo.get_issue(number).get_comments())
            return [
                self._to_note(project, item_type, number, comment)
                for comment in comments
            ]

        return await self._call(fetch, f"list comments {project.path}#{number}")

    async def get_issues_closed_by(
        self, project: Project, number: int
    ) -> List[ClosingIssueRef]:
        owner, name = split_project_path(project.path)
        payload = {
            "query": CLOSING_ISSUES_QUERY,
            "variables": {"owner": owner, "name": name, "number": number},
        }

        def fetch():
            response = self.session.post(
                graphql_url(self.base_url),
                json=payload,
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=GRAPHQL_TIMEOUT,
            )
            if response.status_code >= 400:
                raise PlatformAPIError(
                    response.status_code, response.text, response.headers
                )
            data = response.json()
            if data.get("errors"):
                message = "; ".join(
                    str(err.get("message", err)) for err in data["errors"]
                )
                raise PlatformAPIError(response.status_code, message, response.headers)
            return data

        data = await self._call_once(fetch)

        pull = ((data.get("data") or {}).get("repository") or {}).get("pullRequest")
        if pull is None:
            raise PlatformAPIError(404, f"pull request {project.path}#{number} not found")

        refs = []
        for node in (pull.get("closingIssuesReferences") or {}).get("nodes") or []:
            issue_number = node.get("number") or 0
            repo_name = (node.get("repository") or {}).get("nameWithOwner")
            full_reference = f"{repo_name}#{issue_number}" if repo_name else None
            refs.append(ClosingIssueRef(number=issue_number, full_reference=full_reference))
        return refs

    async def get_current_user(self) -> UserRef:
        def fetch():
            user = self.client.get_user()
            return UserRef(username=user.login, id=user.id)

        try:
            return await self._call(fetch, "get current user")
        except GithubException as e:
            logger.error(f"GitHub API error resolving current user: {e}")
            raise

    def _to_request_candidate(self, pr) -> RequestCandidate:
        model = RequestModel(
            number=pr.number,
            title=pr.title or "",
            body=pr.body or "",
            state="closed" if pr.state == "closed" else "open",
            merged=pr.merged_at is not None,
            updated_at=pr.updated_at,
            web_url=pr.html_url or "",
            author=pr.user.login if pr.user else "",
        )
        return RequestCandidate(
            model=model,
            author=to_user_ref(pr.user),
            assignees=[to_user_ref(u) for u in pr.assignees or []],
            reviewers=[to_user_ref(u) for u in pr.requested_reviewers or []],
        )

    def _to_issue_candidate(self, issue) -> IssueCandidate:
        model = IssueModel(
            number=issue.number,
            title=issue.title or "",
            body=issue.body or "",
            state="closed" if issue.state == "closed" else "open",
            updated_at=issue.updated_at,
            web_url=issue.html_url or "",
            author=issue.user.login if issue.user else "",
        )
        return IssueCandidate(
            model=model,
            author=to_user_ref(issue.user),
            assignees=[to_user_ref(u) for u in issue.assignees or []],
        )

    def _to_note(self, project: Project, item_type: ItemType, number: int, comment) -> NoteRecord:
        user = to_user_ref(comment.user) or UserRef()
        return NoteRecord(
            project_path=project.path,
            item_type=item_type,
            item_number=number,
            note_id=comment.id,
            body=comment.body or "",
            author_username=user.username,
            author_id=user.id,
        )
