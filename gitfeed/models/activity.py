"""
Activity Models

Unified request/issue data structures regardless of platform (GitHub, GitLab).
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from gitfeed.models.identity import (
    issue_identity,
    join_project_path,
    split_project_path,
)
from gitfeed.models.labels import ItemType, Label


class UserRef(BaseModel):
    """Platform user reference."""

    username: str = ""
    id: int = 0  # 0 when unknown

    def matches(self, username: str, user_id: int = 0) -> bool:
        if user_id > 0 and self.id == user_id:
            return True
        return self.username.strip().lower() == (username or "").strip().lower()


class RequestModel(BaseModel):
    """Pull request (GitHub) or merge request (GitLab)."""

    model_config = ConfigDict(frozen=True)

    number: int
    title: str = ""
    body: str = ""
    state: str = "open"  # open | closed
    merged: bool = False
    updated_at: Optional[datetime] = None
    web_url: str = ""
    author: str = ""


class IssueModel(BaseModel):
    """Issue on either platform."""

    model_config = ConfigDict(frozen=True)

    number: int
    title: str = ""
    body: str = ""
    state: str = "open"  # open | closed
    updated_at: Optional[datetime] = None
    web_url: str = ""
    author: str = ""


class RequestCandidate(BaseModel):
    """A listed request together with its involvement evidence."""

    model: RequestModel
    author: Optional[UserRef] = None
    assignees: List[UserRef] = []
    reviewers: List[UserRef] = []


class IssueCandidate(BaseModel):
    """A listed issue together with its involvement evidence."""

    model: IssueModel
    author: Optional[UserRef] = None
    assignees: List[UserRef] = []


class NoteRecord(BaseModel):
    """Comment/note on a request or issue."""

    project_path: str
    item_type: ItemType
    item_number: int
    note_id: int
    body: str = ""
    author_username: str = ""
    author_id: int = 0

    @property
    def author(self) -> UserRef:
        return UserRef(username=self.author_username, id=self.author_id)


class ApprovalState(BaseModel):
    """Users that approved (or reviewed) a request, flattened over all rules."""

    approved_by: List[UserRef] = []


class ClosingIssueRef(BaseModel):
    """Issue reported by a platform's "closes" endpoint."""

    number: int
    full_reference: Optional[str] = None  # e.g. "group/sub/repo#12"


class Project(BaseModel):
    """Resolved project/repository."""

    path: str
    id: int = 0


class IssueActivity(BaseModel):
    """Issue enriched with a derived involvement label."""

    label: Label
    owner: str
    repo: str
    issue: IssueModel
    updated_at: Optional[datetime] = None
    has_updates: bool = False

    @property
    def project_path(self) -> str:
        return join_project_path(self.owner, self.repo)

    @property
    def identity(self):
        return issue_identity(self.project_path, self.issue.number)

    @classmethod
    def build(
        cls, project_path: str, issue: IssueModel, label: Label, has_updates: bool = False
    ) -> "IssueActivity":
        owner, repo = split_project_path(project_path)
        return cls(
            label=label,
            owner=owner,
            repo=repo,
            issue=issue,
            updated_at=issue.updated_at,
            has_updates=has_updates,
        )


class RequestActivity(BaseModel):
    """Request enriched with a derived label and its linked issues."""

    label: Label
    owner: str
    repo: str
    request: RequestModel
    updated_at: Optional[datetime] = None
    has_updates: bool = False
    issues: List[IssueActivity] = Field(default_factory=list)

    @property
    def project_path(self) -> str:
        return join_project_path(self.owner, self.repo)

    @classmethod
    def build(
        cls,
        project_path: str,
        request: RequestModel,
        label: Label,
        has_updates: bool = False,
    ) -> "RequestActivity":
        owner, repo = split_project_path(project_path)
        return cls(
            label=label,
            owner=owner,
            repo=repo,
            request=request,
            updated_at=request.updated_at,
            has_updates=has_updates,
        )


class FeedResult(BaseModel):
    """Final collections handed to the reporter."""

    requests: List[RequestActivity] = Field(default_factory=list)
    issues: List[IssueActivity] = Field(default_factory=list)
    cache_error_count: int = 0
