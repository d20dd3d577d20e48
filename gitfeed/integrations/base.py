"""
Platform Client Interface

Every hosting platform implements PlatformClient once. Shared pipeline code
only talks to this interface and never branches on the platform name.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from gitfeed.errors import ConfigurationError, PlatformAPIError
from gitfeed.models.activity import (
    ApprovalState,
    ClosingIssueRef,
    IssueCandidate,
    NoteRecord,
    Project,
    RequestCandidate,
    UserRef,
)
from gitfeed.models.labels import ItemType
from gitfeed.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["PlatformClient", "PlatformAPIError", "create_platform_client"]


class PlatformClient(ABC):
    """Read-only access to requests, issues and their discussion."""

    name: str = "platform"

    def __init__(self, retry: Optional[RetryPolicy] = None):
        self.retry = retry or RetryPolicy()

    async def _call(self, fn: Callable[[], T], label: str) -> T:
        """Run a blocking SDK call in a worker thread under the retry policy."""
        return await self.retry.execute(lambda: asyncio.to_thread(fn), label)

    async def _call_once(self, fn: Callable[[], T]) -> T:
        return await asyncio.to_thread(fn)

    @abstractmethod
    async def resolve_project(self, path: str) -> Project:
        ...

    @abstractmethod
    async def list_requests(
        self, project: Project, cutoff: Optional[datetime]
    ) -> List[RequestCandidate]:
        ...

    @abstractmethod
    async def list_issues(
        self, project: Project, cutoff: Optional[datetime]
    ) -> List[IssueCandidate]:
        ...

    @abstractmethod
    async def get_approval_state(self, project: Project, number: int) -> ApprovalState:
        ...

    @abstractmethod
    async def list_notes(
        self, project: Project, item_type: ItemType, number: int
    ) -> List[NoteRecord]:
        ...

    @abstractmethod
    async def get_issues_closed_by(
        self, project: Project, number: int
    ) -> List[ClosingIssueRef]:
        """
        Issues a request closes when merged.

        Implementations must not retry: any failure lets the caller fall back
        to text parsing.
        """
        ...

    @abstractmethod
    async def get_current_user(self) -> UserRef:
        ...


def create_platform_client(settings, retry: Optional[RetryPolicy] = None) -> PlatformClient:
    """
    Build the client for ``settings.platform``.

    Raises:
        ConfigurationError: Unknown platform or invalid connection settings
    """
    platform = (settings.platform or "").strip().lower()

    if platform == "github":
        from gitfeed.integrations.github import GitHubClient

        return GitHubClient(
            token=settings.token,
            base_url=settings.github_base_url,
            retry=retry,
        )

    if platform == "gitlab":
        from gitfeed.config import normalize_gitlab_base_url
        from gitfeed.integrations.gitlab import GitLabClient

        raw_url = settings.gitlab_host or settings.gitlab_base_url
        return GitLabClient(
            token=settings.token,
            base_url=normalize_gitlab_base_url(raw_url),
            retry=retry,
        )

    raise ConfigurationError(f"unsupported platform: {settings.platform!r}")
