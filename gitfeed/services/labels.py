"""
Label Deriver

Responsibilities:
- Compute the involvement label for a single request or issue
- Merge signals monotonically under the per-kind priority table
- Short-circuit once the label is Authored/Assigned
- Hand back any notes it fetched so later stages can reuse them
"""

import logging
from typing import Iterable, List, Optional, Tuple

from gitfeed.errors import FetchCancelledError, LabelDerivationError
from gitfeed.models.activity import (
    IssueCandidate,
    NoteRecord,
    Project,
    RequestCandidate,
    UserRef,
)
from gitfeed.models.labels import (
    DECISIVE_LABELS,
    ItemType,
    Label,
    coerce_label,
    label_priority,
)

logger = logging.getLogger(__name__)


def merge_label(
    current: Optional[Label], candidate: Label, item_type: ItemType
) -> Label:
    """Keep ``candidate`` only when it ranks strictly better than ``current``."""
    candidate = coerce_label(candidate)
    if current is None:
        label_priority(candidate, item_type)
        return candidate
    if label_priority(candidate, item_type) < label_priority(current, item_type):
        return candidate
    return coerce_label(current)


def needs_lower_priority_checks(current: Optional[Label], item_type: ItemType) -> bool:
    """True when Commented or Mentioned would still improve ``current``."""
    if current is None:
        return True
    return (
        merge_label(current, Label.COMMENTED, item_type) != current
        or merge_label(current, Label.MENTIONED, item_type) != current
    )


def contains_mention(text: str, username: str) -> bool:
    username = (username or "").strip()
    if not text or not username:
        return False
    return f"@{username}".lower() in text.lower()


def any_user_matches(users: Iterable[Optional[UserRef]], user: UserRef) -> bool:
    return any(u is not None and user.matches(u.username, u.id) for u in users)


def notes_label(
    current: Optional[Label],
    body: str,
    notes: List[NoteRecord],
    user: UserRef,
    item_type: ItemType,
) -> Optional[Label]:
    """Fold the Commented/Mentioned signals found in the body and notes."""
    label = current
    if any(user.matches(note.author_username, note.author_id) for note in notes):
        label = merge_label(label, Label.COMMENTED, item_type)

    mentioned = contains_mention(body, user.username) or any(
        contains_mention(note.body, user.username) for note in notes
    )
    if mentioned:
        label = merge_label(label, Label.MENTIONED, item_type)
    return label


class LabelDeriver:
    """Derives labels by querying the platform client for extra signals."""

    async def derive_request_label(
        self,
        client,
        project: Project,
        candidate: RequestCandidate,
        user: UserRef,
    ) -> Tuple[Label, Optional[List[NoteRecord]]]:
        """
        Derive the label for a request.

        Args:
            client: PlatformClient used for approvals and notes
            project: Project the request belongs to
            candidate: Listed request with author/assignees/reviewers
            user: Current user

        Returns:
            (label, notes) where notes is None if they were never fetched

        Raises:
            LabelDerivationError: A signal lookup failed
        """
        item_type = ItemType.REQUEST
        number = candidate.model.number
        label: Optional[Label] = None

        if any_user_matches([candidate.author], user):
            label = merge_label(label, Label.AUTHORED, item_type)
        if any_user_matches(candidate.assignees, user):
            label = merge_label(label, Label.ASSIGNED, item_type)
        if label in DECISIVE_LABELS:
            return label, None

        approvals = await self._lookup(
            client.get_approval_state(project, number),
            project, item_type, number, "get approvals",
        )
        if any_user_matches(approvals.approved_by, user):
            label = merge_label(label, Label.REVIEWED, item_type)

        if any_user_matches(candidate.reviewers, user):
            label = merge_label(label, Label.REVIEW_REQUESTED, item_type)

        if not needs_lower_priority_checks(label, item_type):
            return label, None

        notes = await self._lookup(
            client.list_notes(project, item_type, number),
            project, item_type, number, "list notes",
        )
        label = notes_label(label, candidate.model.body, notes, user, item_type)
        return label or Label.INVOLVED, notes

    async def derive_issue_label(
        self,
        client,
        project: Project,
        candidate: IssueCandidate,
        user: UserRef,
    ) -> Tuple[Label, Optional[List[NoteRecord]]]:
        """Derive the label for an issue (no approval or reviewer signals)."""
        item_type = ItemType.ISSUE
        number = candidate.model.number
        label: Optional[Label] = None

        if any_user_matches([candidate.author], user):
            label = merge_label(label, Label.AUTHORED, item_type)
        if any_user_matches(candidate.assignees, user):
            label = merge_label(label, Label.ASSIGNED, item_type)
        if label in DECISIVE_LABELS:
            return label, None

        notes = await self._lookup(
            client.list_notes(project, item_type, number),
            project, item_type, number, "list notes",
        )
        label = notes_label(label, candidate.model.body, notes, user, item_type)
        return label or Label.INVOLVED, notes

    async def _lookup(self, awaitable, project, item_type, number, operation):
        try:
            return await awaitable
        except FetchCancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to {operation} for {project.path} {item_type.value} {number}: {e}")
            raise LabelDerivationError(
                str(e), project.path, item_type.value, number, operation
            ) from e
