# Shared data models
from gitfeed.models.activity import (
    ApprovalState,
    ClosingIssueRef,
    FeedResult,
    IssueActivity,
    IssueCandidate,
    IssueModel,
    NoteRecord,
    Project,
    RequestActivity,
    RequestCandidate,
    RequestModel,
    UserRef,
)
from gitfeed.models.identity import IssueIdentity, issue_identity
from gitfeed.models.labels import ItemType, Label

__all__ = [
    "ApprovalState",
    "ClosingIssueRef",
    "FeedResult",
    "IssueActivity",
    "IssueCandidate",
    "IssueIdentity",
    "IssueModel",
    "ItemType",
    "Label",
    "NoteRecord",
    "Project",
    "RequestActivity",
    "RequestCandidate",
    "RequestModel",
    "UserRef",
    "issue_identity",
]
