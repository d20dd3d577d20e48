"""
Involvement Labels

Closed label set with explicit per-kind priority tables (1 = highest).
"""

from enum import Enum
from typing import Dict, Union

from gitfeed.errors import InvalidLabelError


class ItemType(str, Enum):
    """Kind of tracked item; the value is used in cache keys."""

    REQUEST = "mr"
    ISSUE = "issue"


class Label(str, Enum):
    """Why the current user is associated with an item."""

    AUTHORED = "Authored"
    ASSIGNED = "Assigned"
    REVIEWED = "Reviewed"
    REVIEW_REQUESTED = "Review Requested"
    COMMENTED = "Commented"
    MENTIONED = "Mentioned"
    INVOLVED = "Involved"  # catch-all when no signal matched


REQUEST_PRIORITY: Dict[Label, int] = {
    Label.AUTHORED: 1,
    Label.ASSIGNED: 2,
    Label.REVIEWED: 3,
    Label.REVIEW_REQUESTED: 4,
    Label.COMMENTED: 5,
    Label.MENTIONED: 6,
}

ISSUE_PRIORITY: Dict[Label, int] = {
    Label.AUTHORED: 1,
    Label.ASSIGNED: 2,
    Label.COMMENTED: 3,
    Label.MENTIONED: 4,
}

DECISIVE_LABELS = frozenset({Label.AUTHORED, Label.ASSIGNED})


def coerce_label(value: Union[str, Label]) -> Label:
    """Convert a stored string to a Label, rejecting unknown values."""
    if isinstance(value, Label):
        return value
    try:
        return Label(value)
    except ValueError:
        raise InvalidLabelError(f"unknown involvement label: {value!r}") from None


def priority_table(item_type: ItemType) -> Dict[Label, int]:
    return REQUEST_PRIORITY if ItemType(item_type) == ItemType.REQUEST else ISSUE_PRIORITY


def label_priority(label: Union[str, Label], item_type: ItemType) -> int:
    """
    Return the priority of a label for the given item kind.

    Involved ranks below every label in the table. A label that does not
    belong to the kind (e.g. Reviewed on an issue) is rejected.
    """
    label = coerce_label(label)
    table = priority_table(item_type)
    if label == Label.INVOLVED:
        return len(table) + 1
    if label not in table:
        raise InvalidLabelError(
            f"label {label.value!r} is not valid for {ItemType(item_type).value} items"
        )
    return table[label]
