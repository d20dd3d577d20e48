"""
Issue Reference Parser

Extracts issue identities from free text (request bodies, comments/notes).
Parsing is permissive: anything that does not look like a positive issue
number is ignored rather than reported.

Recognized forms:
    https://gitlab.example.com/group/sub/repo/-/issues/12
    https://github.com/owner/repo/issues/12
    group/sub/repo#12
    /-/issues/12   (relative to the default project)
    #12            (relative to the default project)
"""

import re
from typing import Optional, Set

from gitfeed.models.activity import ClosingIssueRef
from gitfeed.models.identity import (
    IssueIdentity,
    issue_identity,
    normalize_project_path,
)

_PATH = r"[a-z0-9_.-]+(?:/[a-z0-9_.-]+)+?"

URL_REF_PATTERN = re.compile(
    rf"https?://[^/\s]+/({_PATH})(?:/-)?/issues/([0-9]+)\b", re.IGNORECASE
)
QUALIFIED_REF_PATTERN = re.compile(
    r"([a-z0-9_.-]+(?:/[a-z0-9_.-]+)+)#([0-9]+)\b", re.IGNORECASE
)
RELATIVE_URL_REF_PATTERN = re.compile(
    r"(?<![a-z0-9_.-])/-/issues/([0-9]+)\b", re.IGNORECASE
)
SAME_PROJECT_REF_PATTERN = re.compile(r"(?:^|[^a-z0-9_])#([0-9]+)\b", re.IGNORECASE)


def parse_positive_int(raw: str) -> Optional[int]:
    try:
        value = int(raw.strip())
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def extract_issue_references(text: str, default_project_path: str = "") -> Set[IssueIdentity]:
    """
    Extract every issue reference in ``text``.

    Args:
        text: Body or comment text
        default_project_path: Project used for ``#N`` and ``/-/issues/N``

    Returns:
        Deduplicated set of issue identities
    """
    results: Set[IssueIdentity] = set()
    if not text or not text.strip():
        return results

    for pattern in (URL_REF_PATTERN, QUALIFIED_REF_PATTERN):
        for project_path, raw_number in pattern.findall(text):
            number = parse_positive_int(raw_number)
            if number is not None:
                results.add(issue_identity(project_path, number))

    default_project_path = normalize_project_path(default_project_path)
    if default_project_path:
        for pattern in (RELATIVE_URL_REF_PATTERN, SAME_PROJECT_REF_PATTERN):
            for raw_number in pattern.findall(text):
                number = parse_positive_int(raw_number)
                if number is not None:
                    results.add(issue_identity(default_project_path, number))

    return results


def parse_qualified_reference(reference: str) -> Optional[IssueIdentity]:
    """Parse the first ``group/repo#N`` reference in a string."""
    for project_path, raw_number in QUALIFIED_REF_PATTERN.findall(reference or ""):
        number = parse_positive_int(raw_number)
        if number is not None:
            return issue_identity(project_path, number)
    return None


def identity_from_closing_ref(
    ref: ClosingIssueRef, default_project_path: str
) -> Optional[IssueIdentity]:
    """
    Resolve an issue returned by a "closes" endpoint.

    The embedded full reference wins; otherwise the issue is assumed to live
    in the request's own project.
    """
    if ref is None or ref.number <= 0:
        return None

    if ref.full_reference:
        identity = parse_qualified_reference(ref.full_reference)
        if identity is not None:
            return identity

    default_project_path = normalize_project_path(default_project_path)
    if not default_project_path:
        return None
    return issue_identity(default_project_path, ref.number)
