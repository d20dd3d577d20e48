"""
Unit Tests for Issue Reference Parsing
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from gitfeed.models.activity import ClosingIssueRef
from gitfeed.models.identity import IssueIdentity
from gitfeed.services.references import (
    extract_issue_references,
    identity_from_closing_ref,
    parse_qualified_reference,
)


def test_extract_all_reference_forms():
    """Bare, qualified, URL and relative references are all collected."""
    text = (
        "Fixes #12 and group/sub/repo#34 and "
        "https://host/group/other/-/issues/56 and /-/issues/78"
    )

    refs = extract_issue_references(text, "group/sub/repo")

    assert refs == {
        IssueIdentity("group/sub/repo", 12),
        IssueIdentity("group/sub/repo", 34),
        IssueIdentity("group/other", 56),
        IssueIdentity("group/sub/repo", 78),
    }


def test_extract_ignores_noise():
    text = (
        "#0 #x project/repo#-5 /-/issues/0 "
        "https://host/group/repo/-/issues/abc"
    )

    assert extract_issue_references(text, "group/repo") == set()


def test_extract_github_issue_url():
    refs = extract_issue_references(
        "See https://github.com/Octo/Hello-World/issues/7 for details", "octo/other"
    )

    assert refs == {IssueIdentity("octo/hello-world", 7)}


def test_extract_without_default_project_skips_relative_forms():
    refs = extract_issue_references("Fixes #3 and /-/issues/4 and team/api#5", "")

    assert refs == {IssueIdentity("team/api", 5)}


def test_extract_empty_text():
    assert extract_issue_references("", "group/repo") == set()
    assert extract_issue_references("   ", "group/repo") == set()


def test_extract_deduplicates_case_variants():
    refs = extract_issue_references("Group/Repo#9 and group/repo#9 and #9", "GROUP/REPO")

    assert refs == {IssueIdentity("group/repo", 9)}


def test_bare_reference_needs_word_boundary():
    """``abc#5`` is not a bare same-project reference."""
    assert extract_issue_references("abc#5", "group/repo") == set()


def test_parse_qualified_reference():
    assert parse_qualified_reference("group/sub/repo#12") == IssueIdentity("group/sub/repo", 12)
    assert parse_qualified_reference("#12") is None


def test_identity_from_closing_ref_prefers_full_reference():
    ref = ClosingIssueRef(number=3, full_reference="other/project#3")

    assert identity_from_closing_ref(ref, "group/repo") == IssueIdentity("other/project", 3)


def test_identity_from_closing_ref_falls_back_to_default_project():
    ref = ClosingIssueRef(number=4, full_reference="#4")

    assert identity_from_closing_ref(ref, "Group/Repo") == IssueIdentity("group/repo", 4)
    assert identity_from_closing_ref(ClosingIssueRef(number=0), "group/repo") is None
    assert identity_from_closing_ref(ClosingIssueRef(number=4), "") is None
