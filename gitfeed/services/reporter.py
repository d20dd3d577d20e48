"""
Activity reporting.

Rendering is a collaborator: anything with ``report(result)`` will do. The
package ships a logging reporter that groups requests by state.
"""

import logging
from typing import Dict, List, Protocol

from gitfeed.models.activity import FeedResult, IssueActivity, RequestActivity

logger = logging.getLogger(__name__)


class ActivityReporter(Protocol):
    def report(self, result: FeedResult) -> None:
        ...


def partition_by_state(result: FeedResult) -> Dict[str, List]:
    """
    Group a feed into open/closed/merged requests and open/closed issues.

    Returns:
        {"open_requests", "closed_requests", "merged_requests",
         "open_issues", "closed_issues"} -> lists, order preserved
    """
    groups: Dict[str, List] = {
        "open_requests": [],
        "closed_requests": [],
        "merged_requests": [],
        "open_issues": [],
        "closed_issues": [],
    }
    for activity in result.requests:
        if activity.request.merged:
            groups["merged_requests"].append(activity)
        elif activity.request.state == "closed":
            groups["closed_requests"].append(activity)
        else:
            groups["open_requests"].append(activity)
    for activity in result.issues:
        if activity.issue.state == "closed":
            groups["closed_issues"].append(activity)
        else:
            groups["open_issues"].append(activity)
    return groups


def format_request(activity: RequestActivity) -> str:
    marker = " *" if activity.has_updates else ""
    return (
        f"[{activity.label.value}] {activity.project_path}!{activity.request.number} "
        f"{activity.request.title}{marker}"
    )


def format_issue(activity: IssueActivity) -> str:
    marker = " *" if activity.has_updates else ""
    return (
        f"[{activity.label.value}] {activity.project_path}#{activity.issue.number} "
        f"{activity.issue.title}{marker}"
    )


class LoggingReporter:
    """Writes the feed to the log, one line per item."""

    def __init__(self, log: logging.Logger = logger):
        self.log = log

    def report(self, result: FeedResult) -> None:
        groups = partition_by_state(result)

        for name, title in (
            ("open_requests", "Open requests"),
            ("closed_requests", "Closed requests"),
            ("merged_requests", "Merged requests"),
        ):
            if not groups[name]:
                continue
            self.log.info(f"{title} ({len(groups[name])})")
            for activity in groups[name]:
                self.log.info(f"  {format_request(activity)}")
                for issue in activity.issues:
                    self.log.info(f"    -> {format_issue(issue)}")

        for name, title in (("open_issues", "Open issues"), ("closed_issues", "Closed issues")):
            if not groups[name]:
                continue
            self.log.info(f"{title} ({len(groups[name])})")
            for activity in groups[name]:
                self.log.info(f"  {format_issue(activity)}")

        if not result.requests and not result.issues:
            self.log.info("No activity found")

        if result.cache_error_count:
            self.log.warning(f"{result.cache_error_count} cache writes failed")
