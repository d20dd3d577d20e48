"""
Cross-Reference Linker

Resolves which issues each request is linked to and nests them.

Online: the platform's "closes" endpoint wins when it answers; otherwise the
request body and then its notes are parsed. Offline: the cached body and
cached notes are parsed. Both modes share the nesting and standalone rules.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from gitfeed.errors import FetchCancelledError
from gitfeed.models.activity import (
    IssueActivity,
    NoteRecord,
    Project,
    RequestActivity,
)
from gitfeed.models.identity import (
    IssueIdentity,
    normalize_project_path,
    request_key,
)
from gitfeed.models.labels import ItemType
from gitfeed.services.references import (
    extract_issue_references,
    identity_from_closing_ref,
)

logger = logging.getLogger(__name__)

LinkMap = Dict[str, Set[IssueIdentity]]


def references_in_notes(notes: Iterable[NoteRecord], default_project_path: str) -> Set[IssueIdentity]:
    identities: Set[IssueIdentity] = set()
    for note in notes:
        identities |= extract_issue_references(note.body, default_project_path)
    return identities


def _sort_key(activity):
    # Items without an update time sort last
    updated = activity.updated_at
    return (updated is not None, updated.timestamp() if updated else 0.0)


def sort_by_updated(items: List) -> List:
    return sorted(items, key=_sort_key, reverse=True)


def nest_issues(
    requests: List[RequestActivity],
    issues: List[IssueActivity],
    links: LinkMap,
) -> List[RequestActivity]:
    """
    Attach linked issues to each request.

    Identities that do not correspond to a known issue are dropped. Nested
    issues are ordered by descending update time.
    """
    by_identity: Dict[IssueIdentity, IssueActivity] = {}
    for issue in issues:
        by_identity.setdefault(issue.identity, issue)

    nested: List[RequestActivity] = []
    for activity in requests:
        key = request_key(activity.project_path, activity.request.number)
        linked = [
            by_identity[identity]
            for identity in links.get(key, set())
            if identity in by_identity
        ]
        nested.append(activity.model_copy(update={"issues": sort_by_updated(linked)}))
    return nested


def filter_standalone(
    requests: List[RequestActivity], issues: List[IssueActivity]
) -> List[IssueActivity]:
    """Issues not nested under any request."""
    nested: Set[IssueIdentity] = set()
    for activity in requests:
        nested.update(issue.identity for issue in activity.issues)
    return [issue for issue in issues if issue.identity not in nested]


class CrossReferenceLinker:
    """Links requests to issues and splits out the standalone issues."""

    def __init__(self, cache=None):
        """
        Args:
            cache: Optional ActivityCache used to persist fallback notes and
                read cached notes offline
        """
        self.cache = cache

    async def link_online(
        self,
        client,
        projects: Dict[str, Project],
        requests: List[RequestActivity],
        issues: List[IssueActivity],
        notes_by_request: Optional[Dict[str, Optional[List[NoteRecord]]]] = None,
    ) -> Tuple[List[RequestActivity], List[IssueActivity]]:
        """
        Link using live platform data.

        Args:
            client: PlatformClient
            projects: Resolved projects keyed by normalized path
            requests: Request activities from this fetch
            issues: Issue activities from this fetch
            notes_by_request: Notes gathered during label derivation, keyed by
                request key (None when they were not fetched)

        Returns:
            (requests with nested issues, standalone issues)
        """
        notes_by_request = notes_by_request if notes_by_request is not None else {}
        links: LinkMap = {}

        for activity in requests:
            project_path = activity.project_path
            number = activity.request.number
            key = request_key(project_path, number)
            project = projects.get(normalize_project_path(project_path)) or Project(
                path=project_path
            )

            try:
                refs = await client.get_issues_closed_by(project, number)
            except FetchCancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Closes lookup failed for {project_path}!{number}, parsing text instead: {e}"
                )
                links[key] = await self._fallback_links(
                    client, project, activity, notes_by_request
                )
                continue

            resolved = set()
            for ref in refs:
                identity = identity_from_closing_ref(ref, project_path)
                if identity is not None:
                    resolved.add(identity)
            links[key] = resolved

        nested = nest_issues(requests, issues, links)
        return sort_by_updated(nested), sort_by_updated(filter_standalone(nested, issues))

    async def _fallback_links(
        self,
        client,
        project: Project,
        activity: RequestActivity,
        notes_by_request: Dict[str, Optional[List[NoteRecord]]],
    ) -> Set[IssueIdentity]:
        project_path = activity.project_path
        number = activity.request.number
        identities = extract_issue_references(activity.request.body, project_path)
        if identities:
            return identities

        key = request_key(project_path, number)
        notes = notes_by_request.get(key)
        if notes is None:
            try:
                notes = await client.list_notes(project, ItemType.REQUEST, number)
            except FetchCancelledError:
                raise
            except Exception as e:
                logger.warning(f"Failed to list notes for {project_path}!{number}: {e}")
                return set()
            notes_by_request[key] = notes
            if self.cache is not None:
                self.cache.append_notes(project_path, ItemType.REQUEST, number, notes)

        return references_in_notes(notes, project_path)

    def link_offline(
        self,
        requests: List[RequestActivity],
        issues: List[IssueActivity],
    ) -> Tuple[List[RequestActivity], List[IssueActivity]]:
        """Link using cached bodies and cached notes only."""
        links: LinkMap = {}
        for activity in requests:
            project_path = activity.project_path
            number = activity.request.number
            identities = extract_issue_references(activity.request.body, project_path)
            if not identities and self.cache is not None:
                notes = self.cache.get_notes(project_path, ItemType.REQUEST, number)
                identities = references_in_notes(notes, project_path)
            links[request_key(project_path, number)] = identities

        nested = nest_issues(requests, issues, links)
        return sort_by_updated(nested), sort_by_updated(filter_standalone(nested, issues))
