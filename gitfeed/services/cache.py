"""
Activity Cache

Durable upsert/read boundary between the pipeline and the key-value store.

Responsibilities:
- Whole-record replacement of requests/issues keyed by normalized identity
- Note storage keyed by (project, item type, number, note id)
- Best-effort writes: failures are logged and counted, never raised
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from gitfeed.models.activity import IssueModel, NoteRecord, RequestModel
from gitfeed.models.identity import (
    clean_project_path,
    issue_key,
    note_key,
    note_prefix,
    project_path_from_key,
    request_key,
)
from gitfeed.models.labels import ItemType, Label, coerce_label
from gitfeed.services.store import KeyValueStore

logger = logging.getLogger(__name__)

REQUESTS_BUCKET = "requests"
ISSUES_BUCKET = "issues"
NOTES_BUCKET = "notes"


class CachedRequest(BaseModel):
    project_path: str  # original casing, for display
    label: str
    item: RequestModel


class CachedIssue(BaseModel):
    project_path: str
    label: str
    item: IssueModel


class ActivityCache:
    """Cache of requests, issues and notes on top of a KeyValueStore."""

    def __init__(self, store: KeyValueStore, debug: bool = False):
        self.store = store
        self.debug = debug
        self.write_error_count = 0

    def _write(self, bucket: str, key: str, value: str) -> bool:
        try:
            self.store.put(bucket, key, value)
        except Exception as e:
            self.write_error_count += 1
            logger.warning(f"Failed to save {bucket} entry {key}: {e}")
            return False
        if self.debug:
            logger.debug(f"Saved {bucket} entry {key}")
        return True

    # Requests / issues

    def upsert_request(self, project_path: str, model: RequestModel, label: Label) -> bool:
        record = CachedRequest(
            project_path=clean_project_path(project_path),
            label=coerce_label(label).value,
            item=model,
        )
        return self._write(
            REQUESTS_BUCKET, request_key(project_path, model.number), record.model_dump_json()
        )

    def upsert_issue(self, project_path: str, model: IssueModel, label: Label) -> bool:
        record = CachedIssue(
            project_path=clean_project_path(project_path),
            label=coerce_label(label).value,
            item=model,
        )
        return self._write(
            ISSUES_BUCKET, issue_key(project_path, model.number), record.model_dump_json()
        )

    def get_request(self, project_path: str, number: int) -> Optional[RequestModel]:
        raw = self.store.get(REQUESTS_BUCKET, request_key(project_path, number))
        if raw is None:
            return None
        return CachedRequest.model_validate_json(raw).item

    def get_issue(self, project_path: str, number: int) -> Optional[IssueModel]:
        raw = self.store.get(ISSUES_BUCKET, issue_key(project_path, number))
        if raw is None:
            return None
        return CachedIssue.model_validate_json(raw).item

    def get_all_requests(
        self,
    ) -> Tuple[Dict[str, RequestModel], Dict[str, Label], Dict[str, str]]:
        """
        Read every cached request.

        Returns:
            (key -> model, key -> label, key -> original-cased project path)

        Raises:
            InvalidLabelError: A stored label is not a known label
        """
        models: Dict[str, RequestModel] = {}
        labels: Dict[str, Label] = {}
        paths: Dict[str, str] = {}
        for key, raw in self.store.scan(REQUESTS_BUCKET):
            record = CachedRequest.model_validate_json(raw)
            models[key] = record.item
            labels[key] = coerce_label(record.label)
            paths[key] = record.project_path or project_path_from_key(key) or ""
        return models, labels, paths

    def get_all_issues(
        self,
    ) -> Tuple[Dict[str, IssueModel], Dict[str, Label], Dict[str, str]]:
        models: Dict[str, IssueModel] = {}
        labels: Dict[str, Label] = {}
        paths: Dict[str, str] = {}
        for key, raw in self.store.scan(ISSUES_BUCKET):
            record = CachedIssue.model_validate_json(raw)
            models[key] = record.item
            labels[key] = coerce_label(record.label)
            paths[key] = record.project_path or project_path_from_key(key) or ""
        return models, labels, paths

    # Notes

    def append_note(self, note: NoteRecord) -> bool:
        key = note_key(note.project_path, note.item_type, note.item_number, note.note_id)
        return self._write(NOTES_BUCKET, key, note.model_dump_json())

    def append_notes(
        self,
        project_path: str,
        item_type: ItemType,
        number: int,
        notes: Iterable[NoteRecord],
    ) -> int:
        """Store notes for one item; returns how many were written."""
        written = 0
        for note in notes:
            if note.project_path != project_path or note.item_number != number:
                note = note.model_copy(
                    update={
                        "project_path": project_path,
                        "item_type": ItemType(item_type),
                        "item_number": number,
                    }
                )
            if self.append_note(note):
                written += 1
        return written

    def get_notes(self, project_path: str, item_type: ItemType, number: int) -> List[NoteRecord]:
        """Notes for one item, ordered by note id."""
        prefix = note_prefix(project_path, item_type, number)
        notes = [
            NoteRecord.model_validate_json(raw)
            for _, raw in self.store.scan_prefix(NOTES_BUCKET, prefix)
        ]
        return sorted(notes, key=lambda note: note.note_id)

    # Maintenance

    def has_data(self) -> bool:
        return (
            self.store.count(REQUESTS_BUCKET) > 0 or self.store.count(ISSUES_BUCKET) > 0
        )

    def clear(self) -> None:
        self.store.clear()
        logger.info("Cache cleared")
