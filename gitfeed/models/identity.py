"""
Item Identity

Normalized (project path, number) keys used for dedup, linking and cache
lookup. Keys are lower-cased so differently-cased spellings of a project
collide, and type-tagged so the project path can be recovered from a key.
"""

from typing import NamedTuple, Optional, Tuple

REQUEST_KEY_SEP = "#!"
ISSUE_KEY_SEP = "##"
NOTE_KEY_SEP = "|"


class IssueIdentity(NamedTuple):
    project_path: str
    number: int

    @property
    def key(self) -> str:
        return issue_key(self.project_path, self.number)


def clean_project_path(path: Optional[str]) -> str:
    """Trim whitespace and surrounding slashes, keeping the original case."""
    return (path or "").strip().strip("/")


def normalize_project_path(path: Optional[str]) -> str:
    return clean_project_path(path).lower()


def split_project_path(path: str) -> Tuple[str, str]:
    """
    Split ``group/sub/repo`` into ``("group/sub", "repo")``.

    A path without a usable slash is returned whole as the owner.
    """
    cleaned = clean_project_path(path)
    idx = cleaned.rfind("/")
    if idx <= 0 or idx >= len(cleaned) - 1:
        return cleaned, ""
    return cleaned[:idx], cleaned[idx + 1 :]


def join_project_path(owner: str, repo: str) -> str:
    owner = clean_project_path(owner)
    repo = clean_project_path(repo)
    if not repo:
        return owner
    if not owner:
        return repo
    return f"{owner}/{repo}"


def issue_identity(project_path: str, number: int) -> IssueIdentity:
    return IssueIdentity(normalize_project_path(project_path), int(number))


def request_key(project_path: str, number: int) -> str:
    return f"{normalize_project_path(project_path)}{REQUEST_KEY_SEP}{int(number)}"


def issue_key(project_path: str, number: int) -> str:
    return f"{normalize_project_path(project_path)}{ISSUE_KEY_SEP}{int(number)}"


def note_prefix(project_path: str, item_type: str, number: int) -> str:
    item_type = str(getattr(item_type, "value", item_type)).strip().lower()
    return NOTE_KEY_SEP.join(
        [normalize_project_path(project_path), item_type, str(int(number)), ""]
    )


def note_key(project_path: str, item_type: str, number: int, note_id: int) -> str:
    return f"{note_prefix(project_path, item_type, number)}{int(note_id)}"


def project_path_from_key(key: str) -> Optional[str]:
    """Recover the normalized project path from a request or issue key."""
    for sep in (REQUEST_KEY_SEP, ISSUE_KEY_SEP):
        idx = key.rfind(sep)
        if idx > 0:
            return key[:idx]
    return None
