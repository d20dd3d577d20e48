"""
Error taxonomy shared by the feed pipeline.

Retryable transient failures never leave the retry policy; everything here is
what callers may actually see.
"""

from typing import Optional


class GitFeedError(Exception):
    """Base class for all gitfeed errors."""

    pass


class ConfigurationError(GitFeedError):
    """
    Raised when required identity or connection inputs are missing or invalid.
    Always raised before any network activity.
    """

    pass


class InvalidLabelError(GitFeedError, ValueError):
    """Raised when a label is unknown or not valid for the item kind."""

    pass


class RetryExhaustedError(GitFeedError):
    """Raised when a configured retry bound (attempts or elapsed time) is hit."""

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation}: gave up after {attempts} attempts")


class FetchCancelledError(GitFeedError):
    """Raised when the fetch cycle's cancel signal fires."""

    def __init__(self, operation: str = ""):
        self.operation = operation
        message = "fetch cancelled"
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)


class ItemError(GitFeedError):
    """An error tied to a single request or issue."""

    def __init__(
        self,
        message: str,
        project_path: str,
        item_type: str,
        number: int,
        operation: Optional[str] = None,
    ):
        self.project_path = project_path
        self.item_type = item_type
        self.number = number
        self.operation = operation
        sep = "!" if item_type == "mr" else "#"
        where = f"{project_path}{sep}{number}"
        if operation:
            where = f"{operation} {where}"
        super().__init__(f"{where}: {message}")


class LabelDerivationError(ItemError):
    """Raised when a signal lookup fails while deriving an item's label."""

    pass


class ActivityFetchError(GitFeedError):
    """Raised when the platform fetch is aborted by a project or item failure."""

    pass


class PlatformAPIError(GitFeedError):
    """HTTP error returned by a platform API call made outside an SDK."""

    def __init__(self, status: int, message: str = "", headers: Optional[dict] = None):
        self.status = status
        self.headers = dict(headers or {})
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")
