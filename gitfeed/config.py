from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional, Set
from urllib.parse import urlparse, urlunparse

from pydantic import AliasChoices, ConfigDict, Field
from pydantic_settings import BaseSettings

from gitfeed.errors import ConfigurationError

CONFIG_DIR = Path.home() / ".gitfeed"

DEFAULT_GITLAB_BASE_URL = "https://gitlab.com"
DEFAULT_GITHUB_BASE_URL = "https://api.github.com"

_TIME_UNITS = {
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "m": timedelta(days=30),
    "y": timedelta(days=365),
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "gitfeed"
    debug: bool = False
    platform: str = "gitlab"  # gitlab | github
    local_mode: bool = False
    time_range: str = "1m"
    allowed_repos: str = ""
    cache_path: str = ""

    # GitLab
    gitlab_token: str = Field(
        "", validation_alias=AliasChoices("GITLAB_ACTIVITY_TOKEN", "GITLAB_TOKEN")
    )
    gitlab_username: str = Field(
        "", validation_alias=AliasChoices("GITLAB_USERNAME", "GITLAB_USER")
    )
    gitlab_host: str = ""  # overrides gitlab_base_url when set
    gitlab_base_url: str = DEFAULT_GITLAB_BASE_URL

    # GitHub
    github_token: str = ""
    github_username: str = ""
    github_base_url: str = DEFAULT_GITHUB_BASE_URL

    # Retry bounds, 0 = unlimited
    retry_max_attempts: int = 0
    retry_max_elapsed_seconds: float = 0.0

    model_config = ConfigDict(
        env_file=(str(CONFIG_DIR / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def token(self) -> str:
        if self.platform == "github":
            return self.github_token.strip()
        return self.gitlab_token.strip()

    @property
    def username(self) -> str:
        if self.platform == "github":
            return self.github_username.strip()
        return self.gitlab_username.strip()

    @property
    def resolved_cache_path(self) -> Path:
        if self.cache_path:
            return Path(self.cache_path).expanduser()
        return CONFIG_DIR / f"{self.platform}.db"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def parse_time_range(value: str) -> timedelta:
    """
    Parse a time range such as 1h, 2d, 3w, 4m or 1y.

    Months are 30 days and years are 365 days.

    Raises:
        ConfigurationError: If the format, number or unit is invalid
    """
    value = (value or "").strip()
    if len(value) < 2:
        raise ConfigurationError(
            f"invalid time range format: {value!r} (expected format like 1h, 2d, 3w, 4m, 1y)"
        )

    number, unit = value[:-1], value[-1]
    if not number.isdigit() or int(number) < 1:
        raise ConfigurationError(
            f"invalid time range number: {number!r} (must be a positive integer)"
        )
    if unit not in _TIME_UNITS:
        raise ConfigurationError(
            f"invalid time unit: {unit!r} (use h=hours, d=days, w=weeks, m=months, y=years)"
        )

    return int(number) * _TIME_UNITS[unit]


def normalize_gitlab_base_url(raw: Optional[str]) -> str:
    """
    Normalize a GitLab host or base URL to its REST v4 API root.

    Examples:
        "" -> https://gitlab.com/api/v4
        http://10.0.0.5/ -> http://10.0.0.5/api/v4
        https://example.com/gitlab -> https://example.com/gitlab/api/v4
    """
    base_url = (raw or "").strip() or DEFAULT_GITLAB_BASE_URL

    parsed = urlparse(base_url)
    if not parsed.scheme or not parsed.netloc:
        raise ConfigurationError(
            f"invalid GitLab base URL {base_url!r}: must include scheme and host"
        )

    path = parsed.path.rstrip("/")
    if not path.endswith("/api/v4"):
        path += "/api/v4"

    return urlunparse((parsed.scheme, parsed.netloc, path, "", "", ""))


def parse_allowed_repos(raw: Optional[str]) -> Set[str]:
    """Split a comma-separated repo list into a set of trimmed paths."""
    repos = set()
    for repo in (raw or "").split(","):
        repo = repo.strip().strip("/")
        if repo:
            repos.add(repo)
    return repos


def validate_settings(settings: Settings) -> None:
    """
    Fail fast on configuration that would make an online fetch impossible.

    Local mode reads only the cache and needs nothing.
    """
    if settings.platform not in ("gitlab", "github"):
        raise ConfigurationError(
            f"unknown platform {settings.platform!r} (expected gitlab or github)"
        )

    parse_time_range(settings.time_range)

    if settings.local_mode:
        return

    if not settings.token:
        env_name = "GITHUB_TOKEN" if settings.platform == "github" else "GITLAB_TOKEN"
        raise ConfigurationError(
            f"token is required for {settings.platform} API mode; set {env_name} "
            f"or add it to {CONFIG_DIR / '.env'}"
        )

    if not parse_allowed_repos(settings.allowed_repos):
        raise ConfigurationError(
            "ALLOWED_REPOS is required for API mode to keep API usage bounded "
            "(e.g. ALLOWED_REPOS=team/service,platform/backend/tool)"
        )

    if settings.platform == "gitlab":
        normalize_gitlab_base_url(settings.gitlab_host or settings.gitlab_base_url)
