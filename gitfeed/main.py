"""
gitfeed entry point.

Wires settings, cache, retry policy and platform client together and runs
one fetch cycle.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from gitfeed.config import (
    Settings,
    get_settings,
    parse_allowed_repos,
    parse_time_range,
    validate_settings,
)
from gitfeed.errors import ConfigurationError, FetchCancelledError
from gitfeed.integrations import create_platform_client
from gitfeed.models.activity import FeedResult, UserRef
from gitfeed.services.cache import ActivityCache
from gitfeed.services.feed import ActivityFeed, FeedContext
from gitfeed.services.reporter import ActivityReporter, LoggingReporter
from gitfeed.services.retry import RetryPolicy
from gitfeed.services.store import open_store

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("gitfeed").setLevel(logging.DEBUG if settings.debug else logging.INFO)


def open_cache(settings: Settings) -> Optional[ActivityCache]:
    """Open the cache file; a cache that cannot be opened is skipped, not fatal."""
    path = settings.resolved_cache_path
    try:
        return ActivityCache(open_store(path), debug=settings.debug)
    except Exception as e:
        logger.warning(f"Could not open cache at {path}, continuing without it: {e}")
        return None


async def resolve_current_user(client, configured_username: str = "") -> UserRef:
    """
    Look up the authenticated user so matching can use the numeric id.

    A configured username only fills in for an empty API username.
    """
    try:
        user = await client.get_current_user()
    except FetchCancelledError:
        raise
    except Exception as e:
        raise ConfigurationError(f"failed to fetch current user: {e}") from e
    if user.username.strip():
        return user
    configured_username = (configured_username or "").strip()
    if not configured_username:
        raise ConfigurationError("current user has an empty username")
    logger.warning(f"API returned no username, using configured {configured_username}")
    return UserRef(username=configured_username, id=user.id)


async def run(
    settings: Optional[Settings] = None,
    cancel_event: Optional[asyncio.Event] = None,
    reporter: Optional[ActivityReporter] = None,
) -> FeedResult:
    """
    Run one fetch cycle and report the result.

    Args:
        settings: Settings to use (defaults to the environment)
        cancel_event: Set to abort in-flight calls and retry waits
        reporter: Receives the final result (defaults to LoggingReporter)

    Returns:
        The reported FeedResult
    """
    settings = settings or get_settings()
    configure_logging(settings)
    validate_settings(settings)

    cutoff = datetime.now(timezone.utc) - parse_time_range(settings.time_range)
    cancel_event = cancel_event or asyncio.Event()
    logger.info(
        f"{settings.app_name}: {settings.platform} activity since "
        f"{cutoff:%Y-%m-%d %H:%M} UTC ({'local' if settings.local_mode else 'online'})"
    )

    cache = open_cache(settings)
    retry = RetryPolicy(
        cancel_event=cancel_event,
        max_attempts=settings.retry_max_attempts,
        max_elapsed=settings.retry_max_elapsed_seconds,
        verbose=settings.debug,
    )

    client = None
    user = UserRef(username=settings.username)
    if not settings.local_mode:
        client = create_platform_client(settings, retry)
        user = await resolve_current_user(client, settings.username)
        logger.info(f"Authenticated as {user.username}")

    context = FeedContext(
        user=user,
        allowed_projects=parse_allowed_repos(settings.allowed_repos),
        cache=cache,
        local_mode=settings.local_mode,
        debug=settings.debug,
        cancel_event=cancel_event,
    )

    try:
        result = await ActivityFeed(context, client).collect(cutoff)
    finally:
        if cache is not None:
            cache.store.close()

    (reporter or LoggingReporter()).report(result)
    return result
