"""
gitfeed runner.

Usage:
    python run.py

Environment variables (set in .env or ~/.gitfeed/.env):
    PLATFORM=gitlab|github - Platform to query (default: gitlab)
    GITLAB_TOKEN / GITHUB_TOKEN - API token
    ALLOWED_REPOS=group/repo,... - Projects to scan
    TIME_RANGE=1m - How far back to look (h, d, w, m, y)
    LOCAL_MODE=true - Replay from the cache without network access
    DEBUG=true - Enable debug logging
"""

import asyncio
import logging
import signal
import sys

from gitfeed.config import get_settings
from gitfeed.errors import ConfigurationError, FetchCancelledError, GitFeedError
from gitfeed.main import run

logger = logging.getLogger("gitfeed")


async def main() -> int:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        # Windows event loops have no signal handlers
        pass

    try:
        await run(get_settings(), cancel_event)
    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 2
    except FetchCancelledError:
        logger.warning("Fetch cancelled")
        return 130
    except GitFeedError as e:
        logger.error(f"Error fetching activity: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
