"""
Platform integrations (GitHub, GitLab).
"""

from gitfeed.integrations.base import (
    PlatformAPIError,
    PlatformClient,
    create_platform_client,
)

__all__ = ["PlatformAPIError", "PlatformClient", "create_platform_client"]
