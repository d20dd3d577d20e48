"""
GitLab Integration Module

Provides the GitLab implementation of the platform client.
"""

from gitfeed.integrations.gitlab.client import GitLabClient, normalize_state

__all__ = [
    "GitLabClient",
    "normalize_state",
]
