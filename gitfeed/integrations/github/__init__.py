"""
GitHub Integration Module

Provides the GitHub implementation of the platform client.
"""

from gitfeed.integrations.github.client import GitHubClient, graphql_url

__all__ = [
    "GitHubClient",
    "graphql_url",
]
