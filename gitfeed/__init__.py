"""
gitfeed

Involvement feed for GitHub pull requests and GitLab merge requests and issues.
"""

__version__ = "0.1.0"
