"""
Ingest package: GitHub activity sources (REST and GraphQL).
"""

from .base import ActivitySource
from .github_rest import GitHubRestSource
from .github_graphql import GitHubGraphQLSource

__all__ = ["ActivitySource", "GitHubRestSource", "GitHubGraphQLSource"]
