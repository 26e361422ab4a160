"""GitHub REST client, token resolution and repository ingestor."""

from __future__ import annotations

from .auth import GitHubAuthConfig, TokenResolver
from .client import (
    NOT_MODIFIED,
    ApiResponse,
    GitHubRestClient,
    GitHubRestConfig,
    RateLimitInfo,
)
from .ingestor import GitHubIngestor
from .models import Blob, Commit, Tree, TreeEntry

__all__ = [
    "NOT_MODIFIED",
    "ApiResponse",
    "Blob",
    "Commit",
    "GitHubAuthConfig",
    "GitHubIngestor",
    "GitHubRestClient",
    "GitHubRestConfig",
    "RateLimitInfo",
    "TokenResolver",
    "Tree",
    "TreeEntry",
]
