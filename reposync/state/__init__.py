"""Tracked repository state, sync cursors and provider credentials."""

from __future__ import annotations

from reposync.common.db import Base, UTCDateTime

from .credentials import CredentialStore, UserToken
from .service import (
    FailureSummary,
    RepositoryStateStore,
    RepositorySummary,
    TrackedRepository,
    backoff_delay,
)
from .storage import (
    DEFAULT_BRANCH,
    SYSTEM_USER_ID,
    ProviderCredential,
    RepositoryConfig,
)

__all__ = [
    "DEFAULT_BRANCH",
    "SYSTEM_USER_ID",
    "Base",
    "CredentialStore",
    "FailureSummary",
    "ProviderCredential",
    "RepositoryConfig",
    "RepositoryStateStore",
    "RepositorySummary",
    "TrackedRepository",
    "UTCDateTime",
    "UserToken",
    "backoff_delay",
]
