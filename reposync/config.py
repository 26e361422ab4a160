"""Configuration for the ingestion pipeline.

``IngestorConfig`` gathers every tunable the scheduler, queue processor,
webhook and runtime read, so each entrypoint builds its dependencies from a
single validated value.

Usage
-----
Create a configuration with defaults:

>>> config = IngestorConfig()
>>> config.concurrency
5

Or load from environment variables:

>>> import os
>>> os.environ["REPOSYNC_CONCURRENCY"] = "8"
>>> config = IngestorConfig.from_env()
>>> config.concurrency
8

"""

from __future__ import annotations

import dataclasses as dc
import os
from pathlib import Path

DEFAULT_GITHUB_API_URL = "https://api.github.com"


def _optional(env_var: str) -> str | None:
    raw = os.environ.get(env_var, "").strip()
    return raw or None


@dc.dataclass(frozen=True, slots=True)
class IngestorConfig:
    """Configuration for repository ingestion.

    Attributes
    ----------
    database_url
        SQLAlchemy async URL for the state, content and dead-letter tables.
    github_token
        Shared service token used for public repositories.
    github_api_url
        REST API base URL.
    github_app_id, github_private_key
        GitHub App credentials used to mint installation tokens for private
        repositories tracked without a user.
    github_client_id, github_client_secret
        OAuth application credentials used to refresh user tokens.
    webhook_secret
        Shared secret for ``X-Hub-Signature-256`` verification.
    blob_store_url, blob_store_path
        Blob backend location. The URL wins over the path; when neither is
        set an in-memory backend is used.
    staleness_seconds
        Age after which a synced repository becomes due again. Default 3600.
    scheduler_limit
        Maximum repositories checked per scheduler pass. Default 50.
    concurrency
        Width of each bounded concurrency group. Default 5.
    scheduler_deadline_seconds
        Soft wall-clock deadline for a scheduler pass. Default 30.
    queue_deadline_seconds
        Soft wall-clock deadline for one queue batch. Default 600.
    scheduler_interval_seconds
        Period of the CLI scheduler loop. Default 60.

    """

    database_url: str | None = None
    github_token: str | None = None
    github_api_url: str = DEFAULT_GITHUB_API_URL
    github_app_id: str | None = None
    github_private_key: str | None = dc.field(default=None, repr=False)
    github_client_id: str | None = None
    github_client_secret: str | None = dc.field(default=None, repr=False)
    webhook_secret: str | None = dc.field(default=None, repr=False)
    blob_store_url: str | None = None
    blob_store_path: Path | None = None
    staleness_seconds: int = 3600
    scheduler_limit: int = 50
    concurrency: int = 5
    scheduler_deadline_seconds: int = 30
    queue_deadline_seconds: int = 600
    scheduler_interval_seconds: int = 60

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 1:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls) -> IngestorConfig:
        """Create configuration from ``REPOSYNC_*`` environment variables.

        Returns
        -------
        IngestorConfig
            Configuration instance with values from environment or defaults.

        Raises
        ------
        ValueError
            If any numeric setting is not a positive integer.

        """
        private_key = _optional("REPOSYNC_GITHUB_PRIVATE_KEY")
        if private_key is not None:
            # Keys passed through single-line env vars carry escaped newlines
            private_key = private_key.replace("\\n", "\n")

        raw_path = _optional("REPOSYNC_BLOB_STORE_PATH")

        return cls(
            database_url=_optional("REPOSYNC_DATABASE_URL"),
            github_token=_optional("REPOSYNC_GITHUB_TOKEN"),
            github_api_url=_optional("REPOSYNC_GITHUB_API_URL")
            or DEFAULT_GITHUB_API_URL,
            github_app_id=_optional("REPOSYNC_GITHUB_APP_ID"),
            github_private_key=private_key,
            github_client_id=_optional("REPOSYNC_GITHUB_CLIENT_ID"),
            github_client_secret=_optional("REPOSYNC_GITHUB_CLIENT_SECRET"),
            webhook_secret=_optional("REPOSYNC_WEBHOOK_SECRET"),
            blob_store_url=_optional("REPOSYNC_BLOB_STORE_URL"),
            blob_store_path=Path(raw_path) if raw_path else None,
            staleness_seconds=cls._parse_positive_int(
                "REPOSYNC_STALENESS_SECONDS", 3600
            ),
            scheduler_limit=cls._parse_positive_int("REPOSYNC_SCHEDULER_LIMIT", 50),
            concurrency=cls._parse_positive_int("REPOSYNC_CONCURRENCY", 5),
            scheduler_deadline_seconds=cls._parse_positive_int(
                "REPOSYNC_SCHEDULER_DEADLINE_SECONDS", 30
            ),
            queue_deadline_seconds=cls._parse_positive_int(
                "REPOSYNC_QUEUE_DEADLINE_SECONDS", 600
            ),
            scheduler_interval_seconds=cls._parse_positive_int(
                "REPOSYNC_SCHEDULER_INTERVAL_SECONDS", 60
            ),
        )


__all__ = ["DEFAULT_GITHUB_API_URL", "IngestorConfig"]
