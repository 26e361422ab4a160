"""Factory for building a provider-specific :class:`SourceIngestor`."""

from __future__ import annotations

import typing as typ

from reposync.errors import MessageValidationError

if typ.TYPE_CHECKING:
    import httpx

    from reposync.content.service import ContentStore
    from reposync.ingestors.protocol import SourceIngestor
    from reposync.metrics import MetricsSink
    from reposync.state.service import RepositoryStateStore, TrackedRepository

SUPPORTED_PROVIDERS = frozenset({"github"})


def create_ingestor(  # noqa: PLR0913
    provider: str,
    repository: TrackedRepository,
    *,
    token: str,
    content: ContentStore,
    state: RepositoryStateStore,
    api_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    metrics: MetricsSink | None = None,
) -> SourceIngestor:
    """Create the ingestor registered for ``provider``.

    Parameters
    ----------
    provider
        Provider key, compared case-insensitively. Only ``"github"`` is
        currently registered.
    repository
        Snapshot of the tracked repository the ingestor is bound to.
    token
        Credential resolved for the repository.
    content, state
        Stores used for change checks and cursor updates.
    api_url, http_client, metrics
        Optional client overrides; tests inject an ``httpx.MockTransport``
        backed client here.

    Raises
    ------
    MessageValidationError
        If no ingestor is registered for ``provider``.

    """
    key = provider.strip().lower()
    if key not in SUPPORTED_PROVIDERS:
        raise MessageValidationError.unsupported_provider(provider)

    from reposync.github.client import (
        DEFAULT_API_URL,
        GitHubRestClient,
        GitHubRestConfig,
    )
    from reposync.github.ingestor import GitHubIngestor

    client = GitHubRestClient(
        GitHubRestConfig(token=token, api_url=api_url or DEFAULT_API_URL),
        http_client=http_client,
        metrics=metrics,
    )
    return GitHubIngestor(repository, client, content=content, state=state)


__all__ = ["SUPPORTED_PROVIDERS", "create_ingestor"]
