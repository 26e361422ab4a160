"""``GET /status``: repository counts and the most recent failures."""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

from reposync.api.errors import InvalidInputError
from reposync.ingestors.factory import SUPPORTED_PROVIDERS
from reposync.metrics import InMemoryMetricsSink

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from reposync.metrics import MetricsSink
    from reposync.state.service import RepositoryStateStore, RepositorySummary

__all__ = ["StatusResource", "serialize_summary"]


def serialize_summary(summary: RepositorySummary) -> dict[str, typ.Any]:
    """Serialize a :class:`RepositorySummary` to a JSON-compatible dict."""
    return {
        "repositories": {
            "total": summary.total,
            "never_synced": summary.never_synced,
            "failing": summary.failing,
            "rate_limited": summary.rate_limited,
        },
        "recent_failures": [
            {
                "repo_id": failure.repo_id,
                "repository": failure.slug,
                "retry_count": failure.retry_count,
                "next_retry_at": (
                    failure.next_retry_at.isoformat()
                    if failure.next_retry_at
                    else None
                ),
                "last_error": failure.last_error,
            }
            for failure in summary.recent_failures
        ],
    }


class StatusResource:
    """Summarise tracked repositories, optionally for one ``provider``.

    When the process records metrics in memory the current counters are
    included under ``metrics``.
    """

    def __init__(
        self, state: RepositoryStateStore, metrics: MetricsSink | None = None
    ) -> None:
        """Store the state store and optional metrics sink."""
        self._state = state
        self._metrics = metrics

    async def on_get(self, req: Request, resp: Response) -> None:
        """Handle GET /status requests.

        Raises
        ------
        InvalidInputError
            If ``provider`` names a provider without an ingestor.

        """
        provider = req.get_param("provider")
        if provider is not None and provider not in SUPPORTED_PROVIDERS:
            raise InvalidInputError(
                f"unsupported provider {provider!r}", field="provider"
            )

        summary = await self._state.summarise(provider)
        media = serialize_summary(summary)
        if isinstance(self._metrics, InMemoryMetricsSink):
            media["metrics"] = self._metrics.snapshot()
        resp.media = media
        resp.status = HTTPStatus.OK
