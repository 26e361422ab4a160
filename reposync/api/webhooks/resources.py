"""Falcon resource receiving GitHub webhook deliveries.

The resource reads the raw body (the signature covers the exact bytes),
delegates to :func:`reposync.webhook.handle_webhook` and maps the result to
an HTTP status. Rejections are raised as webhook exceptions and rendered by
the handlers in :mod:`reposync.api.errors`.

Usage
-----
Register the resource on the Falcon app::

    app.add_route("/webhooks/github", GitHubWebhookResource(deps))

"""

from __future__ import annotations

import typing as typ

import falcon
from sqlalchemy.exc import SQLAlchemyError

from reposync.errors import IngestError
from reposync.logging import get_logger, log_exception
from reposync.webhook import WebhookPayloadError, WebhookRequest, handle_webhook

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from reposync.factory import IngestorDependencies
    from reposync.webhook import WebhookResult

__all__ = ["GitHubWebhookResource", "serialize_result"]

logger = get_logger(__name__)

_REQUIRED_HEADERS = ("X-GitHub-Event", "X-GitHub-Delivery")


def serialize_result(result: WebhookResult) -> dict[str, typ.Any]:
    """Serialize a :class:`WebhookResult` to a JSON-compatible dict."""
    media: dict[str, typ.Any] = {
        "status": str(result.status),
        "event": result.event,
        "delivery": result.delivery,
        "enqueued": result.enqueued,
    }
    if result.repo_slug is not None:
        media["repository"] = result.repo_slug
    if result.changed_files:
        media["changed_files"] = list(result.changed_files)
    if result.detail is not None:
        media["detail"] = result.detail
    return media


class GitHubWebhookResource:
    """``POST /webhooks/github``.

    Status codes: 200 when the delivery changed state or enqueued work, 202
    when it was accepted but ignored, 400 and 401 for rejected deliveries,
    500 when processing fails.
    """

    def __init__(self, deps: IngestorDependencies) -> None:
        """Store the ingestion dependencies."""
        self._deps = deps

    async def on_post(self, req: Request, resp: Response) -> None:
        """Verify and handle one delivery."""
        missing = [name for name in _REQUIRED_HEADERS if not req.get_header(name)]
        if missing:
            msg = f"missing required headers: {', '.join(missing)}"
            raise WebhookPayloadError(msg)

        request = WebhookRequest(
            event=req.get_header("X-GitHub-Event", required=True),
            delivery=req.get_header("X-GitHub-Delivery", required=True),
            signature=req.get_header("X-Hub-Signature-256"),
            body=await req.stream.read(),
        )
        try:
            result = await handle_webhook(request, self._deps)
        except (IngestError, SQLAlchemyError) as exc:
            log_exception(
                logger, f"Webhook delivery {request.delivery} failed", exc
            )
            raise falcon.HTTPInternalServerError(
                title="Webhook processing failed",
                description=str(exc),
            ) from exc

        resp.media = serialize_result(result)
        resp.status = falcon.HTTP_200 if result.processed else falcon.HTTP_202
