"""Domain exceptions and Falcon error handlers for the API layer.

Usage
-----
Register error handlers on the Falcon app::

    from reposync.api.errors import register_error_handlers

    register_error_handlers(app)

"""

from __future__ import annotations

import typing as typ

import falcon

from reposync.webhook import WebhookAuthError, WebhookPayloadError

if typ.TYPE_CHECKING:
    from falcon.asgi import App, Request, Response

__all__ = [
    "InvalidInputError",
    "RepositoryNotFoundError",
    "handle_invalid_input",
    "handle_repository_not_found",
    "handle_webhook_auth_error",
    "handle_webhook_payload_error",
    "register_error_handlers",
]


class RepositoryNotFoundError(Exception):
    """Raised when no tracked repository has the requested id."""

    def __init__(self, repo_id: str) -> None:
        """Initialize with the unknown repository id."""
        self.repo_id = repo_id
        super().__init__(f"No tracked repository with id '{repo_id}' exists.")


class InvalidInputError(Exception):
    """Raised for client validation errors that should map to HTTP 400.

    Attributes
    ----------
    reason
        Human-readable description of the validation failure.
    field
        Optional name of the input field that failed validation.

    """

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Initialize with a validation reason and optional field name."""
        self.reason = reason
        self.field = field
        message = f"{field}: {reason}" if field is not None else reason
        super().__init__(message)


def _webhook_rejection(req: Request, reason: str) -> dict[str, typ.Any]:
    return {
        "status": "rejected",
        "event": req.get_header("X-GitHub-Event"),
        "delivery": req.get_header("X-GitHub-Delivery"),
        "description": reason,
    }


async def handle_repository_not_found(
    _req: Request,
    resp: Response,
    ex: RepositoryNotFoundError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``RepositoryNotFoundError`` to an HTTP 404 JSON response."""
    resp.status = falcon.HTTP_404
    resp.media = {
        "title": "Repository not found",
        "description": str(ex),
    }


async def handle_invalid_input(
    _req: Request,
    resp: Response,
    ex: InvalidInputError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``InvalidInputError`` to an HTTP 400 JSON response."""
    resp.status = falcon.HTTP_400
    media: dict[str, str] = {
        "title": "Invalid input",
        "description": ex.reason,
    }
    if ex.field is not None:
        media["field"] = ex.field
    resp.media = media


async def handle_webhook_payload_error(
    req: Request,
    resp: Response,
    ex: WebhookPayloadError,
    _params: dict[str, typ.Any],
) -> None:
    """Map a malformed delivery to HTTP 400."""
    resp.status = falcon.HTTP_400
    resp.media = _webhook_rejection(req, str(ex))


async def handle_webhook_auth_error(
    req: Request,
    resp: Response,
    ex: WebhookAuthError,
    _params: dict[str, typ.Any],
) -> None:
    """Map a signature mismatch to HTTP 401."""
    resp.status = falcon.HTTP_401
    resp.media = _webhook_rejection(req, str(ex))


def register_error_handlers(app: App) -> None:
    """Register every API error handler on ``app``."""
    app.add_error_handler(RepositoryNotFoundError, handle_repository_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(WebhookPayloadError, handle_webhook_payload_error)
    app.add_error_handler(WebhookAuthError, handle_webhook_auth_error)
