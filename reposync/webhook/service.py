"""Verify and act on GitHub webhook deliveries.

``handle_webhook`` is transport-neutral: the Falcon resource in
:mod:`reposync.api.webhooks` only maps its result and exceptions to HTTP
status codes.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

import msgspec

from reposync.logging import get_logger, log_info
from reposync.queue.messages import IngestMessage
from reposync.state.storage import SYSTEM_USER_ID

from .models import (
    InstallationEvent,
    InstallationRepositoriesEvent,
    InstallationRepository,
    PushEvent,
)
from .signature import verify_signature

if typ.TYPE_CHECKING:
    from reposync.factory import IngestorDependencies

logger = get_logger(__name__)

_PROVIDER = "github"


class WebhookStatus(enum.StrEnum):
    """How a verified delivery was handled."""

    PROCESSED = "processed"
    IGNORED = "ignored"


class WebhookError(Exception):
    """Base class for deliveries rejected before processing."""


class WebhookPayloadError(WebhookError):
    """Raised for missing headers or a body that is not valid JSON."""


class WebhookAuthError(WebhookError):
    """Raised when the signature does not match the body."""


@dc.dataclass(frozen=True, slots=True)
class WebhookRequest:
    """Transport-neutral view of one webhook delivery."""

    event: str
    delivery: str
    signature: str | None
    body: bytes


@dc.dataclass(frozen=True, slots=True)
class WebhookResult:
    """Outcome of a verified delivery."""

    status: WebhookStatus
    event: str
    delivery: str
    repo_slug: str | None = None
    enqueued: int = 0
    changed_files: tuple[str, ...] = ()
    detail: str | None = None

    @property
    def processed(self) -> bool:
        """Return True when the delivery changed state or enqueued work."""
        return self.status is WebhookStatus.PROCESSED


def _decode[T](body: bytes, payload_type: type[T]) -> T:
    try:
        return msgspec.json.decode(body, type=payload_type)
    except msgspec.ValidationError as exc:
        msg = f"unexpected payload shape: {exc}"
        raise WebhookPayloadError(msg) from exc
    except msgspec.DecodeError as exc:
        msg = f"invalid JSON body: {exc}"
        raise WebhookPayloadError(msg) from exc


async def handle_webhook(
    request: WebhookRequest, deps: IngestorDependencies
) -> WebhookResult:
    """Verify ``request`` and dispatch it by event type.

    Raises
    ------
    WebhookPayloadError
        If the signature header is malformed or the body is not valid JSON.
    WebhookAuthError
        If the signature does not match; no state is touched.

    """
    secret = deps.config.webhook_secret
    if not secret:
        msg = "webhook secret is not configured"
        raise WebhookAuthError(msg)
    try:
        valid = verify_signature(secret, request.body, request.signature)
    except ValueError as exc:
        raise WebhookPayloadError(str(exc)) from exc
    if not valid:
        deps.events.log_webhook_rejected(
            delivery=request.delivery, reason="signature mismatch"
        )
        msg = "signature does not match payload"
        raise WebhookAuthError(msg)

    match request.event:
        case "push":
            result = await _handle_push(
                request, _decode(request.body, PushEvent), deps
            )
        case "installation":
            result = await _handle_installation(
                request, _decode(request.body, InstallationEvent), deps
            )
        case "installation_repositories":
            result = await _handle_installation_repositories(
                request, _decode(request.body, InstallationRepositoriesEvent), deps
            )
        case _:
            _decode(request.body, dict)
            result = WebhookResult(
                status=WebhookStatus.IGNORED,
                event=request.event,
                delivery=request.delivery,
                detail="unsupported event",
            )

    deps.events.log_webhook_accepted(
        event=request.event,
        delivery=request.delivery,
        status=result.status,
        repo_slug=result.repo_slug,
    )
    return result


async def _handle_push(
    request: WebhookRequest, event: PushEvent, deps: IngestorDependencies
) -> WebhookResult:
    repository = event.repository
    slug = repository.full_name or f"{repository.owner.login}/{repository.name}"

    def ignored(detail: str) -> WebhookResult:
        deps.metrics.increment("webhook.push.ignored", reason=detail)
        return WebhookResult(
            status=WebhookStatus.IGNORED,
            event=request.event,
            delivery=request.delivery,
            repo_slug=slug,
            detail=detail,
        )

    if event.branch != repository.default_branch:
        return ignored("non_default_branch")

    tracked = await deps.state.find_by_origin(
        _PROVIDER, repository.owner.login, repository.name
    )
    if not tracked:
        return ignored("repo_not_found")

    changed = event.changed_paths()
    log_info(
        logger,
        "Push to %s@%s touched %d files",
        slug,
        event.after[:12],
        len(changed),
    )

    enqueued = 0
    for config in tracked:
        if event.after in {config.last_commit_sha, config.queued_commit_sha}:
            continue
        await deps.ingest_queue.send(IngestMessage.for_repository(config))
        await deps.state.mark_queued(config.id, event.after)
        enqueued += 1
    deps.metrics.increment("webhook.push.enqueued", enqueued)

    return WebhookResult(
        status=WebhookStatus.PROCESSED if enqueued else WebhookStatus.IGNORED,
        event=request.event,
        delivery=request.delivery,
        repo_slug=slug,
        enqueued=enqueued,
        changed_files=tuple(changed),
        detail=None if enqueued else "already_queued",
    )


async def _track(
    account_login: str,
    repositories: list[InstallationRepository],
    deps: IngestorDependencies,
) -> None:
    for repo in repositories:
        await deps.state.add_repository(
            owner=account_login,
            repo=repo.name,
            provider=_PROVIDER,
            user_id=SYSTEM_USER_ID,
            branch=repo.default_branch,
            is_private=repo.private,
        )


async def _handle_installation(
    request: WebhookRequest, event: InstallationEvent, deps: IngestorDependencies
) -> WebhookResult:
    account = event.installation.account.login
    installation_id = str(event.installation.id)
    match event.action:
        case "created":
            await deps.credentials.save_installation(account, installation_id)
            await _track(account, event.repositories, deps)
            deps.metrics.increment("webhook.installation.created")
        case "deleted":
            await deps.credentials.remove_installation(installation_id)
            deps.metrics.increment("webhook.installation.deleted")
        case _:
            return WebhookResult(
                status=WebhookStatus.IGNORED,
                event=request.event,
                delivery=request.delivery,
                detail=f"ignored action {event.action}",
            )
    return WebhookResult(
        status=WebhookStatus.PROCESSED,
        event=request.event,
        delivery=request.delivery,
        detail=event.action,
    )


async def _handle_installation_repositories(
    request: WebhookRequest,
    event: InstallationRepositoriesEvent,
    deps: IngestorDependencies,
) -> WebhookResult:
    account = event.installation.account.login
    match event.action:
        case "added":
            await _track(account, event.repositories_added, deps)
            deps.metrics.increment(
                "webhook.installation_repositories.added",
                len(event.repositories_added),
            )
        case "removed":
            for repo in event.repositories_removed:
                await deps.state.remove_repository(
                    owner=account,
                    repo=repo.name,
                    provider=_PROVIDER,
                    user_id=SYSTEM_USER_ID,
                )
            deps.metrics.increment(
                "webhook.installation_repositories.removed",
                len(event.repositories_removed),
            )
        case _:
            return WebhookResult(
                status=WebhookStatus.IGNORED,
                event=request.event,
                delivery=request.delivery,
                detail=f"ignored action {event.action}",
            )
    return WebhookResult(
        status=WebhookStatus.PROCESSED,
        event=request.event,
        delivery=request.delivery,
        detail=event.action,
    )


__all__ = [
    "WebhookAuthError",
    "WebhookError",
    "WebhookPayloadError",
    "WebhookRequest",
    "WebhookResult",
    "WebhookStatus",
    "handle_webhook",
]
