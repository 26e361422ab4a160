"""Unit tests for webhook verification and dispatch."""

from __future__ import annotations

import dataclasses as dc
import json
import typing as typ

import pytest

from reposync.webhook import (
    WebhookAuthError,
    WebhookPayloadError,
    WebhookRequest,
    WebhookStatus,
    compute_signature,
    handle_webhook,
    verify_signature,
)
from reposync.webhook.signature import WebhookSignatureError, parse_signature
from tests.helpers.github_api import WEBHOOK_SECRET

if typ.TYPE_CHECKING:
    from reposync.factory import IngestorDependencies
    from tests.helpers.queues import InMemoryIngestQueue


def _request(
    event: str, payload: object, *, secret: str = WEBHOOK_SECRET
) -> WebhookRequest:
    body = json.dumps(payload).encode("utf-8")
    return WebhookRequest(
        event=event,
        delivery="delivery-1",
        signature=compute_signature(secret, body),
        body=body,
    )


def _push(
    after: str = "c0ffee",
    *,
    ref: str = "refs/heads/main",
    owner: str = "Acme",
    name: str = "api",
) -> dict[str, object]:
    return {
        "ref": ref,
        "before": "0" * 40,
        "after": after,
        "repository": {
            "name": name,
            "full_name": f"{owner}/{name}",
            "owner": {"login": owner},
            "default_branch": "main",
        },
        "commits": [
            {"id": after, "added": ["src/new.py"], "modified": ["README.md"]},
            {"id": "later", "added": [], "modified": ["src/new.py"], "removed": ["x"]},
        ],
    }


class TestSignature:
    """HMAC helpers."""

    def test_round_trip(self) -> None:
        """A computed signature verifies against the same body."""
        header = compute_signature("key", b"payload")

        assert verify_signature("key", b"payload", header)
        assert not verify_signature("key", b"tampered", header)
        assert not verify_signature("other", b"payload", header)

    def test_known_digest(self) -> None:
        """Signatures match the documented HMAC-SHA256 hex format."""
        assert compute_signature("It's a Secret to Everybody", b"Hello, World!") == (
            "sha256="
            "757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"
        )

    @pytest.mark.parametrize("header", [None, "", "sha1=abcd", "sha256=zz"])
    def test_malformed_headers(self, header: str | None) -> None:
        """Missing, foreign or non-hex headers are rejected."""
        with pytest.raises(WebhookSignatureError):
            parse_signature(header)

    def test_digest_is_case_insensitive(self) -> None:
        """Upper-case hex digests are accepted."""
        header = compute_signature("key", b"x")

        assert verify_signature("key", b"x", header.upper().replace("SHA256", "sha256"))


class TestVerification:
    """Rejections before any processing."""

    @pytest.mark.asyncio
    async def test_bad_signature_touches_nothing(
        self, deps: IngestorDependencies, ingest_queue: InMemoryIngestQueue
    ) -> None:
        """A forged delivery raises and enqueues nothing."""
        await deps.state.add_repository(owner="acme", repo="api")

        with pytest.raises(WebhookAuthError):
            await handle_webhook(_request("push", _push(), secret="wrong"), deps)

        assert ingest_queue.messages == []

    @pytest.mark.asyncio
    async def test_missing_signature_is_a_payload_error(
        self, deps: IngestorDependencies
    ) -> None:
        """An absent header is a bad request rather than a forgery."""
        request = WebhookRequest(
            event="push", delivery="d", signature=None, body=b"{}"
        )

        with pytest.raises(WebhookPayloadError):
            await handle_webhook(request, deps)

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects(
        self, deps: IngestorDependencies
    ) -> None:
        """Without a secret nothing can be verified."""
        deps.config = dc.replace(deps.config, webhook_secret=None)

        with pytest.raises(WebhookAuthError, match="not configured"):
            await handle_webhook(_request("ping", {"zen": "hi"}), deps)

    @pytest.mark.asyncio
    async def test_non_object_body(self, deps: IngestorDependencies) -> None:
        """Signed bodies that are not JSON objects are rejected."""
        body = b"[1, 2]"
        request = WebhookRequest(
            event="ping",
            delivery="d",
            signature=compute_signature(WEBHOOK_SECRET, body),
            body=body,
        )

        with pytest.raises(WebhookPayloadError):
            await handle_webhook(request, deps)


class TestPush:
    """Push deliveries."""

    @pytest.mark.asyncio
    async def test_push_enqueues_tracked_repository(
        self, deps: IngestorDependencies, ingest_queue: InMemoryIngestQueue
    ) -> None:
        """A default-branch push enqueues one message and marks it queued."""
        repository = await deps.state.add_repository(owner="acme", repo="api")

        result = await handle_webhook(_request("push", _push()), deps)

        assert result.status is WebhookStatus.PROCESSED
        assert result.enqueued == 1
        assert result.changed_files == ("src/new.py", "README.md")
        assert [m.repo_id for m in ingest_queue.messages] == [repository.id]
        stored = await deps.state.get(repository.id)
        assert stored is not None
        assert stored.queued_commit_sha == "c0ffee"

    @pytest.mark.asyncio
    async def test_redelivery_is_not_enqueued_twice(
        self, deps: IngestorDependencies, ingest_queue: InMemoryIngestQueue
    ) -> None:
        """A head already queued is acknowledged without a new message."""
        await deps.state.add_repository(owner="acme", repo="api")
        await handle_webhook(_request("push", _push()), deps)

        result = await handle_webhook(_request("push", _push()), deps)

        assert result.status is WebhookStatus.IGNORED
        assert result.detail == "already_queued"
        assert len(ingest_queue.messages) == 1

    @pytest.mark.asyncio
    async def test_non_default_branch_is_ignored(
        self, deps: IngestorDependencies, ingest_queue: InMemoryIngestQueue
    ) -> None:
        """Pushes to feature branches are ignored."""
        await deps.state.add_repository(owner="acme", repo="api")

        result = await handle_webhook(
            _request("push", _push(ref="refs/heads/feature")), deps
        )

        assert result.status is WebhookStatus.IGNORED
        assert result.detail == "non_default_branch"
        assert ingest_queue.messages == []

    @pytest.mark.asyncio
    async def test_untracked_repository_is_ignored(
        self, deps: IngestorDependencies
    ) -> None:
        """Pushes for unknown repositories are acknowledged and dropped."""
        result = await handle_webhook(_request("push", _push(name="other")), deps)

        assert result.status is WebhookStatus.IGNORED
        assert result.detail == "repo_not_found"

    @pytest.mark.asyncio
    async def test_every_tracking_user_is_enqueued(
        self, deps: IngestorDependencies, ingest_queue: InMemoryIngestQueue
    ) -> None:
        """Each configuration tracking the repository gets its own message."""
        await deps.state.add_repository(owner="acme", repo="api")
        await deps.state.add_repository(owner="acme", repo="api", user_id="user-1")

        result = await handle_webhook(_request("push", _push()), deps)

        assert result.enqueued == 2
        assert {m.user_id for m in ingest_queue.messages} == {"system", "user-1"}


class TestOtherEvents:
    """Installation, ping and unsupported deliveries."""

    @pytest.mark.asyncio
    async def test_ping_is_ignored(self, deps: IngestorDependencies) -> None:
        """Unsupported events are acknowledged without side effects."""
        result = await handle_webhook(_request("ping", {"zen": "Keep it simple"}), deps)

        assert result.status is WebhookStatus.IGNORED
        assert not result.processed

    @pytest.mark.asyncio
    async def test_installation_created_tracks_repositories(
        self, deps: IngestorDependencies
    ) -> None:
        """A new installation records its id and tracks its repositories."""
        payload = {
            "action": "created",
            "installation": {"id": 99, "account": {"login": "acme"}},
            "repositories": [
                {"name": "api", "full_name": "acme/api", "private": True},
                {"name": "web", "full_name": "acme/web"},
            ],
        }

        result = await handle_webhook(_request("installation", payload), deps)

        assert result.processed
        assert await deps.credentials.get_installation_id("acme") == "99"
        tracked = await deps.state.find_by_origin("github", "acme", "api")
        assert [r.is_private for r in tracked] == [True]
        assert await deps.state.find_by_origin("github", "acme", "web")

    @pytest.mark.asyncio
    async def test_installation_deleted_forgets_id(
        self, deps: IngestorDependencies
    ) -> None:
        """Deleting an installation removes its credential row."""
        await deps.credentials.save_installation("acme", "99")
        payload = {
            "action": "deleted",
            "installation": {"id": 99, "account": {"login": "acme"}},
        }

        await handle_webhook(_request("installation", payload), deps)

        assert await deps.credentials.get_installation_id("acme") is None

    @pytest.mark.asyncio
    async def test_installation_repositories_removed(
        self, deps: IngestorDependencies
    ) -> None:
        """Repositories removed from an installation stop being tracked."""
        await deps.state.add_repository(owner="acme", repo="api")
        payload = {
            "action": "removed",
            "installation": {"id": 99, "account": {"login": "acme"}},
            "repositories_removed": [{"name": "api"}],
        }

        result = await handle_webhook(
            _request("installation_repositories", payload), deps
        )

        assert result.processed
        assert await deps.state.find_by_origin("github", "acme", "api") == []

    @pytest.mark.asyncio
    async def test_unknown_installation_action(
        self, deps: IngestorDependencies
    ) -> None:
        """Actions other than created and deleted are ignored."""
        payload = {
            "action": "suspend",
            "installation": {"id": 99, "account": {"login": "acme"}},
        }

        result = await handle_webhook(_request("installation", payload), deps)

        assert result.status is WebhookStatus.IGNORED
