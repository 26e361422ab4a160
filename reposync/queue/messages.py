"""Wire schema of ingest and dead-letter queue messages.

Payloads use camelCase keys on the wire (``repoId``, ``isPrivate``...) and
snake_case attributes in Python; msgspec performs the renaming.
"""

from __future__ import annotations

import enum
import traceback
import typing as typ

import msgspec

from reposync.common.time import to_epoch, utcnow
from reposync.errors import MessageValidationError, error_code
from reposync.ingestors.factory import SUPPORTED_PROVIDERS
from reposync.state.storage import DEFAULT_BRANCH, SYSTEM_USER_ID

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from reposync.state.service import TrackedRepository

_REQUIRED_FIELDS = ("repo_id", "provider", "owner", "repo")
_WIRE_NAMES = {
    "repo_id": "repoId",
    "provider": "provider",
    "owner": "owner",
    "repo": "repo",
}


class MessageType(enum.StrEnum):
    """Kinds of ingest message."""

    REPOSITORY = "repository"
    FILE = "file"


class IngestMessage(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """Request to sync a whole repository or a single file of it."""

    type: str = MessageType.REPOSITORY.value
    repo_id: str = ""
    user_id: str = SYSTEM_USER_ID
    provider: str = ""
    owner: str = ""
    repo: str = ""
    branch: str = DEFAULT_BRANCH
    path: str | None = None
    sha: str | None = None
    is_private: bool = False
    include_patterns: list[str] | None = None
    exclude_patterns: list[str] | None = None

    @classmethod
    def for_repository(cls, repository: TrackedRepository) -> IngestMessage:
        """Build a ``repository`` message for a tracked repository."""
        return cls(
            type=MessageType.REPOSITORY.value,
            repo_id=repository.id,
            user_id=repository.user_id,
            provider=repository.provider,
            owner=repository.owner,
            repo=repository.repo,
            branch=repository.branch,
            is_private=repository.is_private,
            include_patterns=_as_list(repository.include_patterns),
            exclude_patterns=_as_list(repository.exclude_patterns),
        )

    @classmethod
    def for_file(
        cls, repository: TrackedRepository, *, path: str, sha: str
    ) -> IngestMessage:
        """Build a ``file`` message for one path of a tracked repository."""
        base = cls.for_repository(repository)
        return msgspec.structs.replace(
            base, type=MessageType.FILE.value, path=path, sha=sha
        )

    def to_payload(self) -> dict[str, typ.Any]:
        """Return the camelCase JSON-compatible payload for the transport."""
        return msgspec.to_builtins(self)


class DeadLetterError(msgspec.Struct, kw_only=True, frozen=True):
    """Failure details attached to a dead-lettered message."""

    message: str
    stack: str | None = None
    code: str | None = None
    category: str | None = None


class DeadLetterMessage(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """A message that could not be processed, with the reason and attempts."""

    original_message: dict[str, typ.Any]
    error: DeadLetterError
    attempts: int = 1
    last_attempt_at: int = 0

    @classmethod
    def from_failure(
        cls,
        original: cabc.Mapping[str, typ.Any],
        exc: BaseException,
        *,
        attempts: int,
        category: str | None = None,
    ) -> DeadLetterMessage:
        """Wrap a failed payload with the exception that rejected it."""
        stack = "".join(traceback.format_exception(exc)) or None
        return cls(
            original_message=dict(original),
            error=DeadLetterError(
                message=str(exc) or type(exc).__name__,
                stack=stack,
                code=error_code(exc),
                category=category,
            ),
            attempts=max(1, attempts),
            last_attempt_at=to_epoch(utcnow()),
        )

    def to_payload(self) -> dict[str, typ.Any]:
        """Return the camelCase JSON-compatible payload for the transport."""
        return msgspec.to_builtins(self)


def _as_list(patterns: cabc.Iterable[str] | None) -> list[str] | None:
    return None if patterns is None else list(patterns)


def payload_as_mapping(payload: object) -> dict[str, typ.Any]:
    """Return ``payload`` as a dict suitable for a dead-letter record.

    Raw bytes or strings that are not JSON objects are kept under ``raw``.
    """
    if isinstance(payload, dict):
        return dict(payload)
    if isinstance(payload, IngestMessage):
        return payload.to_payload()
    if isinstance(payload, (bytes, str)):
        try:
            decoded = msgspec.json.decode(payload)
        except msgspec.DecodeError:
            decoded = None
        if isinstance(decoded, dict):
            return decoded
        if isinstance(payload, bytes):
            return {"raw": payload.decode("utf-8", "replace")}
        return {"raw": payload}
    return {"raw": repr(payload)}


def validate_message(message: IngestMessage) -> IngestMessage:
    """Check required fields, provider, type and file coordinates.

    Raises
    ------
    MessageValidationError
        When the message cannot be processed.

    """
    missing = [
        _WIRE_NAMES[name]
        for name in _REQUIRED_FIELDS
        if not str(getattr(message, name)).strip()
    ]
    if missing:
        raise MessageValidationError.missing_fields(missing)
    if message.provider.lower() not in SUPPORTED_PROVIDERS:
        raise MessageValidationError.unsupported_provider(message.provider)
    if message.type not in {t.value for t in MessageType}:
        msg = f"Invalid message type: {message.type!r}"
        raise MessageValidationError(msg, code="invalid_message_type")
    if message.type == MessageType.FILE:
        absent = [name for name in ("path", "sha") if not getattr(message, name)]
        if absent:
            raise MessageValidationError.missing_fields(absent)
    return message


def decode_message(payload: object) -> IngestMessage:
    """Decode and validate a raw queue payload.

    ``payload`` may be a JSON document (bytes or str), a mapping as delivered
    by the Dramatiq actor, or an already decoded :class:`IngestMessage`.

    Raises
    ------
    MessageValidationError
        When the payload is malformed or fails validation.

    """
    try:
        if isinstance(payload, IngestMessage):
            message = payload
        elif isinstance(payload, (bytes, str)):
            message = msgspec.json.decode(payload, type=IngestMessage)
        else:
            message = msgspec.convert(payload, type=IngestMessage)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        msg = f"Malformed ingest message: {exc}"
        raise MessageValidationError(msg) from exc
    return validate_message(message)


__all__ = [
    "DeadLetterError",
    "DeadLetterMessage",
    "IngestMessage",
    "MessageType",
    "decode_message",
    "payload_as_mapping",
    "validate_message",
]
