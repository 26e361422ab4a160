"""HMAC-SHA256 verification of GitHub webhook deliveries."""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


class WebhookSignatureError(ValueError):
    """Raised when a delivery's signature header is absent or malformed."""


def compute_signature(secret: str, body: bytes) -> str:
    """Return the ``X-Hub-Signature-256`` value GitHub would send for ``body``.

    >>> compute_signature("s3cret", b"{}")[:7]
    'sha256='
    """
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def parse_signature(header: str | None) -> str:
    """Return the hex digest from a ``sha256=<hex>`` header.

    Raises
    ------
    WebhookSignatureError
        If the header is missing, uses another algorithm or is not hex.

    """
    if not header:
        msg = "missing X-Hub-Signature-256 header"
        raise WebhookSignatureError(msg)
    value = header.strip()
    if not value.startswith(SIGNATURE_PREFIX):
        msg = "signature header must use the sha256= scheme"
        raise WebhookSignatureError(msg)
    digest = value.removeprefix(SIGNATURE_PREFIX).lower()
    try:
        bytes.fromhex(digest)
    except ValueError as exc:
        msg = "signature digest is not hexadecimal"
        raise WebhookSignatureError(msg) from exc
    return digest


def verify_signature(secret: str, body: bytes, header: str | None) -> bool:
    """Return True when ``header`` signs ``body`` with ``secret``.

    The comparison is constant-time. A malformed header raises
    :class:`WebhookSignatureError` rather than returning False so callers can
    distinguish a bad request from a forged one.
    """
    digest = parse_signature(header)
    expected = compute_signature(secret, body).removeprefix(SIGNATURE_PREFIX)
    return hmac.compare_digest(expected, digest)


__all__ = [
    "SIGNATURE_PREFIX",
    "WebhookSignatureError",
    "compute_signature",
    "parse_signature",
    "verify_signature",
]
