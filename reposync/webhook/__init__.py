"""Signed GitHub webhook handling."""

from __future__ import annotations

from .service import (
    WebhookAuthError,
    WebhookError,
    WebhookPayloadError,
    WebhookRequest,
    WebhookResult,
    WebhookStatus,
    handle_webhook,
)
from .signature import compute_signature, verify_signature

__all__ = [
    "WebhookAuthError",
    "WebhookError",
    "WebhookPayloadError",
    "WebhookRequest",
    "WebhookResult",
    "WebhookStatus",
    "compute_signature",
    "handle_webhook",
    "verify_signature",
]
