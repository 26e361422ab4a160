"""Ingest message contracts, queue adapters and the batch processor.

Dramatiq actors live in :mod:`reposync.queue.actor` and are not imported
here, so importing the package never configures a broker.
"""

from __future__ import annotations

from .messages import (
    DeadLetterError,
    DeadLetterMessage,
    IngestMessage,
    MessageType,
    decode_message,
    validate_message,
)
from .publisher import (
    DeadLetterQueue,
    DeadLetterStore,
    DramatiqDeadLetterQueue,
    DramatiqIngestQueue,
    IngestQueue,
)

__all__ = [
    "DeadLetterError",
    "DeadLetterMessage",
    "DeadLetterQueue",
    "DeadLetterStore",
    "DramatiqDeadLetterQueue",
    "DramatiqIngestQueue",
    "IngestMessage",
    "IngestQueue",
    "MessageType",
    "decode_message",
    "validate_message",
]
