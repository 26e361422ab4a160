"""Provider-neutral ingestor interface and factory.

Public API
----------
SourceIngestor
    Protocol for change detection and content access on one repository.
ChangedItem
    Candidate file emitted by change detection.
CommitHead
    Latest commit on a tracked branch.
FetchedContent
    Buffered or streamed file body.
create_ingestor
    Factory keyed by provider name.

"""

from __future__ import annotations

from reposync.ingestors.factory import SUPPORTED_PROVIDERS, create_ingestor
from reposync.ingestors.models import ChangedItem, CommitHead, FetchedContent
from reposync.ingestors.protocol import SourceIngestor

__all__ = [
    "SUPPORTED_PROVIDERS",
    "ChangedItem",
    "CommitHead",
    "FetchedContent",
    "SourceIngestor",
    "create_ingestor",
]
