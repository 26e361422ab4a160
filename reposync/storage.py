"""Schema bootstrap for every reposync table."""

from __future__ import annotations

import typing as typ

from reposync.common.db import Base
from reposync.content.storage import ContentBlob, RepositoryFile
from reposync.queue.storage import DeadLetterRecord
from reposync.state.storage import ProviderCredential, RepositoryConfig

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

__all__ = [
    "Base",
    "ContentBlob",
    "DeadLetterRecord",
    "ProviderCredential",
    "RepositoryConfig",
    "RepositoryFile",
    "init_storage",
]


async def init_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
