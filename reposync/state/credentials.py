"""Stored provider credentials: user OAuth tokens and app installations."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from sqlalchemy import delete, func, select

from reposync.state.storage import SYSTEM_USER_ID, ProviderCredential

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@dc.dataclass(frozen=True, slots=True)
class UserToken:
    """OAuth token material held for one user."""

    credential_id: str
    user_id: str
    access_token: str | None
    refresh_token: str | None = dc.field(default=None, repr=False)
    expires_at: dt.datetime | None = None


class CredentialStore:
    """Read and write ``provider_credentials`` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for credential lookups."""
        self._session_factory = session_factory

    async def get_user_token(
        self, user_id: str, provider: str = "github"
    ) -> UserToken | None:
        """Return the OAuth token stored for ``user_id``, if any."""
        async with self._session_factory() as session:
            row = await session.scalar(
                select(ProviderCredential)
                .where(
                    ProviderCredential.user_id == user_id,
                    ProviderCredential.provider == provider,
                    ProviderCredential.access_token.is_not(None),
                )
                .order_by(ProviderCredential.updated_at.desc())
                .limit(1)
            )
            if row is None:
                return None
            return UserToken(
                credential_id=row.id,
                user_id=row.user_id,
                access_token=row.access_token,
                refresh_token=row.refresh_token,
                expires_at=row.token_expires_at,
            )

    async def save_user_token(
        self,
        credential_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: dt.datetime | None,
    ) -> None:
        """Persist refreshed token material on an existing credential row."""
        async with self._session_factory() as session, session.begin():
            row = await session.get(ProviderCredential, credential_id)
            if row is None:
                return
            row.access_token = access_token
            if refresh_token is not None:
                row.refresh_token = refresh_token
            row.token_expires_at = expires_at

    async def get_installation_id(
        self, account_login: str, provider: str = "github"
    ) -> str | None:
        """Return the app installation id for an owner account, if stored."""
        async with self._session_factory() as session:
            return await session.scalar(
                select(ProviderCredential.installation_id)
                .where(
                    ProviderCredential.user_id == SYSTEM_USER_ID,
                    ProviderCredential.provider == provider,
                    func.lower(ProviderCredential.account_login)
                    == account_login.lower(),
                    ProviderCredential.installation_id.is_not(None),
                )
                .order_by(ProviderCredential.updated_at.desc())
                .limit(1)
            )

    async def save_installation(
        self,
        account_login: str,
        installation_id: str,
        provider: str = "github",
    ) -> None:
        """Store or update the installation credential for an account."""
        async with self._session_factory() as session, session.begin():
            row = await session.scalar(
                select(ProviderCredential).where(
                    ProviderCredential.user_id == SYSTEM_USER_ID,
                    ProviderCredential.provider == provider,
                    ProviderCredential.installation_id == installation_id,
                )
            )
            if row is None:
                session.add(
                    ProviderCredential(
                        user_id=SYSTEM_USER_ID,
                        provider=provider,
                        account_login=account_login,
                        installation_id=installation_id,
                    )
                )
            else:
                row.account_login = account_login

    async def remove_installation(
        self, installation_id: str, provider: str = "github"
    ) -> bool:
        """Delete the credential row for an installation."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(ProviderCredential).where(
                    ProviderCredential.user_id == SYSTEM_USER_ID,
                    ProviderCredential.provider == provider,
                    ProviderCredential.installation_id == installation_id,
                )
            )
            return bool(result.rowcount)


__all__ = ["CredentialStore", "UserToken"]
