"""Resolve the GitHub credential used to read a tracked repository.

Three branches are evaluated in order:

1. A private repository owned by a user reads with that user's OAuth token,
   refreshing it through the refresh-token grant when it has expired.
2. A private repository owned by the system install reads with a
   short-lived app installation token minted from an RS256 app JWT.
3. Anything else reads with the shared service token.
"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import datetime as dt
import typing as typ

import httpx
import jwt
import msgspec

from reposync.common.time import utcnow
from reposync.errors import AuthError, SourceAPIError
from reposync.state.storage import SYSTEM_USER_ID

from .client import DEFAULT_API_URL, DEFAULT_USER_AGENT, GITHUB_API_VERSION

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from reposync.state.credentials import CredentialStore

OAUTH_TOKEN_URL = "https://github.com/login/oauth/access_token"
# GitHub user-to-server tokens last eight hours when expires_in is omitted
DEFAULT_USER_TOKEN_TTL = dt.timedelta(hours=8)
# Installation tokens are reused until this close to their expiry
INSTALLATION_TOKEN_MARGIN = dt.timedelta(minutes=5)
_APP_JWT_BACKDATE_S = 60
_APP_JWT_TTL_S = 540
_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_SERVER_ERROR_THRESHOLD = 500


class _RefreshResponse(msgspec.Struct):
    access_token: str = ""
    refresh_token: str | None = None
    expires_in: int | None = None
    error: str | None = None
    error_description: str | None = None


class _InstallationTokenResponse(msgspec.Struct):
    token: str
    expires_at: dt.datetime | None = None


class RepositoryTarget(typ.Protocol):
    """Fields of a tracked repository or message the resolver reads."""

    @property
    def user_id(self) -> str: ...

    @property
    def owner(self) -> str: ...

    @property
    def repo(self) -> str: ...

    @property
    def is_private(self) -> bool: ...


@dc.dataclass(frozen=True, slots=True)
class GitHubAuthConfig:
    """Service token, app credentials and OAuth client used for resolution."""

    service_token: str
    app_id: str | None = None
    private_key: str | None = dc.field(default=None, repr=False)
    client_id: str | None = None
    client_secret: str | None = dc.field(default=None, repr=False)
    api_url: str = DEFAULT_API_URL
    oauth_token_url: str = OAUTH_TOKEN_URL


@dc.dataclass(frozen=True, slots=True)
class _CachedToken:
    token: str
    expires_at: dt.datetime


class TokenResolver:
    """Pick and, when needed, mint or refresh the token for a repository."""

    def __init__(
        self,
        config: GitHubAuthConfig,
        credentials: CredentialStore,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Store collaborators; an owned httpx client is created if omitted."""
        self._config = config
        self._credentials = credentials
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=20.0)
        self._clock = clock
        self._installation_tokens: dict[str, _CachedToken] = {}
        self._lock = asyncio.Lock()

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def resolve(self, target: RepositoryTarget) -> str:
        """Return the token that should be used to read ``target``.

        Raises
        ------
        AuthError
            When the required credential, installation or configuration is
            missing, or a refresh is rejected.

        """
        if target.is_private and target.user_id and target.user_id != SYSTEM_USER_ID:
            return await self.user_token(target.user_id)
        if target.is_private:
            installation_id = await self._credentials.get_installation_id(
                target.owner
            )
            if installation_id is None:
                raise AuthError.installation_not_found(target.owner, target.repo)
            return await self.installation_token(installation_id)
        if not self._config.service_token:
            raise AuthError.missing_config("GitHub service token")
        return self._config.service_token

    async def user_token(self, user_id: str) -> str:
        """Return a valid OAuth token for ``user_id``, refreshing if expired."""
        stored = await self._credentials.get_user_token(user_id)
        if stored is None or not stored.access_token:
            raise AuthError.credentials_not_found(user_id)
        if stored.expires_at is None or stored.expires_at > self._clock():
            return stored.access_token
        if not stored.refresh_token:
            raise AuthError.refresh_failed("token expired and no refresh token")

        refreshed = await self._refresh(stored.refresh_token)
        expires_in = refreshed.expires_in
        ttl = (
            dt.timedelta(seconds=expires_in)
            if expires_in
            else DEFAULT_USER_TOKEN_TTL
        )
        await self._credentials.save_user_token(
            stored.credential_id,
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token,
            expires_at=self._clock() + ttl,
        )
        return refreshed.access_token

    async def _refresh(self, refresh_token: str) -> _RefreshResponse:
        client_id = self._config.client_id
        client_secret = self._config.client_secret
        if not client_id or not client_secret:
            raise AuthError.missing_config("GitHub OAuth client id or secret")
        try:
            response = await self._client.post(
                self._config.oauth_token_url,
                json={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            raise AuthError.refresh_failed(str(exc)) from exc

        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise AuthError.refresh_failed(
                f"HTTP {response.status_code} {response.reason_phrase}"
            )
        try:
            body = msgspec.json.decode(response.content, type=_RefreshResponse)
        except msgspec.DecodeError as exc:
            raise AuthError.refresh_failed(f"invalid response body: {exc}") from exc
        if not body.access_token:
            # The OAuth endpoint reports grant errors with a 200 status
            raise AuthError.refresh_failed(
                body.error_description or body.error or "no access token in response"
            )
        return body

    def _app_jwt(self) -> str:
        app_id = self._config.app_id
        private_key = self._config.private_key
        if not app_id or not private_key:
            raise AuthError.missing_config("GitHub App id or private key")
        now = int(self._clock().timestamp())
        payload = {
            "iat": now - _APP_JWT_BACKDATE_S,
            "exp": now + _APP_JWT_TTL_S,
            "iss": app_id,
        }
        return jwt.encode(payload, private_key, algorithm="RS256")

    async def installation_token(self, installation_id: str) -> str:
        """Return a cached or freshly minted installation token."""
        async with self._lock:
            cached = self._installation_tokens.get(installation_id)
            if (
                cached is not None
                and cached.expires_at - INSTALLATION_TOKEN_MARGIN > self._clock()
            ):
                return cached.token
            minted = await self._mint_installation_token(installation_id)
            self._installation_tokens[installation_id] = minted
            return minted.token

    async def _mint_installation_token(self, installation_id: str) -> _CachedToken:
        operation = "create_installation_token"
        url = (
            f"{self._config.api_url.rstrip('/')}"
            f"/app/installations/{installation_id}/access_tokens"
        )
        headers = {
            "Authorization": f"Bearer {self._app_jwt()}",
            "Accept": "application/vnd.github+json",
            "User-Agent": DEFAULT_USER_AGENT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        try:
            response = await self._client.post(url, headers=headers)
        except httpx.TransportError as exc:
            raise SourceAPIError.transport(operation, exc) from exc

        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise AuthError(
                f"Failed to mint installation token for {installation_id}: "
                f"HTTP {response.status_code}",
                code="installation_token_failed",
                is_transient=response.status_code >= _HTTP_SERVER_ERROR_THRESHOLD,
            )
        try:
            body = msgspec.json.decode(
                response.content, type=_InstallationTokenResponse
            )
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            msg = f"Invalid installation token response: {exc}"
            raise AuthError(msg, code="installation_token_failed") from exc
        expires_at = body.expires_at or self._clock() + dt.timedelta(hours=1)
        return _CachedToken(token=body.token, expires_at=expires_at)


__all__ = [
    "DEFAULT_USER_TOKEN_TTL",
    "OAUTH_TOKEN_URL",
    "GitHubAuthConfig",
    "RepositoryTarget",
    "TokenResolver",
]
