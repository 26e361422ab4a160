"""Blob backend port and its adapters.

The content store writes each distinct body once under a content-derived
key (see :func:`reposync.content.utils.blob_key`). Backends only need to
PUT, GET and DELETE by key; deduplication and reference tracking live in
:class:`reposync.content.service.ContentStore`.

Usage
-----
Type-check a concrete adapter:

>>> from reposync.content.backends import BlobBackend, InMemoryBlobBackend
>>> isinstance(InMemoryBlobBackend(), BlobBackend)
True

"""

from __future__ import annotations

import asyncio
import threading
import typing as typ
import uuid

import httpx

from reposync.errors import StoreError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

type BlobBody = bytes | cabc.AsyncIterator[bytes]

_HTTP_NOT_FOUND = 404


@typ.runtime_checkable
class BlobBackend(typ.Protocol):
    """Port for content-addressed blob persistence."""

    async def put(self, key: str, data: BlobBody, *, content_type: str) -> None:
        """Store ``data`` under ``key``.

        Parameters
        ----------
        key
            Content-derived storage key.
        data
            The body, either buffered or as an async byte stream.
        content_type
            MIME type recorded alongside the body.

        """
        ...

    async def get(self, key: str) -> bytes | None:
        """Return the body stored under ``key`` or ``None`` when absent."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is not an error."""
        ...


async def read_body(data: BlobBody) -> bytes:
    """Buffer a blob body into bytes."""
    if isinstance(data, bytes):
        return data
    chunks = [chunk async for chunk in data]
    return b"".join(chunks)


class InMemoryBlobBackend:
    """Keep blobs in a dictionary; for tests and local development."""

    def __init__(self) -> None:
        """Initialise an empty store."""
        self._lock = threading.Lock()
        self.blobs: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.put_count = 0

    async def put(self, key: str, data: BlobBody, *, content_type: str) -> None:
        """Buffer and store the body."""
        body = await read_body(data)
        with self._lock:
            self.blobs[key] = body
            self.content_types[key] = content_type
            self.put_count += 1

    async def get(self, key: str) -> bytes | None:
        """Return the stored body, if any."""
        with self._lock:
            return self.blobs.get(key)

    async def delete(self, key: str) -> None:
        """Drop the body if present."""
        with self._lock:
            self.blobs.pop(key, None)
            self.content_types.pop(key, None)


class FilesystemBlobBackend:
    """Store blobs as files below a base directory.

    Keys map directly onto relative paths, so a blob lives at
    ``{base_path}/blobs/ab/cd/abcd...``. Writes go to a temporary sibling
    and are renamed into place so readers never see a partial body.
    """

    def __init__(self, base_path: Path) -> None:
        """Initialise the backend with a base directory path."""
        self._base_path = base_path

    def _path_for(self, key: str) -> Path:
        return self._base_path / key

    async def put(self, key: str, data: BlobBody, *, content_type: str) -> None:
        """Write the body atomically; ``content_type`` is not persisted.

        Each write uses its own temporary sibling, so concurrent writers of
        the same key never share a partial file. A key that already exists
        holds the same content and is left untouched.
        """
        del content_type
        target = self._path_for(key)
        partial = target.with_name(f"{target.name}.{uuid.uuid4().hex}.partial")
        try:
            if await asyncio.to_thread(target.exists):
                return
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
            if isinstance(data, bytes):
                await asyncio.to_thread(partial.write_bytes, data)
            else:
                handle = await asyncio.to_thread(partial.open, "wb")
                try:
                    async for chunk in data:
                        await asyncio.to_thread(handle.write, chunk)
                finally:
                    await asyncio.to_thread(handle.close)
            await asyncio.to_thread(partial.replace, target)
        except OSError as exc:
            raise StoreError.backend_failure("put", key, str(exc)) from exc
        finally:
            await asyncio.to_thread(partial.unlink, missing_ok=True)

    async def get(self, key: str) -> bytes | None:
        """Read the body from disk, or ``None`` when the file is missing."""
        try:
            return await asyncio.to_thread(self._path_for(key).read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError.backend_failure("get", key, str(exc)) from exc

    async def delete(self, key: str) -> None:
        """Unlink the file if present."""
        try:
            await asyncio.to_thread(self._path_for(key).unlink, missing_ok=True)
        except OSError as exc:
            raise StoreError.backend_failure("delete", key, str(exc)) from exc


class HttpBlobBackend:
    """Store blobs in a key-value HTTP object service.

    Each key maps to ``{base_url}/{key}``: bodies are written with ``PUT``,
    read with ``GET`` (404 means absent) and removed with ``DELETE``.

    Parameters
    ----------
    base_url
        Root URL of the object service.
    token
        Optional bearer token sent on every request.
    transport
        Optional httpx transport, primarily for tests.
    timeout_s
        Request timeout in seconds.

    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        """Create the backing httpx client."""
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def put(self, key: str, data: BlobBody, *, content_type: str) -> None:
        """Upload the body with its content type."""
        try:
            response = await self._client.put(
                key, content=data, headers={"Content-Type": content_type}
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StoreError.backend_failure("put", key, str(exc)) from exc

    async def get(self, key: str) -> bytes | None:
        """Download the body, mapping 404 to ``None``."""
        try:
            response = await self._client.get(key)
            if response.status_code == _HTTP_NOT_FOUND:
                return None
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StoreError.backend_failure("get", key, str(exc)) from exc
        return response.content

    async def delete(self, key: str) -> None:
        """Delete the body; a 404 counts as already deleted."""
        try:
            response = await self._client.delete(key)
            if response.status_code != _HTTP_NOT_FOUND:
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StoreError.backend_failure("delete", key, str(exc)) from exc


__all__ = [
    "BlobBackend",
    "BlobBody",
    "FilesystemBlobBackend",
    "HttpBlobBackend",
    "InMemoryBlobBackend",
    "read_body",
]
