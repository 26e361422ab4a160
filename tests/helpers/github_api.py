"""In-process fake of the GitHub REST endpoints the ingestor calls.

Requests are served through ``httpx.MockTransport`` so tests exercise the real
client, header handling and error normalisation without a network.
"""

from __future__ import annotations

import base64
import dataclasses as dc
import hashlib
import json
import re
import typing as typ

import httpx

from reposync.content.utils import git_blob_sha

DEFAULT_RATE_LIMIT = 5000
RAW_MEDIA_TYPE = "application/vnd.github.raw"
SERVICE_TOKEN = "service-token"
WEBHOOK_SECRET = "s3cret"

_REPO = r"^/repos/(?P<owner>[^/]+)/(?P<repo>[^/]+)"
_COMMIT_PATH = re.compile(_REPO + r"/commits/(?P<ref>.+)$")
_TREE_PATH = re.compile(_REPO + r"/git/trees/(?P<sha>[^/]+)$")
_BLOB_PATH = re.compile(_REPO + r"/git/blobs/(?P<sha>[^/]+)$")
_INSTALLATION_PATH = re.compile(r"^/app/installations/(?P<id>[^/]+)/access_tokens$")
_OAUTH_TOKEN_PATH = "/login/oauth/access_token"


@dc.dataclass(slots=True)
class FakeRepository:
    """Branch heads, trees and blobs of one fake repository."""

    branches: dict[str, str] = dc.field(default_factory=dict)
    commits: dict[str, dict[str, bytes]] = dc.field(default_factory=dict)
    blobs: dict[str, bytes] = dc.field(default_factory=dict)


@dc.dataclass(slots=True)
class Failure:
    """A canned error response served for matching requests."""

    status: int
    message: str = "failure"
    headers: dict[str, str] = dc.field(default_factory=dict)
    remaining: int | None = None


class FakeGitHub:
    """Mutable GitHub API double with commits, trees, blobs and tokens."""

    def __init__(self) -> None:
        self.repositories: dict[tuple[str, str], FakeRepository] = {}
        self.requests: list[httpx.Request] = []
        self.failures: dict[str, Failure] = {}
        self.installation_tokens: dict[str, str] = {}
        self.oauth_response: dict[str, typ.Any] = {
            "access_token": "gho_refreshed",
            "refresh_token": "ghr_rotated",
            "expires_in": 28800,
        }
        self.rate_limit_remaining = DEFAULT_RATE_LIMIT
        self.rate_limit_reset = 1_900_000_000
        self._counter = 0

    def client(self) -> httpx.AsyncClient:
        """Return an httpx client routed to this fake."""
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def add_repo(self, owner: str, repo: str) -> FakeRepository:
        """Create (or return) an empty repository."""
        return self.repositories.setdefault((owner, repo), FakeRepository())

    def push(
        self,
        owner: str,
        repo: str,
        files: dict[str, bytes | str],
        *,
        branch: str = "main",
    ) -> str:
        """Replace the branch contents with ``files`` and return the new SHA."""
        fake = self.add_repo(owner, repo)
        snapshot: dict[str, bytes] = {}
        for path, data in files.items():
            raw = data.encode("utf-8") if isinstance(data, str) else data
            snapshot[path] = raw
            fake.blobs[git_blob_sha(raw)] = raw
        self._counter += 1
        commit_sha = hashlib.sha1(  # noqa: S324 - fake commit id
            f"{owner}/{repo}/{branch}/{self._counter}".encode()
        ).hexdigest()
        fake.commits[commit_sha] = snapshot
        fake.branches[branch] = commit_sha
        return commit_sha

    def fail(
        self,
        path: str,
        status: int,
        message: str = "failure",
        *,
        headers: dict[str, str] | None = None,
        remaining: int | None = None,
    ) -> None:
        """Serve ``status`` for every request whose path contains ``path``."""
        self.failures[path] = Failure(
            status=status,
            message=message,
            headers=headers or {},
            remaining=remaining,
        )

    def clear_failures(self) -> None:
        """Remove every canned failure."""
        self.failures.clear()

    def requests_to(self, fragment: str) -> list[httpx.Request]:
        """Return recorded requests whose path contains ``fragment``."""
        return [r for r in self.requests if fragment in r.url.path]

    def _rate_headers(self, remaining: int | None = None) -> dict[str, str]:
        left = self.rate_limit_remaining if remaining is None else remaining
        return {
            "x-ratelimit-limit": str(DEFAULT_RATE_LIMIT),
            "x-ratelimit-remaining": str(left),
            "x-ratelimit-reset": str(self.rate_limit_reset),
            "x-ratelimit-used": str(DEFAULT_RATE_LIMIT - left),
        }

    def _json(
        self, status: int, body: object, *, headers: dict[str, str] | None = None
    ) -> httpx.Response:
        merged = self._rate_headers()
        merged.update(headers or {})
        return httpx.Response(status, json=body, headers=merged)

    def handle(self, request: httpx.Request) -> httpx.Response:
        """Route a request to the matching fake endpoint."""
        self.requests.append(request)
        path = request.url.path

        for fragment, failure in self.failures.items():
            if fragment in path:
                headers = self._rate_headers(failure.remaining)
                headers.update(failure.headers)
                return httpx.Response(
                    failure.status,
                    json={"message": failure.message},
                    headers=headers,
                )

        if request.method == "POST" and path == _OAUTH_TOKEN_PATH:
            return self._json(200, self.oauth_response)
        if request.method == "POST" and (match := _INSTALLATION_PATH.match(path)):
            return self._installation_token(request, match["id"])
        if match := _COMMIT_PATH.match(path):
            return self._commit(request, match["owner"], match["repo"], match["ref"])
        if match := _TREE_PATH.match(path):
            return self._tree(match["owner"], match["repo"], match["sha"])
        if match := _BLOB_PATH.match(path):
            return self._blob(request, match["owner"], match["repo"], match["sha"])
        return self._json(404, {"message": "Not Found"})

    def _repository(self, owner: str, repo: str) -> FakeRepository | None:
        return self.repositories.get((owner, repo))

    def _commit(
        self, request: httpx.Request, owner: str, repo: str, ref: str
    ) -> httpx.Response:
        fake = self._repository(owner, repo)
        if fake is None:
            return self._json(404, {"message": "Not Found"})
        sha = fake.branches.get(ref, ref)
        if sha not in fake.commits:
            return self._json(422, {"message": f"No commit found for SHA: {ref}"})
        etag = f'W/"{sha}"'
        if request.headers.get("if-none-match") == etag:
            return httpx.Response(304, headers=self._rate_headers())
        body = {"sha": sha, "commit": {"tree": {"sha": f"tree-{sha}"}, "message": ""}}
        return self._json(200, body, headers={"etag": etag})

    def _tree(self, owner: str, repo: str, tree_sha: str) -> httpx.Response:
        fake = self._repository(owner, repo)
        commit_sha = tree_sha.removeprefix("tree-")
        if fake is None or commit_sha not in fake.commits:
            return self._json(404, {"message": "Not Found"})
        entries = [
            {
                "path": path,
                "type": "blob",
                "sha": git_blob_sha(data),
                "mode": "100644",
                "size": len(data),
            }
            for path, data in sorted(fake.commits[commit_sha].items())
        ]
        directories = {
            path.rsplit("/", 1)[0]
            for path in fake.commits[commit_sha]
            if "/" in path
        }
        entries.extend(
            {"path": directory, "type": "tree", "sha": f"dir-{directory}"}
            for directory in sorted(directories)
        )
        return self._json(200, {"sha": tree_sha, "tree": entries, "truncated": False})

    def _blob(
        self, request: httpx.Request, owner: str, repo: str, sha: str
    ) -> httpx.Response:
        fake = self._repository(owner, repo)
        data = None if fake is None else fake.blobs.get(sha)
        if data is None:
            return self._json(404, {"message": "Not Found"})
        if request.headers.get("accept") == RAW_MEDIA_TYPE:
            return httpx.Response(200, content=data, headers=self._rate_headers())
        body = {
            "sha": sha,
            "size": len(data),
            "content": base64.b64encode(data).decode("ascii"),
            "encoding": "base64",
        }
        return self._json(200, body)

    def _installation_token(
        self, request: httpx.Request, installation_id: str
    ) -> httpx.Response:
        if not request.headers.get("authorization", "").startswith("Bearer "):
            return self._json(401, {"message": "Bad credentials"})
        self._counter += 1
        token = f"ghs_{installation_id}_{self._counter}"
        self.installation_tokens[installation_id] = token
        return self._json(
            201, {"token": token, "expires_at": "2099-01-01T00:00:00Z"}
        )


def request_json(request: httpx.Request) -> dict[str, typ.Any]:
    """Decode the JSON body of a recorded request."""
    return json.loads(request.content)


__all__ = [
    "SERVICE_TOKEN",
    "WEBHOOK_SECRET",
    "FakeGitHub",
    "FakeRepository",
    "request_json",
]
