"""Typed subsets of the GitHub webhook payloads the ingestor reacts to."""

from __future__ import annotations

import msgspec


class Account(msgspec.Struct, kw_only=True):
    """User or organisation owning a repository or installation."""

    login: str
    id: int | None = None


class PushRepository(msgspec.Struct, kw_only=True):
    """``repository`` object of a push event."""

    name: str
    full_name: str = ""
    owner: Account
    default_branch: str = "main"
    private: bool = False


class PushCommit(msgspec.Struct, kw_only=True):
    """One commit listed in a push event."""

    id: str = ""
    added: list[str] = msgspec.field(default_factory=list)
    modified: list[str] = msgspec.field(default_factory=list)
    removed: list[str] = msgspec.field(default_factory=list)


class PushEvent(msgspec.Struct, kw_only=True):
    """``push`` event payload."""

    ref: str
    before: str = ""
    after: str
    repository: PushRepository
    commits: list[PushCommit] = msgspec.field(default_factory=list)

    @property
    def branch(self) -> str:
        """Return the pushed branch name without the ``refs/heads/`` prefix."""
        return self.ref.removeprefix("refs/heads/")

    def changed_paths(self) -> list[str]:
        """Return added and modified paths across commits, de-duplicated.

        Removed paths are not included. Order follows first appearance.
        """
        seen: dict[str, None] = {}
        for commit in self.commits:
            for path in (*commit.added, *commit.modified):
                seen.setdefault(path, None)
        return list(seen)


class InstallationRepository(msgspec.Struct, kw_only=True):
    """Repository listed in an installation event."""

    name: str
    full_name: str = ""
    private: bool = False
    default_branch: str | None = None


class Installation(msgspec.Struct, kw_only=True):
    """App installation and the account it belongs to."""

    id: int
    account: Account


class InstallationEvent(msgspec.Struct, kw_only=True):
    """``installation`` event payload."""

    action: str
    installation: Installation
    repositories: list[InstallationRepository] = msgspec.field(default_factory=list)


class InstallationRepositoriesEvent(msgspec.Struct, kw_only=True):
    """``installation_repositories`` event payload."""

    action: str
    installation: Installation
    repositories_added: list[InstallationRepository] = msgspec.field(
        default_factory=list
    )
    repositories_removed: list[InstallationRepository] = msgspec.field(
        default_factory=list
    )


__all__ = [
    "Account",
    "Installation",
    "InstallationEvent",
    "InstallationRepositoriesEvent",
    "InstallationRepository",
    "PushCommit",
    "PushEvent",
    "PushRepository",
]
