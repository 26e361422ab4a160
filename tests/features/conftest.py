"""Fixtures and steps shared by the ingestion BDD features."""

from __future__ import annotations

import typing as typ

import pytest
from pytest_bdd import given, parsers, then

from tests.features.steps._sync_context import SyncScenario, split_paths

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def sync_scenario(tmp_path: Path) -> SyncScenario:
    """Provision a fresh database and fakes for each scenario."""
    return SyncScenario(tmp_path)


@given(parsers.parse('the repository "{slug}" has files "{paths}"'))
def repository_has_files(sync_scenario: SyncScenario, slug: str, paths: str) -> None:
    """Push the listed files to the fake GitHub."""
    sync_scenario.push(slug, split_paths(paths))


@given(parsers.parse('the repository "{slug}" is tracked'))
def repository_is_tracked(sync_scenario: SyncScenario, slug: str) -> None:
    """Track the repository for the system user."""
    sync_scenario.track(slug)


@then(
    parsers.re(r'(?P<count>\d+) messages? (?:is|are) enqueued for "(?P<slug>[^"]+)"')
)
def messages_enqueued_for(sync_scenario: SyncScenario, count: str, slug: str) -> None:
    """Assert how many ingest messages target the repository."""
    repo_id = sync_scenario.repositories[slug].id
    matching = [m for m in sync_scenario.ingest_queue.messages if m.repo_id == repo_id]
    assert len(matching) == int(count), (
        f"expected {count} messages for {slug}, got {len(matching)}"
    )


@then("no messages are enqueued")
def no_messages_enqueued(sync_scenario: SyncScenario) -> None:
    """Assert the ingest queue is empty."""
    assert sync_scenario.ingest_queue.messages == [], "no message should be enqueued"
