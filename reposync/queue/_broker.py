"""Broker detection for the ingestion actors.

Actors are declared at import time, so a broker must exist before
:mod:`reposync.queue.actor` is imported. Production workers configure a real
broker (for example through the ``dramatiq`` CLI); tests and local runs fall
back to an in-process ``StubBroker``.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

_BROKER_LOCK = threading.Lock()
_broker_configured = False
_TRUTHY = frozenset({"1", "true", "yes"})


def _is_running_tests() -> bool:
    """Return True when running under pytest (including xdist workers)."""
    return "pytest" in sys.modules or any(
        key in os.environ
        for key in ["PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_ADDOPTS"]
    )


def _should_use_stub_broker() -> bool:
    """Return True if ``REPOSYNC_ALLOW_STUB_BROKER`` is truthy or under tests."""
    allow_stub = os.environ.get("REPOSYNC_ALLOW_STUB_BROKER", "")
    return allow_stub.strip().lower() in _TRUTHY or _is_running_tests()


def ensure_broker_configured() -> None:
    """Ensure a Dramatiq broker is configured.

    Idempotent and thread-safe: Dramatiq worker threads may call this
    concurrently.

    Raises
    ------
    RuntimeError
        If no broker is configured and a stub broker is not allowed.

    """
    global _broker_configured

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return

        try:  # pragma: no cover - exercised in tests and CLI usage
            current_broker = dramatiq.get_broker()
        except (ImportError, LookupError):
            # ImportError: no RabbitMQ/Redis client library for the default broker
            current_broker = None

        if current_broker is None:
            if _should_use_stub_broker():
                dramatiq.set_broker(StubBroker())
            else:  # pragma: no cover - guard for prod misconfigurations
                message = (
                    "No Dramatiq broker configured. "
                    "Set REPOSYNC_ALLOW_STUB_BROKER=1 for "
                    "local/test runs or configure a real broker."
                )
                raise RuntimeError(message)

        _broker_configured = True
