"""Shared test fixtures for serverswitch."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from serverswitch.blocks import FALLBACK_TEXT
from serverswitch.types import TrackedInstance

# ---------------------------------------------------------------------------
# Shared helpers (plain functions/classes, importable by test files)
# ---------------------------------------------------------------------------

SERVER1_ID = "i-0aaa1111"
SERVER2_ID = "i-0bbb2222"
REGION = "us-east-1"
INSTANCES = (
    TrackedInstance("Server1", "Server 1", SERVER1_ID),
    TrackedInstance("Server2", "Server 2", SERVER2_ID),
)
FIXED_NOW = datetime(2026, 10, 19, 18, 5, tzinfo=UTC)


def make_settings(**overrides):
    """Create a Settings object with defaults for testing (no .env, no config.toml).

    Usage::

        s = make_settings(environment="staging")
        s = make_settings(aws=AwsConfig(server1_instance_id="i-1"))
    """
    from serverswitch.config import (
        AwsConfig,
        DisplayConfig,
        LoggingConfig,
        ReconcileConfig,
        SchedulerConfig,
        ServerConfig,
        Settings,
        SlackConfig,
        StoreConfig,
    )

    defaults: dict[str, Any] = {
        "environment": "production",
        "slack": SlackConfig(),
        "server": ServerConfig(),
        "aws": AwsConfig(server1_instance_id=SERVER1_ID, server2_instance_id=SERVER2_ID),
        "destinations": {},
        "scheduler": SchedulerConfig(),
        "display": DisplayConfig(),
        "reconcile": ReconcileConfig(),
        "store": StoreConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    return Settings.model_construct(**defaults)


class FakeSource:
    """In-memory stand-in for Ec2InstanceSource that records every call."""

    def __init__(self, statuses: dict[str, int] | None = None) -> None:
        self.statuses: dict[str, int] = dict(statuses or {})
        self.calls: list[tuple[str, ...]] = []
        self.fail: Exception | None = None

    async def describe_statuses(self, region: str, instance_ids) -> dict[str, int]:
        self.calls.append(("describe", region))
        if self.fail is not None:
            raise self.fail
        return {i: self.statuses[i] for i in instance_ids if i in self.statuses}

    async def start(self, region: str, instance_id: str) -> None:
        self.calls.append(("start", region, instance_id))

    async def stop(self, region: str, instance_id: str) -> None:
        self.calls.append(("stop", region, instance_id))

    def power_calls(self) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] in ("start", "stop")]


class FakeTransport:
    """In-memory stand-in for SlackTransport."""

    def __init__(self) -> None:
        self.published: list[tuple[str, list[dict[str, Any]]]] = []
        self.updates: list[tuple[str, str, list[dict[str, Any]]]] = []
        self.missing: set[str] = set()  # ts values Slack reports as message_not_found
        self._counter = 0

    async def publish(self, channel: str, blocks, text: str = FALLBACK_TEXT) -> tuple[str, str]:
        self._counter += 1
        channel_id = channel if channel.startswith("C") else f"C-{channel}"
        self.published.append((channel_id, blocks))
        return channel_id, f"1700000000.{self._counter:06d}"

    async def update(self, channel_id: str, ts: str, blocks, text: str = FALLBACK_TEXT) -> bool:
        self.updates.append((channel_id, ts, blocks))
        return ts not in self.missing


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Each test starts with a pure-default Settings singleton."""
    monkeypatch.setattr("serverswitch.config._settings", make_settings())


@pytest.fixture(autouse=True, scope="session")
def _close_test_database():
    """Stop the aiosqlite worker thread after all tests complete.

    Sync fixture with ``stop()`` + join because the connection was created
    on a function-scoped event loop that no longer exists.
    """
    yield
    import serverswitch.db._connection as db_conn

    if db_conn._db is not None:
        db_conn._db.stop()
        if db_conn._db._thread is not None and db_conn._db._thread.is_alive():
            db_conn._db._thread.join(timeout=2)
        db_conn._db = None


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def test_db():
    from serverswitch.db import _init_test_database

    await _init_test_database()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
