"""Tests for DatabaseManager and StorageFacade, including the offline file fallback path."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from rolereactor.configuration.storage_settings import StorageSettings
from rolereactor.database.database import DatabaseManager, FallbackRepositories, StorageFacade
from rolereactor.database.db_connection import ConnectionManager
from rolereactor.database.errors import ReconnectionExhaustedError, StorageUnavailableError
from rolereactor.database.reconnect import ConnectionState
from rolereactor.repositories.settings_repo import FileWelcomeSettingsRepo, WelcomeSettingsRepo


def make_settings(tmp_path, uri=""):
    return StorageSettings({"mongodb_uri": uri, "storage_path": str(tmp_path / "data")}, env={})


def make_connection(healthy=False, connect_error=None):
    connection = MagicMock(name="connection")
    connection.is_connection_healthy.return_value = healthy
    connection.connect = AsyncMock(side_effect=connect_error)
    connection.close = AsyncMock()
    connection.ping = AsyncMock(return_value=True)
    connection.status.return_value = {"state": "connected" if healthy else "disconnected"}
    return connection


def test_database_manager_wires_repositories_to_fallback(tmp_path):
    manager = DatabaseManager(make_settings(tmp_path), connection=make_connection())

    assert isinstance(manager.welcome_settings, WelcomeSettingsRepo)
    assert isinstance(manager.fallback.welcome_settings, FileWelcomeSettingsRepo)
    assert manager.welcome_settings.fallback is manager.fallback.welcome_settings
    assert manager.polls.cache is manager.user_experience.cache
    assert manager.user_experience.query_cache is manager.query_cache


def test_fallback_repositories_expose_same_names(tmp_path):
    manager = DatabaseManager(make_settings(tmp_path), connection=make_connection())
    names = [
        "role_mappings", "temporary_roles", "user_experience", "welcome_settings",
        "goodbye_settings", "guild_settings", "voice_control_roles", "polls",
        "scheduled_roles", "recurring_schedules", "moderation_logs",
        "guild_analytics", "command_usage", "core_credits",
    ]
    for name in names:
        assert getattr(manager, name).fallback is getattr(manager.fallback, name)


@pytest.mark.asyncio
async def test_facade_returns_none_when_connect_fails(tmp_path):
    connection = make_connection(connect_error=StorageUnavailableError("down"))
    facade = StorageFacade(make_settings(tmp_path, uri="mongodb://x"), connection_factory=lambda s: connection)

    assert await facade.get_database_manager() is None
    assert await facade.health_check() is False
    assert isinstance(await facade.repositories(), FallbackRepositories)

    await facade.close()
    connection.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_facade_returns_none_when_reconnection_exhausted(tmp_path):
    connection = make_connection(connect_error=ReconnectionExhaustedError(5))
    facade = StorageFacade(make_settings(tmp_path, uri="mongodb://x"), connection_factory=lambda s: connection)

    assert await facade.get_database_manager() is None
    await facade.close()


@pytest.mark.asyncio
async def test_facade_returns_manager_when_connected(tmp_path):
    connection = make_connection(healthy=True)
    facade = StorageFacade(make_settings(tmp_path, uri="mongodb://x"), connection_factory=lambda s: connection)

    manager = await facade.get_database_manager()

    assert isinstance(manager, DatabaseManager)
    assert await facade.get_database_manager() is manager
    assert await facade.repositories() is manager
    assert await facade.health_check() is True
    assert facade.storage_status()["backend"] == "mongodb"
    connection.connect.assert_not_awaited()

    await facade.close()
    connection.close.assert_awaited_once()
    assert facade.manager is None


@pytest.mark.asyncio
async def test_facade_close_without_manager_is_safe(tmp_path):
    facade = StorageFacade(make_settings(tmp_path))
    await facade.close()
    assert facade.storage_status()["backend"] == "file"


@pytest.mark.asyncio
async def test_offline_welcome_settings_round_trip_through_file_store(tmp_path):
    facade = StorageFacade(make_settings(tmp_path))

    assert await facade.get_database_manager() is None
    repos = facade.manager

    await repos.welcome_settings.set("G1", {"enabled": True})
    settings = await repos.welcome_settings.get_by_guild("G1")

    assert settings.enabled is True
    stored = json.loads((tmp_path / "data" / "welcome_settings.json").read_text())
    assert stored["G1"]["enabled"] is True
    assert (await facade.fallback.welcome_settings.get_by_guild("G1")).enabled is True

    await facade.close()


@pytest.mark.asyncio
async def test_cleanup_caches_sweeps_both_caches(tmp_path):
    manager = DatabaseManager(make_settings(tmp_path), connection=make_connection(healthy=True))
    manager.cache.set("polls:1", 1)
    manager.query_cache.set("polls:all", [])
    manager.cache._ttl_seconds = -1
    manager.query_cache._ttl_seconds = -1

    await manager.cleanup_caches()

    assert len(manager.cache) == 0
    assert len(manager.query_cache) == 0
    await manager.close()


class RecordingScheduler:
    def __init__(self):
        self.timers = []

    def call_later(self, delay, callback):
        timer = MagicMock(name="timer")
        timer.delay = delay
        timer.callback = callback
        self.timers.append(timer)
        return timer


@pytest.mark.asyncio
async def test_repeated_calls_during_outage_wait_for_scheduled_retry(tmp_path):
    client = MagicMock(name="client")
    client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("No servers found yet"))
    factory = MagicMock(return_value=client)
    scheduler = RecordingScheduler()
    settings = StorageSettings(
        {
            "mongodb_uri": "mongodb://db.example",
            "storage_path": str(tmp_path / "data"),
            "connection": {"timeout_seconds": 1, "health_check_interval": 3600},
        },
        env={},
    )
    facade = StorageFacade(
        settings,
        connection_factory=lambda s: ConnectionManager(s, client_factory=factory, scheduler=scheduler),
    )

    for _ in range(5):
        assert await facade.get_database_manager() is None

    connection = facade.manager.connection
    assert factory.call_count == 1
    assert connection.reconnection.attempts == 1
    assert connection.state is ConnectionState.RECONNECTING
    assert len(scheduler.timers) == 1
    scheduler.timers[0].cancel.assert_not_called()
    assert scheduler.timers[0].delay == pytest.approx(2.4)

    # The retry timer, not the callers, drives the next attempt.
    scheduler.timers[0].callback()
    with pytest.raises(StorageUnavailableError):
        await connection._connect_task
    assert factory.call_count == 2
    assert connection.reconnection.attempts == 2

    await facade.close()
