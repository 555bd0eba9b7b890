"""
Storage composition root.

``DatabaseManager`` wires the connection manager, both caches, the file
fallback store and every repository together. ``StorageFacade`` is the single
handle the rest of the bot holds: it builds the manager lazily, reports
"unavailable" (``None``) instead of raising when MongoDB cannot be reached,
and always offers the file-backed repositories as ``fallback``.

Usage
-----
    storage = StorageFacade(app_config.storage_settings)

    repos = await storage.repositories()      # MongoDB, or the file mirrors
    settings = await repos.welcome_settings.get_by_guild(guild.id)

    healthy = await storage.health_check()
    await storage.close()
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional, Union

from rolereactor.configuration.storage_settings import StorageSettings
from rolereactor.database.db_cache import ObjectCache, QueryCache
from rolereactor.database.db_connection import ConnectionManager
from rolereactor.database.errors import ReconnectionExhaustedError, StorageError
from rolereactor.database.file_store import FileFallbackStore
from rolereactor.repositories.analytics_repo import (
    CommandUsageRepo,
    FileCommandUsageRepo,
    FileGuildAnalyticsRepo,
    GuildAnalyticsRepo,
)
from rolereactor.repositories.core_credits_repo import CoreCreditsRepo, FileCoreCreditsRepo
from rolereactor.repositories.moderation_log_repo import FileModerationLogRepo, ModerationLogRepo
from rolereactor.repositories.poll_repo import FilePollRepo, PollRepo
from rolereactor.repositories.role_mapping_repo import FileRoleMappingRepo, RoleMappingRepo
from rolereactor.repositories.schedule_repo import (
    FileRecurringScheduleRepo,
    FileScheduledRoleRepo,
    RecurringScheduleRepo,
    ScheduledRoleRepo,
)
from rolereactor.repositories.settings_repo import (
    FileGoodbyeSettingsRepo,
    FileGuildSettingsRepo,
    FileWelcomeSettingsRepo,
    GoodbyeSettingsRepo,
    GuildSettingsRepo,
    WelcomeSettingsRepo,
)
from rolereactor.repositories.temporary_role_repo import FileTemporaryRoleRepo, TemporaryRoleRepo
from rolereactor.repositories.user_experience_repo import FileUserExperienceRepo, UserExperienceRepo
from rolereactor.repositories.voice_control_repo import FileVoiceControlRepo, VoiceControlRepo
from rolereactor.scheduler.periodic_task import PeriodicTask
from rolereactor.util.logger import get_logger

logger = get_logger("database")


class FallbackRepositories:
    """File-backed repositories under the same attribute names as ``DatabaseManager``."""

    def __init__(self, store: FileFallbackStore) -> None:
        self.store = store
        self.role_mappings = FileRoleMappingRepo(store)
        self.temporary_roles = FileTemporaryRoleRepo(store)
        self.user_experience = FileUserExperienceRepo(store)
        self.welcome_settings = FileWelcomeSettingsRepo(store)
        self.goodbye_settings = FileGoodbyeSettingsRepo(store)
        self.guild_settings = FileGuildSettingsRepo(store)
        self.voice_control_roles = FileVoiceControlRepo(store)
        self.polls = FilePollRepo(store)
        self.scheduled_roles = FileScheduledRoleRepo(store)
        self.recurring_schedules = FileRecurringScheduleRepo(store)
        self.moderation_logs = FileModerationLogRepo(store)
        self.guild_analytics = FileGuildAnalyticsRepo(store)
        self.command_usage = FileCommandUsageRepo(store)
        self.core_credits = FileCoreCreditsRepo(store)


class DatabaseManager:
    """
    MongoDB-backed repositories plus the resources they share.

    Every repository falls back to its file mirror on its own while the
    connection is unhealthy, so a manager stays usable through outages.

    Lifecycle:
        1. ``await manager.connect()``
        2. ``manager.start_background_tasks()`` (cache cleanup sweep)
        3. ``await manager.close()`` at shutdown
    """

    def __init__(
        self,
        settings: StorageSettings,
        connection: Optional[ConnectionManager] = None,
        fallback: Optional[FallbackRepositories] = None,
    ) -> None:
        self.settings = settings
        self.connection = connection or ConnectionManager(settings)
        self.cache = ObjectCache(ttl_seconds=settings.cache_ttl, max_size=settings.cache_max_size)
        self.query_cache = QueryCache(ttl_seconds=settings.query_cache_ttl, max_size=settings.query_cache_max_size)
        self.fallback = fallback or FallbackRepositories(FileFallbackStore(settings.storage_path))
        self._cleanup_task = PeriodicTask("cache cleanup", self.cleanup_caches, settings.cache_cleanup_interval)

        def build(repo_cls: Callable[..., Any], mirror: Any) -> Any:
            return repo_cls(
                self.connection,
                self.cache,
                get_logger("repositories"),
                query_cache=self.query_cache,
                fallback=mirror,
            )

        fb = self.fallback
        self.role_mappings = build(RoleMappingRepo, fb.role_mappings)
        self.temporary_roles = build(TemporaryRoleRepo, fb.temporary_roles)
        self.user_experience = build(UserExperienceRepo, fb.user_experience)
        self.welcome_settings = build(WelcomeSettingsRepo, fb.welcome_settings)
        self.goodbye_settings = build(GoodbyeSettingsRepo, fb.goodbye_settings)
        self.guild_settings = build(GuildSettingsRepo, fb.guild_settings)
        self.voice_control_roles = build(VoiceControlRepo, fb.voice_control_roles)
        self.polls = build(PollRepo, fb.polls)
        self.scheduled_roles = build(ScheduledRoleRepo, fb.scheduled_roles)
        self.recurring_schedules = build(RecurringScheduleRepo, fb.recurring_schedules)
        self.moderation_logs = build(ModerationLogRepo, fb.moderation_logs)
        self.guild_analytics = build(GuildAnalyticsRepo, fb.guild_analytics)
        self.command_usage = build(CommandUsageRepo, fb.command_usage)
        self.core_credits = build(CoreCreditsRepo, fb.core_credits)

    async def connect(self) -> None:
        await self.connection.connect()

    def is_connection_healthy(self) -> bool:
        return self.connection.is_connection_healthy()

    async def health_check(self) -> bool:
        """Healthy state plus a live round trip to the server."""
        if not self.is_connection_healthy():
            return False
        return await self.connection.ping()

    async def cleanup_caches(self) -> None:
        expired = self.cache.cleanup() + self.query_cache.cleanup()
        if expired:
            logger.debug("[STORAGE] Cache sweep removed %d expired entries", expired)

    def start_background_tasks(self) -> None:
        self._cleanup_task.start()

    def storage_status(self) -> Dict[str, Any]:
        return {
            "backend": "mongodb" if self.is_connection_healthy() else "file",
            "connection": self.connection.status(),
            "cache": self.cache.stats(),
            "query_cache": self.query_cache.stats(),
            "storage_path": str(self.fallback.store.root),
        }

    async def close(self) -> None:
        await self._cleanup_task.shutdown()
        await self.connection.close()
        self.cache.clear()
        self.query_cache.clear()


Repositories = Union[DatabaseManager, FallbackRepositories]


class StorageFacade:
    """
    Process-wide storage handle. Construct once at startup and pass it around.

    Args:
        settings: Storage settings.
        connection_factory: Builds the ConnectionManager; injectable for tests.
        file_store: Fallback store; defaults to ``settings.storage_path``.
    """

    def __init__(
        self,
        settings: StorageSettings,
        connection_factory: Optional[Callable[[StorageSettings], ConnectionManager]] = None,
        file_store: Optional[FileFallbackStore] = None,
    ) -> None:
        self.settings = settings
        self._connection_factory = connection_factory or ConnectionManager
        self.fallback = FallbackRepositories(file_store or FileFallbackStore(settings.storage_path))
        self._manager: Optional[DatabaseManager] = None
        self._lock = asyncio.Lock()

    @property
    def manager(self) -> Optional[DatabaseManager]:
        return self._manager

    async def get_database_manager(self) -> Optional[DatabaseManager]:
        """
        Return the connected DatabaseManager, building it on first use.

        Returns None (and logs) when MongoDB is unavailable so callers can use
        ``fallback`` instead. Never raises for connectivity problems.
        """
        async with self._lock:
            if self._manager is None:
                self._manager = DatabaseManager(
                    self.settings,
                    connection=self._connection_factory(self.settings),
                    fallback=self.fallback,
                )
            manager = self._manager

            if not manager.is_connection_healthy():
                try:
                    await manager.connect()
                except ReconnectionExhaustedError as exc:
                    logger.error("[STORAGE] MongoDB permanently unavailable, restart required: %s", exc)
                    return None
                except StorageError as exc:
                    logger.warning("[STORAGE] MongoDB unavailable, falling back to file storage: %s", exc)
                    return None

            manager.start_background_tasks()
            return manager

    async def repositories(self) -> Repositories:
        """The MongoDB repositories when connected, otherwise the file mirrors."""
        return await self.get_database_manager() or self.fallback

    async def health_check(self) -> bool:
        if self._manager is None:
            return False
        return await self._manager.health_check()

    def storage_status(self) -> Dict[str, Any]:
        if self._manager is None:
            return {"backend": "file", "connection": None, "storage_path": str(self.fallback.store.root)}
        return self._manager.storage_status()

    async def close(self) -> None:
        manager = self._manager
        self._manager = None
        if manager is not None:
            await manager.close()
            logger.info("[STORAGE] Storage closed")
