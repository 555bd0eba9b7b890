"""
MongoDB connection management: one pooled client per process.

The manager owns the Motor client exclusively. Repositories never see the
client; they ask for a collection through ``get_collection`` at call time, so
a reconnect is picked up by every repository without rebuilding anything.

Lifecycle
---------
* ``connect()`` starts (or joins) a connection attempt, bounded by a fixed
  timeout. On failure it records the attempt, schedules a retry with
  classified backoff and raises; once ``max_attempts`` consecutive attempts
  have failed it stops and raises ``ReconnectionExhaustedError``.
* While connected, a background health check pings the server. A failed ping marks
  the connection unhealthy and runs the same retry procedure; a later
  successful ping resets the counters.
* ``close()`` stops the health check, cancels pending retries and closes the client.
  It is safe to call at any time.

Usage
-----
    manager = ConnectionManager(app_config.storage_settings)
    await manager.connect()

    if manager.is_connection_healthy():
        polls = manager.get_collection("polls")

    await manager.close()
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi

from rolereactor.configuration.storage_settings import StorageSettings
from rolereactor.database.db_schema import SchemaManager
from rolereactor.database.errors import (
    ConnectionTimeoutError,
    ReconnectionExhaustedError,
    StorageUnavailableError,
)
from rolereactor.database.reconnect import (
    ConnectionState,
    FailureKind,
    LoopScheduler,
    ReconnectionState,
    Scheduler,
    TimerHandle,
    classify_failure,
)
from rolereactor.scheduler.periodic_task import PeriodicTask
from rolereactor.util.logger import get_logger

logger = get_logger("database_connection")

ClientFactory = Callable[..., Any]

_FAILURE_HINTS = {
    FailureKind.DNS_TIMEOUT: "DNS resolution timed out, probably a temporary network issue",
    FailureKind.TIMEOUT: "connection timed out, the network may be slow",
    FailureKind.DNS_NOT_FOUND: "DNS lookup failed, check the MongoDB URI",
}


def default_client_factory(uri: str, **options: Any) -> AsyncIOMotorClient:
    """Build the Motor client with the stable API (v1, non-strict)."""
    return AsyncIOMotorClient(uri, server_api=ServerApi("1", strict=False, deprecation_errors=False), **options)


class ConnectionManager:
    """
    Owner of the single MongoDB client.

    Args:
        settings: Storage settings (URI, database name, pool and retry policy).
        client_factory: Callable ``(uri, **options) -> client``; injectable for tests.
        scheduler: Timer source for retries; defaults to the running asyncio loop.
    """

    def __init__(
        self,
        settings: StorageSettings,
        client_factory: ClientFactory | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory or default_client_factory
        self._scheduler: Scheduler = scheduler or LoopScheduler()
        self._timeout = settings.connect_timeout_seconds

        self._client: Any = None
        self._db: Any = None
        self._state = ConnectionState.DISCONNECTED
        self.reconnection = ReconnectionState(
            max_attempts=settings.max_reconnect_attempts,
            base_delay=settings.reconnect_base_delay,
        )
        self._connect_task: asyncio.Task | None = None
        self._retry_handle: TimerHandle | None = None
        self._health_task = PeriodicTask("mongodb health", self.ping_once, settings.health_check_interval)
        self._last_error: BaseException | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self.reconnection.is_connected

    @property
    def client(self) -> Any:
        return self._client

    @property
    def database(self) -> Any:
        return self._db

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def is_connection_healthy(self) -> bool:
        """True only when flagged connected with a live client and database handle. No I/O."""
        return self.reconnection.is_connected and self._client is not None and self._db is not None

    def get_collection(self, name: str) -> Any:
        """
        Return a collection handle on the live database.

        Raises:
            StorageUnavailableError: If there is no healthy connection.
        """
        if not self.is_connection_healthy():
            raise StorageUnavailableError(f"MongoDB is not connected (state={self._state.value})")
        return self._db[name]

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "healthy": self.is_connection_healthy(),
            "attempts": self.reconnection.attempts,
            "max_attempts": self.reconnection.max_attempts,
            "retry_pending": self.retry_pending,
            "last_error": str(self._last_error) if self._last_error else None,
        }

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def connect(self) -> Any:
        """
        Connect (or join the attempt already in flight) and return the database handle.

        Raises:
            StorageUnavailableError: The attempt failed, or a retry is already scheduled.
                While a retry is pending only its timer starts the next attempt.
            ConnectionTimeoutError: The attempt hit the fixed timeout; a retry has been scheduled.
            ReconnectionExhaustedError: Attempts are used up. Restart the process.
        """
        if self._state is ConnectionState.FAILED:
            raise ReconnectionExhaustedError(self.reconnection.attempts, self._last_error)
        self._closed = False
        if self.is_connection_healthy():
            return self._db
        if self._connect_task is None or self._connect_task.done():
            if self._retry_handle is not None:
                raise StorageUnavailableError(
                    f"MongoDB unavailable, reconnection {self.reconnection.attempts + 1}/"
                    f"{self.reconnection.max_attempts} already scheduled"
                )
            self._connect_task = asyncio.create_task(self._connect(), name="mongodb-connect")
            self._connect_task.add_done_callback(self._consume_task_result)
        return await asyncio.shield(self._connect_task)

    async def _connect(self) -> Any:
        self._cancel_retry()
        uri = self.settings.mongodb_uri
        if not uri:
            self._state = ConnectionState.DISCONNECTED
            raise StorageUnavailableError("No MongoDB URI configured")

        self._state = ConnectionState.RECONNECTING if self.reconnection.attempts else ConnectionState.CONNECTING
        logger.info(
            "[DB CONNECTION] Connecting to MongoDB (attempt %d/%d)",
            self.reconnection.attempts + 1, self.reconnection.max_attempts,
        )

        client = None
        try:
            client = self._client_factory(uri, **self.settings.client_options())
            await asyncio.wait_for(client.admin.command("ping"), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._discard_client(client)
            raise self._register_failure(ConnectionTimeoutError(self._timeout))
        except (PyMongoError, OSError) as exc:
            self._discard_client(client)
            raise self._register_failure(exc) from exc

        previous = self._client
        self._client = client
        self._db = client[self.settings.database_name]
        if previous is not None and previous is not client:
            self._discard_client(previous)
        self.reconnection.record_success()
        self._last_error = None
        self._state = ConnectionState.CONNECTED
        logger.info("[DB CONNECTION] Connected to database '%s'", self.settings.database_name)

        self._health_task.start()
        try:
            await SchemaManager.provision_indexes(self._db)
        except PyMongoError as exc:
            logger.warning("[DB CONNECTION] Index provisioning failed (non-fatal): %s", exc)
        return self._db

    def _register_failure(self, exc: BaseException) -> BaseException:
        """Record a failed attempt, schedule the next one, and return the error to surface."""
        kind = classify_failure(exc)
        self._last_error = exc
        self.reconnection.record_failure(kind)
        attempts = self.reconnection.attempts
        maximum = self.reconnection.max_attempts
        hint = _FAILURE_HINTS.get(kind)
        if hint:
            logger.warning("[DB CONNECTION] %s (%s)", hint, exc)
        else:
            logger.warning("[DB CONNECTION] Connection failed: %s", exc)

        if self._closed:
            self._state = ConnectionState.DISCONNECTED
            return exc if isinstance(exc, StorageUnavailableError) else StorageUnavailableError(str(exc))

        if self.reconnection.can_retry:
            delay = self.reconnection.next_delay()
            self._state = ConnectionState.RECONNECTING
            self._retry_handle = self._scheduler.call_later(delay, self._on_retry_timer)
            logger.info("[DB CONNECTION] Reconnection %d/%d scheduled in %.1fs", attempts, maximum, delay)
            return exc if isinstance(exc, StorageUnavailableError) else StorageUnavailableError(str(exc))

        self._state = ConnectionState.FAILED
        self._health_task.stop()
        logger.error("[DB CONNECTION] Max reconnection attempts (%d) reached. Manual restart required.", maximum)
        return ReconnectionExhaustedError(attempts, exc)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        if self._closed or self._state is ConnectionState.FAILED:
            return
        if self._connect_task is not None and not self._connect_task.done():
            return
        self._connect_task = asyncio.ensure_future(self._connect())
        self._connect_task.add_done_callback(self._consume_task_result)

    @staticmethod
    def _consume_task_result(task: asyncio.Task) -> None:
        # Failures are already logged; retrieve them so asyncio does not complain.
        if not task.cancelled():
            task.exception()

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    @staticmethod
    def _discard_client(client: Any) -> None:
        if client is None:
            return
        try:
            client.close()
        except (PyMongoError, OSError) as exc:
            logger.debug("[DB CONNECTION] Error closing client: %s", exc)

    # ------------------------------------------------------------------
    # Health monitoring
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Round-trip a ping to the server. Returns False instead of raising."""
        if self._client is None:
            return False
        try:
            await asyncio.wait_for(self._client.admin.command("ping"), timeout=self._timeout)
        except (PyMongoError, OSError, asyncio.TimeoutError) as exc:
            self._last_error = exc
            return False
        return True

    async def ping_once(self) -> None:
        """One health check: flag failures, start reconnection, log recovery."""
        if self._client is None or self._closed:
            return
        if await self.ping():
            if not self.reconnection.is_connected:
                self._cancel_retry()
                self.reconnection.record_success()
                self._state = ConnectionState.CONNECTED
                logger.info("[DB HEALTH] MongoDB connection recovered")
            return

        if self.reconnection.is_connected:
            logger.warning("[DB HEALTH] Ping failed, marking connection unhealthy: %s", self._last_error)
            self._register_failure(self._last_error or StorageUnavailableError("ping failed"))

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop the health check and pending retries, then close the client. Safe if never connected."""
        self._closed = True
        self._cancel_retry()
        await self._health_task.shutdown()

        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except (StorageUnavailableError, ReconnectionExhaustedError):
                pass

        client = self._client
        self._client = None
        self._db = None
        self.reconnection.is_connected = False
        if self._state is not ConnectionState.FAILED:
            self._state = ConnectionState.DISCONNECTED
        if client is not None:
            self._discard_client(client)
            logger.info("[DB CONNECTION] MongoDB connection closed")
