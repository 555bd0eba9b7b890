"""
Typed storage failures.

Driver exceptions are translated into these at the repository boundary so
callers never have to import pymongo to decide whether to degrade.
"""

from __future__ import annotations

from typing import Any


class StorageError(Exception):
    """Base class for every failure raised by the storage layer."""


class StorageUnavailableError(StorageError):
    """No healthy remote connection, or a transient connectivity failure mid-operation."""


class ConnectionTimeoutError(StorageUnavailableError):
    """A connection attempt did not complete within the fixed timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Connection attempt timed out after {timeout:.1f}s")
        self.timeout = timeout


class ReconnectionExhaustedError(StorageError):
    """Reconnection gave up after the configured number of attempts.

    This is fatal for the process; the supervisor is expected to restart it.
    """

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        message = f"Gave up reconnecting after {attempts} attempts"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class DuplicateDocumentError(StorageError):
    """A write violated a unique index."""

    def __init__(self, collection: str, key: Any) -> None:
        super().__init__(f"Duplicate document in {collection}: {key!r}")
        self.collection = collection
        self.key = key


class FallbackStoreError(StorageError):
    """The local JSON store failed for a reason other than a corrupted file."""
