"""
Pytest configuration and fixtures for Role Reactor storage tests.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from rolereactor.database.db_cache import ObjectCache, QueryCache  # noqa: E402
from rolereactor.database.errors import StorageUnavailableError  # noqa: E402
from rolereactor.database.file_store import FileFallbackStore  # noqa: E402


def make_cursor(documents=None) -> MagicMock:
    """Motor-style cursor: sort/skip/limit chain back to itself, to_list is awaitable."""
    cursor = MagicMock(name="cursor")
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=list(documents or []))
    return cursor


def make_collection(documents=None) -> MagicMock:
    collection = MagicMock(name="collection")
    collection.find.return_value = make_cursor(documents)
    for name in (
        "find_one",
        "find_one_and_update",
        "insert_one",
        "replace_one",
        "update_one",
        "update_many",
        "delete_one",
        "delete_many",
        "count_documents",
        "create_index",
        "drop_index",
        "index_information",
    ):
        setattr(collection, name, AsyncMock(name=name))
    collection.find_one.return_value = None
    collection.count_documents.return_value = 0
    collection.index_information.return_value = {}
    return collection


class FakeConnection:
    """Stands in for ConnectionManager: a health flag plus lazily created mock collections."""

    def __init__(self, healthy: bool = True) -> None:
        self.healthy = healthy
        self.collections = {}

    def is_connection_healthy(self) -> bool:
        return self.healthy

    def get_collection(self, name: str) -> MagicMock:
        if not self.healthy:
            raise StorageUnavailableError("MongoDB is not connected")
        if name not in self.collections:
            self.collections[name] = make_collection()
        return self.collections[name]


@pytest.fixture()
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture()
def offline_connection() -> FakeConnection:
    return FakeConnection(healthy=False)


@pytest.fixture()
def cache() -> ObjectCache:
    return ObjectCache(ttl_seconds=300, max_size=1000)


@pytest.fixture()
def query_cache() -> QueryCache:
    return QueryCache(ttl_seconds=120, max_size=500)


@pytest.fixture()
def file_store(tmp_path: Path) -> FileFallbackStore:
    return FileFallbackStore(tmp_path / "data")
