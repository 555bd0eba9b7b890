"""
Shared plumbing for collection repositories.

A repository is a thin composition of the connection manager (for I/O), the
shared object cache and, for aggregate reads, the query cache. Collections are
resolved through the connection manager on every call, so repositories stay
valid across reconnects.

Every public method is wrapped with :func:`storage_operation`, which

* delegates to the same-named method on the repository's file mirror when
  MongoDB is not healthy (invalidating the cache for writes), and
* translates driver exceptions into :mod:`rolereactor.database.errors`.
"""

from __future__ import annotations

import copy
import functools
import logging
from typing import Any, Awaitable, Callable, ClassVar, Dict, Generic, List, Optional, Type, TypeVar

from pymongo.errors import ConnectionFailure, DuplicateKeyError

from rolereactor.database.db_cache import ObjectCache, QueryCache, make_key, make_query_key
from rolereactor.database.errors import DuplicateDocumentError, StorageUnavailableError
from rolereactor.database.file_store import FileFallbackStore
from rolereactor.datatypes.document import DocumentMixin
from rolereactor.util.logger import get_logger

R = TypeVar("R", bound=DocumentMixin)
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

_MISSING = object()


def storage_operation(write: bool = False) -> Callable[[F], F]:
    """
    Decorate a repository coroutine with fallback routing and error translation.

    Args:
        write: The operation mutates the collection; a fallback write clears
            this collection's cache entries too.
    """

    def decorator(func: F) -> F:
        name = func.__name__

        @functools.wraps(func)
        async def wrapper(self: "BaseRepo", *args: Any, **kwargs: Any) -> Any:
            if not self.connection.is_connection_healthy():
                if self.fallback is None:
                    raise StorageUnavailableError(f"{self.collection_name}.{name}: MongoDB unavailable")
                self.logger.debug("[REPOSITORY] %s.%s served by file store", self.collection_name, name)
                result = await getattr(self.fallback, name)(*args, **kwargs)
                if write:
                    self.invalidate()
                return result
            try:
                return await func(self, *args, **kwargs)
            except DuplicateKeyError as exc:
                details = exc.details or {}
                raise DuplicateDocumentError(self.collection_name, details.get("keyValue")) from exc
            except ConnectionFailure as exc:
                self.logger.warning("[REPOSITORY] %s.%s lost the connection: %s", self.collection_name, name, exc)
                raise StorageUnavailableError(str(exc)) from exc

        return wrapper  # type: ignore[return-value]

    return decorator


class BaseRepo:
    """Cache-aware access to one MongoDB collection."""

    collection_name: ClassVar[str] = ""

    def __init__(
        self,
        connection: Any,
        cache: ObjectCache,
        logger: Optional[logging.Logger] = None,
        *,
        query_cache: Optional[QueryCache] = None,
        fallback: Optional["FileRepo"] = None,
    ) -> None:
        self.connection = connection
        self.cache = cache
        self.logger = logger or get_logger("repositories")
        self.query_cache = query_cache
        self.fallback = fallback

    @property
    def collection(self) -> Any:
        """Live collection handle; raises StorageUnavailableError when disconnected."""
        return self.connection.get_collection(self.collection_name)

    def key(self, *parts: Any) -> str:
        return make_key(self.collection_name, *parts)

    def query_key(self, operation: str, **params: Any) -> str:
        return make_query_key(self.collection_name, operation, **params)

    def invalidate(self) -> None:
        """Drop every cached object and query result for this collection."""
        prefix = f"{self.collection_name}:"
        self.cache.invalidate_prefix(prefix)
        if self.query_cache is not None:
            self.query_cache.invalidate_collection(self.collection_name)

    def remember(self, key: str, value: Any) -> None:
        """Cache a private copy of ``value`` so later caller mutations do not leak into the cache."""
        self.cache.set(key, copy.deepcopy(value))

    async def read_through(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Serve ``key`` from the object cache, loading and caching it on a miss. None is not cached.

        Callers always get their own copy; the cached value is never handed out.
        """
        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return copy.deepcopy(cached)
        value = await loader()
        if value is not None:
            self.remember(key, value)
        return value

    async def cached_query(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Serve an aggregate read from the query cache when one is configured. Results are copies."""
        if self.query_cache is None:
            return await loader()
        return copy.deepcopy(await self.query_cache.get_or_load(key, loader))

    async def find_records(
        self,
        record_type: Type[R],
        query: Dict[str, Any],
        sort: Optional[List[tuple[str, int]]] = None,
        limit: int = 0,
        skip: int = 0,
    ) -> List[R]:
        cursor = self.collection.find(query)
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        documents = await cursor.to_list(length=None)
        return [record_type.from_document(doc) for doc in documents]


class FileRepo(Generic[R]):
    """Base for the JSON file mirrors of each repository."""

    collection_name: ClassVar[str] = ""

    def __init__(self, store: FileFallbackStore) -> None:
        self.store = store

    async def read(self) -> Dict[str, Any]:
        return await self.store.read(self.collection_name)

    def transaction(self):
        return self.store.transaction(self.collection_name)
