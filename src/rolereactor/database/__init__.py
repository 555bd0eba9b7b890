"""
Database package for Role Reactor.

MongoDB access with reconnection, health probing, in-process caching and a
JSON file fallback used whenever the remote store is unreachable.

Public API:
    - StorageFacade: process-wide handle; ``get_database_manager()`` returns None when offline
    - DatabaseManager: connected repositories plus shared caches
    - FallbackRepositories: file-backed repositories with the same attribute names
    - ConnectionManager: owner of the Motor client
"""
