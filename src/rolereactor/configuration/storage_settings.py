from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping


# Environment variables take precedence over the YAML file. The first name in
# each tuple wins when several are set.
ENV_OVERRIDES: Dict[str, tuple[str, ...]] = {
    "mongodb_uri": ("MONGODB_URI", "MONGO_URI"),
    "database_name": ("MONGODB_DB_NAME", "MONGO_DB_NAME"),
    "storage_path": ("ROLEREACTOR_STORAGE_PATH",),
}


class StorageSettings:
    """Typed accessors for the ``storage:`` section of the app configuration.

    Pool and timeout values are clamped to the floors the bot was tuned with
    (a deployment may raise them, never lower them). Everything else is a
    plain default that the YAML can override.
    """

    def __init__(self, data: Mapping[str, Any] | None = None, env: Mapping[str, str] | None = None) -> None:
        self.data: Dict[str, Any] = dict(data or {})
        environ = os.environ if env is None else env
        for key, names in ENV_OVERRIDES.items():
            for name in names:
                value = environ.get(name)
                if value:
                    self.data[key] = value
                    break

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        return self.data

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.data.get(name, {})
        return section if isinstance(section, dict) else {}

    # --------------------------
    # Connection target
    # --------------------------
    @property
    def mongodb_uri(self) -> str:
        return str(self.data.get("mongodb_uri") or "")

    @property
    def database_name(self) -> str:
        return str(self.data.get("database_name") or "role_reactor")

    # --------------------------
    # Driver pool options
    # --------------------------
    def _pool(self, key: str, default: int, floor: int | None = None) -> int:
        value = int(self._section("pool").get(key, default) or default)
        return max(floor, value) if floor is not None else value

    @property
    def max_pool_size(self) -> int:
        return self._pool("max_pool_size", 20, floor=2)

    @property
    def min_pool_size(self) -> int:
        return self._pool("min_pool_size", 2, floor=2)

    @property
    def max_idle_time_ms(self) -> int:
        return self._pool("max_idle_time_ms", 60000, floor=60000)

    @property
    def server_selection_timeout_ms(self) -> int:
        return self._pool("server_selection_timeout_ms", 30000, floor=30000)

    @property
    def connect_timeout_ms(self) -> int:
        return self._pool("connect_timeout_ms", 30000, floor=30000)

    @property
    def socket_timeout_ms(self) -> int:
        return self._pool("socket_timeout_ms", 60000, floor=60000)

    @property
    def heartbeat_frequency_ms(self) -> int:
        return self._pool("heartbeat_frequency_ms", 10000)

    @property
    def max_connecting(self) -> int:
        return self._pool("max_connecting", 5, floor=5)

    def client_options(self) -> Dict[str, Any]:
        """Keyword arguments for the Motor client, pool bounds and timeouts included."""
        return {
            "maxPoolSize": self.max_pool_size,
            "minPoolSize": self.min_pool_size,
            "maxIdleTimeMS": self.max_idle_time_ms,
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "connectTimeoutMS": self.connect_timeout_ms,
            "socketTimeoutMS": self.socket_timeout_ms,
            "heartbeatFrequencyMS": self.heartbeat_frequency_ms,
            "maxConnecting": self.max_connecting,
            "retryWrites": True,
            "retryReads": True,
            "w": "majority",
        }

    # --------------------------
    # Connection lifecycle
    # --------------------------
    @property
    def connect_timeout_seconds(self) -> float:
        return float(self._section("connection").get("timeout_seconds", 30.0))

    @property
    def max_reconnect_attempts(self) -> int:
        return int(self._section("connection").get("max_reconnect_attempts", 5))

    @property
    def reconnect_base_delay(self) -> float:
        """Base reconnect delay in seconds."""
        return float(self._section("connection").get("reconnect_base_delay", 2.0))

    @property
    def health_check_interval(self) -> float:
        return float(self._section("connection").get("health_check_interval", 30.0))

    # --------------------------
    # Caches
    # --------------------------
    @property
    def cache_ttl(self) -> float:
        return float(self._section("cache").get("ttl_seconds", 300.0))

    @property
    def cache_max_size(self) -> int:
        return int(self._section("cache").get("max_size", 1000))

    @property
    def query_cache_ttl(self) -> float:
        return float(self._section("query_cache").get("ttl_seconds", 120.0))

    @property
    def query_cache_max_size(self) -> int:
        return int(self._section("query_cache").get("max_size", 500))

    @property
    def cache_cleanup_interval(self) -> float:
        return float(self._section("cache").get("cleanup_interval_seconds", 300.0))

    # --------------------------
    # File fallback
    # --------------------------
    @property
    def storage_path(self) -> Path:
        return Path(str(self.data.get("storage_path") or "./data"))
