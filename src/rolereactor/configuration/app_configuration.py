from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from rolereactor.configuration.storage_settings import StorageSettings
from rolereactor.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    Caches the contents of ``./config/app_config.yml`` and resolves the storage
    section through :class:`StorageSettings`. A missing or malformed file is
    logged and treated as empty so the bot can still start on defaults and
    environment variables.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.warning("[APP CONFIGURATION] Config file %s not found, using defaults.", self.config_path)
            return {}
        except (OSError, yaml.YAMLError) as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            if data is not None:
                logger.error("[APP CONFIGURATION] Config %s is not a mapping, ignoring it.", self.config_path)
            return {}
        return data

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping (do not mutate)."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    @property
    def storage_settings(self) -> StorageSettings:
        """Return the storage section wrapped in a StorageSettings helper.

        Environment overrides (``MONGODB_URI`` and friends) are applied at
        construction, so call this after ``load_dotenv``.
        """
        settings = self._data.get("storage", {})
        if not isinstance(settings, dict):
            settings = {}
        return StorageSettings(settings)


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
