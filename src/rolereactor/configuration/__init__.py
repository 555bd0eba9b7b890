"""
Configuration management for Role Reactor storage.

- **app_configuration.py**: file-locked YAML loader for ``./config/app_config.yml``.
  Falls back to an empty mapping on missing or malformed files.

- **storage_settings.py**: typed view over the ``storage:`` section (MongoDB URI,
  pool bounds, reconnect policy, cache sizes and TTLs, fallback storage path),
  with ``MONGODB_URI`` / ``MONGODB_DB_NAME`` / ``ROLEREACTOR_STORAGE_PATH``
  environment overrides.
"""
