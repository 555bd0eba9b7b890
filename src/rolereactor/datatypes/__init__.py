"""
Typed records for every stored collection.

- **document.py**: dataclass <-> document conversion (camelCase keys, ISO dates, enums).
- **discord_datatypes.py**: snowflake normalisation on top of py-cord models.
- **role_datatypes.py**: role mappings, temporary/supporter roles, voice control roles.
- **guild_datatypes.py**: welcome/goodbye/guild settings, experience, analytics, command usage.
- **credit_datatypes.py**: per-user Core credit balances.
- **poll_datatypes.py**, **schedule_datatypes.py**, **moderation_datatypes.py**.
"""
