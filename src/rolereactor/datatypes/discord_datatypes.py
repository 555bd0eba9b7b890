"""
Discord identifier helpers.

Stored documents keep snowflakes as strings (64-bit integers do not survive a
JSON round trip in every consumer). Repository methods accept raw ids or any
py-cord model with an ``id`` (``discord.Guild``, ``discord.Member``,
``discord.Role``...) and normalise them here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Union

import discord
from discord.utils import snowflake_time, utcnow

SnowflakeLike = Union[str, int, discord.abc.Snowflake]


def snowflake_str(value: SnowflakeLike) -> str:
    """
    Normalise an id or py-cord model into the string stored in documents.

    Example:
        >>> snowflake_str(123456789012345678)
        '123456789012345678'
        >>> snowflake_str(guild)   # discord.Guild
        '987654321098765432'
    """
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        raise ValueError("Booleans are not valid snowflakes")
    if isinstance(value, int):
        return str(value)
    ident = getattr(value, "id", None)
    if ident is None:
        raise ValueError(f"Cannot derive a snowflake from {type(value).__name__}")
    return str(ident)


def snowflake_created_at(value: SnowflakeLike) -> datetime | None:
    """Creation time encoded in a numeric snowflake, or None for non-numeric ids."""
    raw = snowflake_str(value)
    if not raw.isdigit():
        return None
    return snowflake_time(int(raw))


def now_utc() -> datetime:
    """Timezone-aware current time, the single clock every repository stamps documents with."""
    return utcnow()
