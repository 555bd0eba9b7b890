"""
Daily guild counters (``guild_analytics``, unique on ``guildId + date``) and
command usage totals (``command_usage``, unique on ``commandName``).

Dates are ``YYYY-MM-DD`` strings so range queries compare lexically.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict, List, Union

from pymongo import ASCENDING, DESCENDING

from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.guild_datatypes import ANALYTICS_COUNTERS, CommandUsage, GuildAnalyticsDay
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

ANALYTICS_COLLECTION = "guild_analytics"
COMMAND_USAGE_COLLECTION = "command_usage"

DateLike = Union[str, date, datetime]


def day_key(value: DateLike) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(value[:10]).isoformat()


def _check_counter(kind: str) -> None:
    if kind not in ANALYTICS_COUNTERS:
        raise ValueError(f"Unknown analytics counter {kind!r}; expected one of {ANALYTICS_COUNTERS}")


class GuildAnalyticsRepo(BaseRepo):
    collection_name = ANALYTICS_COLLECTION

    @storage_operation(write=True)
    async def update_counter(self, guild_id: SnowflakeLike, day: DateLike, kind: str, amount: int = 1) -> None:
        _check_counter(kind)
        await self.collection.update_one(
            {"guildId": snowflake_str(guild_id), "date": day_key(day)},
            {
                "$inc": {kind: amount},
                "$setOnInsert": {other: 0 for other in ANALYTICS_COUNTERS if other != kind},
            },
            upsert=True,
        )
        self.invalidate()

    @storage_operation()
    async def get_history(self, guild_id: SnowflakeLike, start: DateLike, end: DateLike) -> List[GuildAnalyticsDay]:
        """Stored days in ``[start, end]``, oldest first."""
        return await self.find_records(
            GuildAnalyticsDay,
            {"guildId": snowflake_str(guild_id), "date": {"$gte": day_key(start), "$lte": day_key(end)}},
            sort=[("date", ASCENDING)],
        )

    @storage_operation(write=True)
    async def delete_older_than(self, cutoff: DateLike) -> int:
        result = await self.collection.delete_many({"date": {"$lt": day_key(cutoff)}})
        if result.deleted_count:
            self.invalidate()
        return result.deleted_count


class FileGuildAnalyticsRepo(FileRepo[GuildAnalyticsDay]):
    """Stores ``guild -> date -> {joins, leaves, members}``."""

    collection_name = ANALYTICS_COLLECTION

    async def update_counter(self, guild_id: SnowflakeLike, day: DateLike, kind: str, amount: int = 1) -> None:
        _check_counter(kind)
        async with self.transaction() as data:
            counters = data.setdefault(snowflake_str(guild_id), {}).setdefault(
                day_key(day), {name: 0 for name in ANALYTICS_COUNTERS}
            )
            counters[kind] = counters.get(kind, 0) + amount

    async def get_history(self, guild_id: SnowflakeLike, start: DateLike, end: DateLike) -> List[GuildAnalyticsDay]:
        """Every day in ``[start, end]``; days with nothing recorded read as zeros."""
        guild_id = snowflake_str(guild_id)
        days: Dict[str, Dict[str, int]] = (await self.read()).get(guild_id, {})
        current = date.fromisoformat(day_key(start))
        last = date.fromisoformat(day_key(end))
        history: List[GuildAnalyticsDay] = []
        while current <= last:
            key = current.isoformat()
            counters = days.get(key, {})
            history.append(GuildAnalyticsDay(guild_id=guild_id, date=key, **{name: counters.get(name, 0) for name in ANALYTICS_COUNTERS}))
            current += timedelta(days=1)
        return history

    async def delete_older_than(self, cutoff: DateLike) -> int:
        cutoff_key = day_key(cutoff)
        removed = 0
        async with self.transaction() as data:
            for days in data.values():
                for key in [key for key in days if key < cutoff_key]:
                    del days[key]
                    removed += 1
        return removed


class CommandUsageRepo(BaseRepo):
    collection_name = COMMAND_USAGE_COLLECTION

    @storage_operation(write=True)
    async def record(self, command_name: str) -> None:
        await self.collection.update_one(
            {"commandName": command_name},
            {"$inc": {"count": 1}, "$set": {"lastUsed": now_utc()}},
            upsert=True,
        )
        self.invalidate()

    @storage_operation()
    async def get_top(self, limit: int = 10) -> List[CommandUsage]:
        async def load() -> List[CommandUsage]:
            return await self.find_records(CommandUsage, {}, sort=[("count", DESCENDING)], limit=limit)

        return await self.cached_query(self.query_key("top", limit=limit), load)


class FileCommandUsageRepo(FileRepo[CommandUsage]):
    collection_name = COMMAND_USAGE_COLLECTION

    async def record(self, command_name: str) -> None:
        async with self.transaction() as data:
            entry = data.setdefault(command_name, {"commandName": command_name, "count": 0})
            entry["count"] = entry.get("count", 0) + 1
            entry["lastUsed"] = now_utc().isoformat()

    async def get_top(self, limit: int = 10) -> List[CommandUsage]:
        records = [CommandUsage.from_document(value) for value in (await self.read()).values()]
        records.sort(key=lambda record: record.count, reverse=True)
        return records[:limit]
