"""
Experience points per member (``user_experience``).

Unique on ``guildId + userId``; leaderboards sort on ``totalXP`` descending,
then ``level``. Leaderboard and rank reads go through the query cache and
every write clears it for this collection.

The file mirror keys records by ``"<guildId>_<userId>"``.
"""

from __future__ import annotations

from typing import Any, List, Mapping

from pymongo import DESCENDING

from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.guild_datatypes import UserExperience
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

COLLECTION = "user_experience"


def _merge(guild_id: str, user_id: str, changes: Mapping[str, Any], current: UserExperience | None = None) -> UserExperience:
    base = current.to_document() if current else {}
    base.update(UserExperience.document_fields(changes))
    base.update({"guildId": guild_id, "userId": user_id, "updatedAt": now_utc()})
    return UserExperience.from_document(base)


def _rank_order(record: UserExperience) -> tuple[int, int]:
    return (record.total_xp or 0, record.level or 0)


class UserExperienceRepo(BaseRepo):
    collection_name = COLLECTION

    @storage_operation()
    async def get_by_user(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> UserExperience:
        """Stored record, or a fresh level-1 record if the member has none."""
        guild_id, user_id = snowflake_str(guild_id), snowflake_str(user_id)

        async def load() -> UserExperience:
            document = await self.collection.find_one({"guildId": guild_id, "userId": user_id})
            if document is None:
                return UserExperience(guild_id=guild_id, user_id=user_id)
            return UserExperience.from_document(document)

        return await self.read_through(self.key(guild_id, user_id), load)

    @storage_operation(write=True)
    async def set(self, guild_id: SnowflakeLike, user_id: SnowflakeLike, changes: Mapping[str, Any]) -> None:
        """Upsert the given fields (attribute names, e.g. ``{"total_xp": 120}``)."""
        guild_id, user_id = snowflake_str(guild_id), snowflake_str(user_id)
        fields = UserExperience.document_fields(changes)
        fields.update({"guildId": guild_id, "userId": user_id, "updatedAt": now_utc()})
        await self.collection.update_one({"guildId": guild_id, "userId": user_id}, {"$set": fields}, upsert=True)
        self.invalidate()

    @storage_operation(write=True)
    async def delete(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> bool:
        result = await self.collection.delete_one({"guildId": snowflake_str(guild_id), "userId": snowflake_str(user_id)})
        self.invalidate()
        return result.deleted_count > 0

    @storage_operation()
    async def get_by_guild(self, guild_id: SnowflakeLike) -> List[UserExperience]:
        return await self.find_records(UserExperience, {"guildId": snowflake_str(guild_id)})

    @storage_operation()
    async def get_all(self) -> List[UserExperience]:
        return await self.find_records(UserExperience, {})

    @storage_operation()
    async def get_leaderboard(self, guild_id: SnowflakeLike, limit: int = 10) -> List[UserExperience]:
        guild_id = snowflake_str(guild_id)

        async def load() -> List[UserExperience]:
            return await self.find_records(
                UserExperience,
                {"guildId": guild_id},
                sort=[("totalXP", DESCENDING), ("level", DESCENDING)],
                limit=limit,
            )

        return await self.cached_query(self.query_key("leaderboard", guild_id=guild_id, limit=limit), load)

    @storage_operation()
    async def get_user_rank(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> int:
        """1-based rank by total XP, or 0 if the member has no record."""
        guild_id, user_id = snowflake_str(guild_id), snowflake_str(user_id)

        async def load() -> int:
            document = await self.collection.find_one({"guildId": guild_id, "userId": user_id})
            if document is None:
                return 0
            ahead = await self.collection.count_documents(
                {"guildId": guild_id, "totalXP": {"$gt": document.get("totalXP") or 0}}
            )
            return ahead + 1

        return await self.cached_query(self.query_key("rank", guild_id=guild_id, user_id=user_id), load)


class FileUserExperienceRepo(FileRepo[UserExperience]):
    collection_name = COLLECTION

    @staticmethod
    def _key(guild_id: str, user_id: str) -> str:
        return f"{guild_id}_{user_id}"

    async def _guild_records(self, guild_id: str) -> List[UserExperience]:
        data = await self.read()
        return [UserExperience.from_document(value) for value in data.values() if value.get("guildId") == guild_id]

    async def get_by_user(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> UserExperience:
        guild_id, user_id = snowflake_str(guild_id), snowflake_str(user_id)
        value = (await self.read()).get(self._key(guild_id, user_id))
        if not value:
            return UserExperience(guild_id=guild_id, user_id=user_id)
        return UserExperience.from_document(value)

    async def set(self, guild_id: SnowflakeLike, user_id: SnowflakeLike, changes: Mapping[str, Any]) -> None:
        guild_id, user_id = snowflake_str(guild_id), snowflake_str(user_id)
        key = self._key(guild_id, user_id)
        async with self.transaction() as data:
            current = UserExperience.from_document(data[key]) if data.get(key) else None
            data[key] = _merge(guild_id, user_id, changes, current).to_json_dict()

    async def delete(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> bool:
        key = self._key(snowflake_str(guild_id), snowflake_str(user_id))
        async with self.transaction() as data:
            return data.pop(key, None) is not None

    async def get_by_guild(self, guild_id: SnowflakeLike) -> List[UserExperience]:
        return await self._guild_records(snowflake_str(guild_id))

    async def get_all(self) -> List[UserExperience]:
        return [UserExperience.from_document(value) for value in (await self.read()).values()]

    async def get_leaderboard(self, guild_id: SnowflakeLike, limit: int = 10) -> List[UserExperience]:
        records = await self._guild_records(snowflake_str(guild_id))
        records.sort(key=_rank_order, reverse=True)
        return records[:limit]

    async def get_user_rank(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> int:
        user_id = snowflake_str(user_id)
        records = await self._guild_records(snowflake_str(guild_id))
        target = next((record for record in records if record.user_id == user_id), None)
        if target is None:
            return 0
        return 1 + sum(1 for record in records if (record.total_xp or 0) > (target.total_xp or 0))
