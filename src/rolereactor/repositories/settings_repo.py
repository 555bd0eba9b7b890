"""
Per-guild settings documents: ``welcome_settings``, ``goodbye_settings`` and
``guild_settings``, each unique on ``guildId``.

Reads fall back to a default record for unconfigured guilds. Writes are
write-through: the stored document returned by the upsert replaces the cached
entry. The file mirrors store ``{guildId: settings}``.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Generic, List, Mapping, Type, TypeVar

from pymongo import ReturnDocument

from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.document import DocumentMixin
from rolereactor.datatypes.guild_datatypes import GoodbyeSettings, GuildSettings, WelcomeSettings
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

S = TypeVar("S", bound=DocumentMixin)


class GuildScopedSettingsRepo(BaseRepo, Generic[S]):
    """One settings document per guild."""

    record_type: ClassVar[Type[DocumentMixin]]

    def default(self, guild_id: str) -> S:
        return self.record_type(guild_id=guild_id)  # type: ignore[call-arg, return-value]

    @storage_operation()
    async def get_by_guild(self, guild_id: SnowflakeLike) -> S:
        guild_id = snowflake_str(guild_id)

        async def load() -> S:
            document = await self.collection.find_one({"guildId": guild_id})
            if document is None:
                return self.default(guild_id)
            return self.record_type.from_document(document)  # type: ignore[return-value]

        return await self.read_through(self.key(guild_id), load)

    @storage_operation(write=True)
    async def set(self, guild_id: SnowflakeLike, settings: Mapping[str, Any]) -> S:
        """Upsert the given fields (attribute names) and return the stored record."""
        guild_id = snowflake_str(guild_id)
        fields = self.record_type.document_fields(settings)
        fields.update({"guildId": guild_id, "updatedAt": now_utc()})
        document = await self.collection.find_one_and_update(
            {"guildId": guild_id},
            {"$set": fields},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        record = self.record_type.from_document(document or fields)
        self.remember(self.key(guild_id), record)
        return record  # type: ignore[return-value]

    @storage_operation(write=True)
    async def delete(self, guild_id: SnowflakeLike) -> bool:
        guild_id = snowflake_str(guild_id)
        result = await self.collection.delete_one({"guildId": guild_id})
        self.cache.delete(self.key(guild_id))
        return result.deleted_count > 0


class FileGuildScopedSettingsRepo(FileRepo[S]):
    record_type: ClassVar[Type[DocumentMixin]]

    async def get_by_guild(self, guild_id: SnowflakeLike) -> S:
        guild_id = snowflake_str(guild_id)
        value = (await self.read()).get(guild_id)
        if not value:
            return self.record_type(guild_id=guild_id)  # type: ignore[call-arg, return-value]
        return self.record_type.from_document({**value, "guildId": guild_id})  # type: ignore[return-value]

    async def set(self, guild_id: SnowflakeLike, settings: Mapping[str, Any]) -> S:
        guild_id = snowflake_str(guild_id)
        fields = self.record_type.document_fields(settings, for_json=True)
        async with self.transaction() as data:
            current = data.get(guild_id) or {}
            merged = {**current, **fields, "guildId": guild_id, "updatedAt": now_utc().isoformat()}
            data[guild_id] = merged
        return self.record_type.from_document(merged)  # type: ignore[return-value]

    async def delete(self, guild_id: SnowflakeLike) -> bool:
        guild_id = snowflake_str(guild_id)
        async with self.transaction() as data:
            return data.pop(guild_id, None) is not None


# ----------------------------------------------------------------------
# Welcome / goodbye
# ----------------------------------------------------------------------


class WelcomeSettingsRepo(GuildScopedSettingsRepo[WelcomeSettings]):
    collection_name = "welcome_settings"
    record_type = WelcomeSettings


class FileWelcomeSettingsRepo(FileGuildScopedSettingsRepo[WelcomeSettings]):
    collection_name = "welcome_settings"
    record_type = WelcomeSettings


class GoodbyeSettingsRepo(GuildScopedSettingsRepo[GoodbyeSettings]):
    collection_name = "goodbye_settings"
    record_type = GoodbyeSettings


class FileGoodbyeSettingsRepo(FileGuildScopedSettingsRepo[GoodbyeSettings]):
    collection_name = "goodbye_settings"
    record_type = GoodbyeSettings


# ----------------------------------------------------------------------
# Guild settings (experience system, disabled commands, supporters)
# ----------------------------------------------------------------------


class GuildSettingsRepo(GuildScopedSettingsRepo[GuildSettings]):
    collection_name = "guild_settings"
    record_type = GuildSettings

    @storage_operation()
    async def get_all_with_experience_enabled(self) -> List[GuildSettings]:
        return await self.find_records(GuildSettings, {"experienceSystem.enabled": True})

    @storage_operation()
    async def get_supporters(self) -> Dict[str, Any]:
        """Supporter data of every guild that has any, keyed by guild id."""
        cursor = self.collection.find({"supporters": {"$exists": True}}, {"guildId": 1, "supporters": 1})
        documents = await cursor.to_list(length=None)
        return {doc["guildId"]: doc["supporters"] for doc in documents if doc.get("supporters")}

    @storage_operation(write=True)
    async def set_supporters(self, supporters: Mapping[str, Any]) -> bool:
        now = now_utc()
        for guild_id, guild_supporters in supporters.items():
            await self.collection.update_one(
                {"guildId": snowflake_str(guild_id)},
                {"$set": {"supporters": guild_supporters, "updatedAt": now}},
                upsert=True,
            )
        self.invalidate()
        return True


class FileGuildSettingsRepo(FileGuildScopedSettingsRepo[GuildSettings]):
    collection_name = "guild_settings"
    record_type = GuildSettings

    async def get_all_with_experience_enabled(self) -> List[GuildSettings]:
        records = [await self.get_by_guild(guild_id) for guild_id in await self.read()]
        return [record for record in records if record.experience_enabled]

    async def get_supporters(self) -> Dict[str, Any]:
        data = await self.read()
        return {guild_id: value["supporters"] for guild_id, value in data.items() if value.get("supporters")}

    async def set_supporters(self, supporters: Mapping[str, Any]) -> bool:
        now = now_utc().isoformat()
        async with self.transaction() as data:
            for guild_id, guild_supporters in supporters.items():
                guild_id = snowflake_str(guild_id)
                entry = data.setdefault(guild_id, {"guildId": guild_id})
                entry["supporters"] = guild_supporters
                entry["updatedAt"] = now
        return True
