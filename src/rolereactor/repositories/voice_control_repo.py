"""Roles that disconnect, mute, deafen or move members in voice (``voice_control_roles``)."""

from __future__ import annotations

from typing import Any, Dict

from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.role_datatypes import VoiceControlRoles
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

COLLECTION = "voice_control_roles"


class VoiceControlRepo(BaseRepo):
    collection_name = COLLECTION

    @storage_operation()
    async def get_by_guild(self, guild_id: SnowflakeLike) -> VoiceControlRoles:
        guild_id = snowflake_str(guild_id)

        async def load() -> VoiceControlRoles:
            document = await self.collection.find_one({"guildId": guild_id})
            return VoiceControlRoles.from_document(document) if document else VoiceControlRoles(guild_id=guild_id)

        return await self.read_through(self.key(guild_id), load)

    async def _add_to_set(self, field: str, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        guild_id = snowflake_str(guild_id)
        await self.collection.update_one(
            {"guildId": guild_id},
            {"$addToSet": {field: snowflake_str(role_id)}, "$set": {"guildId": guild_id, "updatedAt": now_utc()}},
            upsert=True,
        )
        self.cache.delete(self.key(guild_id))
        return True

    async def _pull(self, field: str, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        guild_id = snowflake_str(guild_id)
        await self.collection.update_one(
            {"guildId": guild_id},
            {"$pull": {field: snowflake_str(role_id)}, "$set": {"updatedAt": now_utc()}},
        )
        self.cache.delete(self.key(guild_id))
        return True

    @storage_operation(write=True)
    async def add_disconnect_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._add_to_set("disconnectRoleIds", guild_id, role_id)

    @storage_operation(write=True)
    async def remove_disconnect_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._pull("disconnectRoleIds", guild_id, role_id)

    @storage_operation(write=True)
    async def add_mute_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._add_to_set("muteRoleIds", guild_id, role_id)

    @storage_operation(write=True)
    async def remove_mute_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._pull("muteRoleIds", guild_id, role_id)

    @storage_operation(write=True)
    async def add_deafen_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._add_to_set("deafenRoleIds", guild_id, role_id)

    @storage_operation(write=True)
    async def remove_deafen_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._pull("deafenRoleIds", guild_id, role_id)

    @storage_operation(write=True)
    async def add_move_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike, channel_id: SnowflakeLike) -> bool:
        guild_id = snowflake_str(guild_id)
        await self.collection.update_one(
            {"guildId": guild_id},
            {"$set": {f"moveRoleMappings.{snowflake_str(role_id)}": snowflake_str(channel_id), "guildId": guild_id, "updatedAt": now_utc()}},
            upsert=True,
        )
        self.cache.delete(self.key(guild_id))
        return True

    @storage_operation(write=True)
    async def remove_move_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        guild_id = snowflake_str(guild_id)
        await self.collection.update_one(
            {"guildId": guild_id},
            {"$unset": {f"moveRoleMappings.{snowflake_str(role_id)}": ""}, "$set": {"updatedAt": now_utc()}},
        )
        self.cache.delete(self.key(guild_id))
        return True


class FileVoiceControlRepo(FileRepo[VoiceControlRoles]):
    collection_name = COLLECTION

    @staticmethod
    def _entry(data: Dict[str, Any], guild_id: str) -> Dict[str, Any]:
        entry = data.setdefault(guild_id, {})
        entry.setdefault("guildId", guild_id)
        for field in ("disconnectRoleIds", "muteRoleIds", "deafenRoleIds"):
            entry.setdefault(field, [])
        entry.setdefault("moveRoleMappings", {})
        entry["updatedAt"] = now_utc().isoformat()
        return entry

    async def get_by_guild(self, guild_id: SnowflakeLike) -> VoiceControlRoles:
        guild_id = snowflake_str(guild_id)
        value = (await self.read()).get(guild_id)
        return VoiceControlRoles.from_document(value) if value else VoiceControlRoles(guild_id=guild_id)

    async def _add_to_set(self, field: str, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        role_id = snowflake_str(role_id)
        async with self.transaction() as data:
            roles = self._entry(data, snowflake_str(guild_id))[field]
            if role_id not in roles:
                roles.append(role_id)
        return True

    async def _pull(self, field: str, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        guild_id, role_id = snowflake_str(guild_id), snowflake_str(role_id)
        async with self.transaction() as data:
            if guild_id in data:
                entry = self._entry(data, guild_id)
                entry[field] = [existing for existing in entry[field] if existing != role_id]
        return True

    async def add_disconnect_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._add_to_set("disconnectRoleIds", guild_id, role_id)

    async def remove_disconnect_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._pull("disconnectRoleIds", guild_id, role_id)

    async def add_mute_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._add_to_set("muteRoleIds", guild_id, role_id)

    async def remove_mute_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._pull("muteRoleIds", guild_id, role_id)

    async def add_deafen_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._add_to_set("deafenRoleIds", guild_id, role_id)

    async def remove_deafen_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        return await self._pull("deafenRoleIds", guild_id, role_id)

    async def add_move_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike, channel_id: SnowflakeLike) -> bool:
        async with self.transaction() as data:
            entry = self._entry(data, snowflake_str(guild_id))
            entry["moveRoleMappings"][snowflake_str(role_id)] = snowflake_str(channel_id)
        return True

    async def remove_move_role(self, guild_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        guild_id = snowflake_str(guild_id)
        async with self.transaction() as data:
            if guild_id in data:
                self._entry(data, guild_id)["moveRoleMappings"].pop(snowflake_str(role_id), None)
        return True
