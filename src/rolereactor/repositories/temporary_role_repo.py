"""
Temporary role grants and supporter roles (``temporary_roles``).

Grants are stored one document per (guild, user, role), or one document with
a ``userIds`` array for bulk grants. Supporter assignments share the
collection, tagged ``type="supporter"``.

The file mirror nests grants as ``guild -> user -> role -> {expiresAt,
notifyExpiry}`` and keeps supporters in a separate ``supporter_roles`` file.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.document import parse_datetime
from rolereactor.datatypes.role_datatypes import SUPPORTER_TYPE, SupporterRole, TemporaryRole
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

COLLECTION = "temporary_roles"
SUPPORTERS_FILE = "supporter_roles"

# guild id -> user id -> role id -> grant
TemporaryRoleIndex = Dict[str, Dict[str, Dict[str, TemporaryRole]]]

_NOT_SUPPORTER = {"type": {"$ne": SUPPORTER_TYPE}}


def _index_grants(grants: Iterable[TemporaryRole]) -> TemporaryRoleIndex:
    index: TemporaryRoleIndex = {}
    for grant in grants:
        for user_id in grant.members():
            index.setdefault(grant.guild_id, {}).setdefault(user_id, {})[grant.role_id] = TemporaryRole(
                guild_id=grant.guild_id,
                role_id=grant.role_id,
                expires_at=grant.expires_at,
                user_id=user_id,
                notify_expiry=grant.notify_expiry,
                updated_at=grant.updated_at,
            )
    return index


def _has_expired(grant: TemporaryRole, cutoff: datetime) -> bool:
    # Entries without an expiry never expire, matching the $lte query on MongoDB.
    return grant.expires_at is not None and grant.expires_at <= cutoff


class TemporaryRoleRepo(BaseRepo):
    collection_name = COLLECTION

    @storage_operation()
    async def get_all(self) -> TemporaryRoleIndex:
        async def load() -> TemporaryRoleIndex:
            return _index_grants(await self.find_records(TemporaryRole, dict(_NOT_SUPPORTER)))

        return await self.read_through(self.key("all"), load)

    @storage_operation(write=True)
    async def add(
        self,
        guild_id: SnowflakeLike,
        user_id: SnowflakeLike,
        role_id: SnowflakeLike,
        expires_at: datetime,
        notify_expiry: bool = False,
    ) -> None:
        await self.collection.update_one(
            {"guildId": snowflake_str(guild_id), "userId": snowflake_str(user_id), "roleId": snowflake_str(role_id)},
            {"$set": {"expiresAt": parse_datetime(expires_at), "notifyExpiry": notify_expiry, "updatedAt": now_utc()}},
            upsert=True,
        )
        self.invalidate()

    @storage_operation(write=True)
    async def add_multiple(
        self,
        guild_id: SnowflakeLike,
        user_ids: Iterable[SnowflakeLike],
        role_id: SnowflakeLike,
        expires_at: datetime,
        notify_expiry: bool = False,
    ) -> None:
        now = now_utc()
        grant = TemporaryRole(
            guild_id=snowflake_str(guild_id),
            role_id=snowflake_str(role_id),
            expires_at=parse_datetime(expires_at),
            user_ids=[snowflake_str(user_id) for user_id in user_ids],
            notify_expiry=notify_expiry,
            updated_at=now,
        )
        document = {key: value for key, value in grant.to_document().items() if value is not None}
        document["createdAt"] = now
        await self.collection.insert_one(document)
        self.invalidate()

    @storage_operation()
    async def find_expired(self, now: Optional[datetime] = None) -> List[TemporaryRole]:
        query = {"expiresAt": {"$lte": now or now_utc()}, **_NOT_SUPPORTER}
        return await self.find_records(TemporaryRole, query)

    @storage_operation(write=True)
    async def delete(self, guild_id: SnowflakeLike, user_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        guild_id, user_id, role_id = snowflake_str(guild_id), snowflake_str(user_id), snowflake_str(role_id)
        result = await self.collection.delete_one(
            {"guildId": guild_id, "userId": user_id, "roleId": role_id, **_NOT_SUPPORTER}
        )
        removed = result.deleted_count > 0
        if not removed:
            # Bulk grant: drop the user from the array, then the document once it is empty
            pulled = await self.collection.update_many(
                {"guildId": guild_id, "roleId": role_id, "userIds": user_id},
                {"$pull": {"userIds": user_id}},
            )
            removed = pulled.modified_count > 0
            if removed:
                await self.collection.delete_many({"guildId": guild_id, "roleId": role_id, "userIds": {"$size": 0}})
        self.invalidate()
        return removed

    @storage_operation(write=True)
    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        result = await self.collection.delete_many({"expiresAt": {"$lte": now or now_utc()}, **_NOT_SUPPORTER})
        if result.deleted_count:
            self.invalidate()
            self.logger.info("[REPOSITORY] Removed %d expired temporary roles", result.deleted_count)
        return result.deleted_count

    # ------------------------------------------------------------------
    # Supporters
    # ------------------------------------------------------------------

    @storage_operation(write=True)
    async def add_supporter(
        self,
        guild_id: SnowflakeLike,
        user_id: SnowflakeLike,
        role_id: SnowflakeLike,
        assigned_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> bool:
        await self.collection.update_one(
            {
                "guildId": snowflake_str(guild_id),
                "userId": snowflake_str(user_id),
                "roleId": snowflake_str(role_id),
                "type": SUPPORTER_TYPE,
            },
            {"$set": {"assignedAt": parse_datetime(assigned_at) or now_utc(), "reason": reason, "isActive": True, "updatedAt": now_utc()}},
            upsert=True,
        )
        self.invalidate()
        return True

    @storage_operation(write=True)
    async def remove_supporter(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> bool:
        result = await self.collection.delete_one(
            {"guildId": snowflake_str(guild_id), "userId": snowflake_str(user_id), "type": SUPPORTER_TYPE}
        )
        if result.deleted_count:
            self.invalidate()
        return result.deleted_count > 0

    @storage_operation()
    async def get_supporters(self, guild_id: SnowflakeLike) -> List[SupporterRole]:
        return await self.find_records(SupporterRole, {"guildId": snowflake_str(guild_id), "type": SUPPORTER_TYPE})


class FileTemporaryRoleRepo(FileRepo[TemporaryRole]):
    collection_name = COLLECTION

    @staticmethod
    def _grant(guild_id: str, user_id: str, role_id: str, entry: Dict[str, Any]) -> TemporaryRole:
        return TemporaryRole(
            guild_id=guild_id,
            role_id=role_id,
            user_id=user_id,
            expires_at=parse_datetime(entry.get("expiresAt")),
            notify_expiry=bool(entry.get("notifyExpiry", False)),
        )

    def _iter_grants(self, data: Dict[str, Any]) -> Iterable[TemporaryRole]:
        for guild_id, users in data.items():
            for user_id, roles in users.items():
                for role_id, entry in roles.items():
                    yield self._grant(guild_id, user_id, role_id, entry)

    @staticmethod
    def _prune(data: Dict[str, Any], guild_id: str, user_id: str) -> None:
        if not data.get(guild_id, {}).get(user_id):
            data.get(guild_id, {}).pop(user_id, None)
        if not data.get(guild_id):
            data.pop(guild_id, None)

    async def get_all(self) -> TemporaryRoleIndex:
        return _index_grants(self._iter_grants(await self.read()))

    async def add(
        self,
        guild_id: SnowflakeLike,
        user_id: SnowflakeLike,
        role_id: SnowflakeLike,
        expires_at: datetime,
        notify_expiry: bool = False,
    ) -> None:
        await self.add_multiple(guild_id, [user_id], role_id, expires_at, notify_expiry)

    async def add_multiple(
        self,
        guild_id: SnowflakeLike,
        user_ids: Iterable[SnowflakeLike],
        role_id: SnowflakeLike,
        expires_at: datetime,
        notify_expiry: bool = False,
    ) -> None:
        guild_id, role_id = snowflake_str(guild_id), snowflake_str(role_id)
        entry = {"expiresAt": parse_datetime(expires_at).isoformat(), "notifyExpiry": notify_expiry}
        async with self.transaction() as data:
            for user_id in user_ids:
                data.setdefault(guild_id, {}).setdefault(snowflake_str(user_id), {})[role_id] = dict(entry)

    async def find_expired(self, now: Optional[datetime] = None) -> List[TemporaryRole]:
        cutoff = now or now_utc()
        return [grant for grant in self._iter_grants(await self.read()) if _has_expired(grant, cutoff)]

    async def delete(self, guild_id: SnowflakeLike, user_id: SnowflakeLike, role_id: SnowflakeLike) -> bool:
        guild_id, user_id, role_id = snowflake_str(guild_id), snowflake_str(user_id), snowflake_str(role_id)
        async with self.transaction() as data:
            roles = data.get(guild_id, {}).get(user_id, {})
            removed = roles.pop(role_id, None) is not None
            self._prune(data, guild_id, user_id)
        return removed

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = now or now_utc()
        removed = 0
        async with self.transaction() as data:
            for grant in list(self._iter_grants(data)):
                if _has_expired(grant, cutoff):
                    del data[grant.guild_id][grant.user_id][grant.role_id]
                    self._prune(data, grant.guild_id, grant.user_id)
                    removed += 1
        return removed

    async def add_supporter(
        self,
        guild_id: SnowflakeLike,
        user_id: SnowflakeLike,
        role_id: SnowflakeLike,
        assigned_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> bool:
        record = SupporterRole(
            guild_id=snowflake_str(guild_id),
            user_id=snowflake_str(user_id),
            role_id=snowflake_str(role_id),
            assigned_at=parse_datetime(assigned_at) or now_utc(),
            reason=reason,
        )
        async with self.store.transaction(SUPPORTERS_FILE) as data:
            data.setdefault(record.guild_id, {})[record.user_id] = record.to_json_dict()
        return True

    async def remove_supporter(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> bool:
        guild_id, user_id = snowflake_str(guild_id), snowflake_str(user_id)
        async with self.store.transaction(SUPPORTERS_FILE) as data:
            removed = data.get(guild_id, {}).pop(user_id, None) is not None
            if guild_id in data and not data[guild_id]:
                del data[guild_id]
        return removed

    async def get_supporters(self, guild_id: SnowflakeLike) -> List[SupporterRole]:
        data = await self.store.read(SUPPORTERS_FILE)
        return [SupporterRole.from_document(entry) for entry in data.get(snowflake_str(guild_id), {}).values()]
