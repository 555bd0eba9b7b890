"""
Reaction-role message mappings (``role_mappings``).

One document per message, unique on ``messageId``. The file mirror stores
``{messageId: mapping}``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING

from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.role_datatypes import Pagination, RoleMapping, RoleMappingPage
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

COLLECTION = "role_mappings"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _page_bounds(page: int, limit: int) -> tuple[int, int]:
    page = max(1, int(page))
    limit = max(1, int(limit))
    return page, limit


class RoleMappingRepo(BaseRepo):
    collection_name = COLLECTION

    @storage_operation()
    async def get_all(self) -> Dict[str, RoleMapping]:
        async def load() -> Dict[str, RoleMapping]:
            records = await self.find_records(RoleMapping, {})
            return {record.message_id: record for record in records}

        return await self.read_through(self.key("all"), load)

    @storage_operation()
    async def get(self, message_id: SnowflakeLike) -> Optional[RoleMapping]:
        message_id = snowflake_str(message_id)

        async def load() -> Optional[RoleMapping]:
            document = await self.collection.find_one({"messageId": message_id})
            return RoleMapping.from_document(document) if document else None

        return await self.read_through(self.key(message_id), load)

    @storage_operation()
    async def get_by_guild_paginated(self, guild_id: SnowflakeLike, page: int = 1, limit: int = 4) -> RoleMappingPage:
        guild_id = snowflake_str(guild_id)
        page, limit = _page_bounds(page, limit)

        async def load() -> RoleMappingPage:
            query = {"guildId": guild_id}
            total = await self.collection.count_documents(query)
            records = await self.find_records(
                RoleMapping,
                query,
                sort=[("updatedAt", DESCENDING), ("messageId", DESCENDING)],
                skip=(page - 1) * limit,
                limit=limit,
            )
            return RoleMappingPage(
                mappings={record.message_id: record for record in records},
                pagination=Pagination.build(page, limit, total),
            )

        key = self.query_key("guild_page", guild_id=guild_id, page=page, limit=limit)
        return await self.cached_query(key, load)

    @storage_operation(write=True)
    async def set(
        self,
        message_id: SnowflakeLike,
        guild_id: SnowflakeLike,
        channel_id: SnowflakeLike,
        roles: List[Dict[str, Any]],
    ) -> None:
        record = RoleMapping(
            message_id=snowflake_str(message_id),
            guild_id=snowflake_str(guild_id),
            channel_id=snowflake_str(channel_id),
            roles=list(roles),
            updated_at=now_utc(),
        )
        await self.collection.update_one(
            {"messageId": record.message_id},
            {"$set": record.to_document()},
            upsert=True,
        )
        self.invalidate()

    @storage_operation(write=True)
    async def delete(self, message_id: SnowflakeLike) -> bool:
        result = await self.collection.delete_one({"messageId": snowflake_str(message_id)})
        self.invalidate()
        return result.deleted_count > 0


class FileRoleMappingRepo(FileRepo[RoleMapping]):
    collection_name = COLLECTION

    @staticmethod
    def _record(message_id: str, data: Dict[str, Any]) -> RoleMapping:
        return RoleMapping.from_document({**data, "messageId": message_id})

    async def get_all(self) -> Dict[str, RoleMapping]:
        data = await self.read()
        return {message_id: self._record(message_id, value) for message_id, value in data.items()}

    async def get(self, message_id: SnowflakeLike) -> Optional[RoleMapping]:
        message_id = snowflake_str(message_id)
        value = (await self.read()).get(message_id)
        return self._record(message_id, value) if value else None

    async def get_by_guild_paginated(self, guild_id: SnowflakeLike, page: int = 1, limit: int = 4) -> RoleMappingPage:
        guild_id = snowflake_str(guild_id)
        page, limit = _page_bounds(page, limit)
        records = [record for record in (await self.get_all()).values() if record.guild_id == guild_id]
        records.sort(key=lambda record: (record.updated_at or _EPOCH, record.message_id), reverse=True)
        start = (page - 1) * limit
        return RoleMappingPage(
            mappings={record.message_id: record for record in records[start:start + limit]},
            pagination=Pagination.build(page, limit, len(records)),
        )

    async def set(
        self,
        message_id: SnowflakeLike,
        guild_id: SnowflakeLike,
        channel_id: SnowflakeLike,
        roles: List[Dict[str, Any]],
    ) -> None:
        record = RoleMapping(
            message_id=snowflake_str(message_id),
            guild_id=snowflake_str(guild_id),
            channel_id=snowflake_str(channel_id),
            roles=list(roles),
            updated_at=now_utc(),
        )
        async with self.transaction() as data:
            data[record.message_id] = record.to_json_dict()

    async def delete(self, message_id: SnowflakeLike) -> bool:
        message_id = snowflake_str(message_id)
        async with self.transaction() as data:
            return data.pop(message_id, None) is not None
