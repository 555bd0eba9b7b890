"""
Polls (``polls``), unique on ``id``.

``create`` treats a duplicate id as "already exists" and returns False rather
than raising. Ended polls are purged 24 hours after they close.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

from pymongo.errors import DuplicateKeyError

from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.poll_datatypes import Poll
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

COLLECTION = "polls"
ENDED_POLL_RETENTION = timedelta(hours=24)


class PollRepo(BaseRepo):
    collection_name = COLLECTION

    async def _load_map(self, query: Dict[str, Any]) -> Dict[str, Poll]:
        return {poll.id: poll for poll in await self.find_records(Poll, query)}

    async def _load_one(self, query: Dict[str, Any]) -> Optional[Poll]:
        document = await self.collection.find_one(query)
        return Poll.from_document(document) if document else None

    @storage_operation()
    async def get_all(self) -> Dict[str, Poll]:
        return await self.read_through(self.key("all"), lambda: self._load_map({}))

    @storage_operation()
    async def get_by_id(self, poll_id: str) -> Optional[Poll]:
        return await self.read_through(self.key("id", poll_id), lambda: self._load_one({"id": poll_id}))

    @storage_operation()
    async def get_by_guild(self, guild_id: SnowflakeLike) -> Dict[str, Poll]:
        guild_id = snowflake_str(guild_id)
        return await self.read_through(self.key("guild", guild_id), lambda: self._load_map({"guildId": guild_id}))

    @storage_operation()
    async def get_by_message_id(self, message_id: SnowflakeLike) -> Optional[Poll]:
        message_id = snowflake_str(message_id)
        return await self.read_through(self.key("message", message_id), lambda: self._load_one({"messageId": message_id}))

    @storage_operation(write=True)
    async def create(self, poll: Poll) -> bool:
        """Insert a new poll. Returns False if a poll with the same id already exists."""
        now = now_utc()
        poll.created_at = poll.created_at or now
        poll.updated_at = now
        try:
            await self.collection.insert_one(poll.to_document())
        except DuplicateKeyError:
            self.logger.warning("[REPOSITORY] Poll %s already exists", poll.id)
            return False
        self.invalidate()
        return True

    @storage_operation(write=True)
    async def update(self, poll_id: str, changes: Mapping[str, Any]) -> bool:
        fields = Poll.document_fields(changes)
        fields["updatedAt"] = now_utc()
        result = await self.collection.update_one({"id": poll_id}, {"$set": fields})
        self.invalidate()
        return result.matched_count > 0

    @storage_operation(write=True)
    async def delete(self, poll_id: str) -> bool:
        result = await self.collection.delete_one({"id": poll_id})
        self.invalidate()
        return result.deleted_count > 0

    @storage_operation(write=True)
    async def cleanup_ended_polls(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or now_utc()) - ENDED_POLL_RETENTION
        result = await self.collection.delete_many({"isActive": False, "endedAt": {"$lt": cutoff}})
        if result.deleted_count:
            self.invalidate()
            self.logger.info("[REPOSITORY] Cleaned up %d ended polls", result.deleted_count)
        return result.deleted_count


class FilePollRepo(FileRepo[Poll]):
    collection_name = COLLECTION

    async def get_all(self) -> Dict[str, Poll]:
        return {poll_id: Poll.from_document(value) for poll_id, value in (await self.read()).items()}

    async def get_by_id(self, poll_id: str) -> Optional[Poll]:
        value = (await self.read()).get(poll_id)
        return Poll.from_document(value) if value else None

    async def get_by_guild(self, guild_id: SnowflakeLike) -> Dict[str, Poll]:
        guild_id = snowflake_str(guild_id)
        return {poll_id: poll for poll_id, poll in (await self.get_all()).items() if poll.guild_id == guild_id}

    async def get_by_message_id(self, message_id: SnowflakeLike) -> Optional[Poll]:
        message_id = snowflake_str(message_id)
        return next((poll for poll in (await self.get_all()).values() if poll.message_id == message_id), None)

    async def create(self, poll: Poll) -> bool:
        now = now_utc()
        poll.created_at = poll.created_at or now
        poll.updated_at = now
        async with self.transaction() as data:
            if poll.id in data:
                return False
            data[poll.id] = poll.to_json_dict()
        return True

    async def update(self, poll_id: str, changes: Mapping[str, Any]) -> bool:
        fields = Poll.document_fields(changes, for_json=True)
        async with self.transaction() as data:
            if poll_id not in data:
                return False
            data[poll_id] = {**data[poll_id], **fields, "updatedAt": now_utc().isoformat()}
        return True

    async def delete(self, poll_id: str) -> bool:
        async with self.transaction() as data:
            return data.pop(poll_id, None) is not None

    async def cleanup_ended_polls(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or now_utc()) - ENDED_POLL_RETENTION
        async with self.transaction() as data:
            doomed = []
            for poll_id, value in data.items():
                poll = Poll.from_document(value)
                if not poll.is_active and poll.ended_at and poll.ended_at < cutoff:
                    doomed.append(poll_id)
            for poll_id in doomed:
                del data[poll_id]
        return len(doomed)
