"""
Moderation case log (``moderation_logs``), unique on ``caseId``.

A case id collision surfaces as ``DuplicateDocumentError``; the caller decides
whether to retry with a fresh id. Warn counts are served from the query cache.

The file mirror nests entries as ``guild -> user -> [entry, ...]`` and keeps
only the newest ``MAX_FILE_ENTRIES_PER_USER`` per member.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from pymongo import DESCENDING

from rolereactor.database.errors import DuplicateDocumentError
from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.moderation_datatypes import ModerationAction, ModerationLogEntry, generate_case_id
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

COLLECTION = "moderation_logs"
MAX_FILE_ENTRIES_PER_USER = 100
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _stamp(entry: ModerationLogEntry) -> ModerationLogEntry:
    entry.guild_id = snowflake_str(entry.guild_id)
    entry.user_id = snowflake_str(entry.user_id)
    entry.moderator_id = snowflake_str(entry.moderator_id)
    entry.timestamp = entry.timestamp or now_utc()
    entry.case_id = entry.case_id or generate_case_id(entry.timestamp)
    return entry


def _newest_first(entries: List[ModerationLogEntry]) -> List[ModerationLogEntry]:
    return sorted(entries, key=lambda entry: entry.timestamp or _EPOCH, reverse=True)


class ModerationLogRepo(BaseRepo):
    collection_name = COLLECTION

    @storage_operation(write=True)
    async def create(self, entry: ModerationLogEntry) -> ModerationLogEntry:
        """
        Record a moderation action, assigning a case id and timestamp if missing.

        Raises:
            DuplicateDocumentError: The case id already exists.
        """
        entry = _stamp(entry)
        await self.collection.insert_one(entry.to_document())
        self.invalidate()
        self.logger.info(
            "[REPOSITORY] Logged %s case %s for user %s in guild %s",
            entry.action.value, entry.case_id, entry.user_id, entry.guild_id,
        )
        return entry

    @storage_operation()
    async def get_by_user(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> List[ModerationLogEntry]:
        return await self.find_records(
            ModerationLogEntry,
            {"guildId": snowflake_str(guild_id), "userId": snowflake_str(user_id)},
            sort=[("timestamp", DESCENDING)],
        )

    @storage_operation()
    async def get_by_guild(self, guild_id: SnowflakeLike) -> List[ModerationLogEntry]:
        return await self.find_records(
            ModerationLogEntry,
            {"guildId": snowflake_str(guild_id)},
            sort=[("timestamp", DESCENDING)],
        )

    @storage_operation()
    async def get_warn_count(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> int:
        guild_id, user_id = snowflake_str(guild_id), snowflake_str(user_id)

        async def load() -> int:
            return await self.collection.count_documents(
                {"guildId": guild_id, "userId": user_id, "action": ModerationAction.WARN.value}
            )

        return await self.cached_query(self.query_key("warn_count", guild_id=guild_id, user_id=user_id), load)

    @storage_operation(write=True)
    async def delete_warning(self, guild_id: SnowflakeLike, user_id: SnowflakeLike, case_id: str) -> bool:
        result = await self.collection.delete_one(
            {
                "guildId": snowflake_str(guild_id),
                "userId": snowflake_str(user_id),
                "caseId": case_id,
                "action": ModerationAction.WARN.value,
            }
        )
        self.invalidate()
        return result.deleted_count > 0


class FileModerationLogRepo(FileRepo[ModerationLogEntry]):
    collection_name = COLLECTION

    @staticmethod
    def _entries(raw: List[Dict[str, Any]]) -> List[ModerationLogEntry]:
        return [ModerationLogEntry.from_document(item) for item in raw]

    async def create(self, entry: ModerationLogEntry) -> ModerationLogEntry:
        entry = _stamp(entry)
        async with self.transaction() as data:
            if any(
                item.get("caseId") == entry.case_id
                for users in data.values()
                for items in users.values()
                for item in items
            ):
                raise DuplicateDocumentError(COLLECTION, entry.case_id)
            items = data.setdefault(entry.guild_id, {}).setdefault(entry.user_id, [])
            items.append(entry.to_json_dict())
            if len(items) > MAX_FILE_ENTRIES_PER_USER:
                del items[:-MAX_FILE_ENTRIES_PER_USER]
        return entry

    async def get_by_user(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> List[ModerationLogEntry]:
        data = await self.read()
        raw = data.get(snowflake_str(guild_id), {}).get(snowflake_str(user_id), [])
        return _newest_first(self._entries(raw))

    async def get_by_guild(self, guild_id: SnowflakeLike) -> List[ModerationLogEntry]:
        data = await self.read()
        entries: List[ModerationLogEntry] = []
        for user_id, raw in data.get(snowflake_str(guild_id), {}).items():
            entries.extend(self._entries([{**item, "userId": user_id} for item in raw]))
        return _newest_first(entries)

    async def get_warn_count(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> int:
        return sum(1 for entry in await self.get_by_user(guild_id, user_id) if entry.is_warning)

    async def delete_warning(self, guild_id: SnowflakeLike, user_id: SnowflakeLike, case_id: str) -> bool:
        guild_id, user_id = snowflake_str(guild_id), snowflake_str(user_id)
        async with self.transaction() as data:
            items = data.get(guild_id, {}).get(user_id)
            if not items:
                return False
            kept = [
                item for item in items
                if not (item.get("action") == ModerationAction.WARN.value and item.get("caseId") == case_id)
            ]
            data[guild_id][user_id] = kept
            return len(kept) < len(items)
