"""
Core credit balances (``core_credits``, unique on ``userId``).

``set`` replaces the whole balance record; ``update`` applies a signed change
atomically with ``$inc`` so concurrent top-ups and spends never lose each
other. The file mirror stores ``{userId: balance}``.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from rolereactor.datatypes.credit_datatypes import CoreCredits
from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

COLLECTION = "core_credits"


class CoreCreditsRepo(BaseRepo):
    collection_name = COLLECTION

    @storage_operation()
    async def get_all(self) -> Dict[str, CoreCredits]:
        async def load() -> Dict[str, CoreCredits]:
            records = await self.find_records(CoreCredits, {})
            return {record.user_id: record for record in records}

        return await self.read_through(self.key("all"), load)

    @storage_operation()
    async def get(self, user_id: SnowflakeLike) -> Optional[CoreCredits]:
        user_id = snowflake_str(user_id)

        async def load() -> Optional[CoreCredits]:
            document = await self.collection.find_one({"userId": user_id})
            return CoreCredits.from_document(document) if document else None

        return await self.read_through(self.key(user_id), load)

    @storage_operation(write=True)
    async def set(self, user_id: SnowflakeLike, balance: Mapping[str, Any]) -> bool:
        """Replace the user's balance record with ``balance`` (attribute or document keys)."""
        user_id = snowflake_str(user_id)
        document = CoreCredits.document_fields(balance)
        document["userId"] = user_id
        result = await self.collection.replace_one({"userId": user_id}, document, upsert=True)
        self.invalidate()
        return bool(result.acknowledged)

    @storage_operation(write=True)
    async def update(self, user_id: SnowflakeLike, change: float) -> bool:
        """Add ``change`` (negative to spend) to the balance, creating the record if needed."""
        user_id = snowflake_str(user_id)
        result = await self.collection.update_one(
            {"userId": user_id},
            {"$inc": {"credits": change}, "$set": {"lastUpdated": now_utc()}},
            upsert=True,
        )
        self.invalidate()
        return bool(result.acknowledged)

    @storage_operation(write=True)
    async def delete(self, user_id: SnowflakeLike) -> bool:
        result = await self.collection.delete_one({"userId": snowflake_str(user_id)})
        self.invalidate()
        return result.deleted_count > 0


class FileCoreCreditsRepo(FileRepo[CoreCredits]):
    collection_name = COLLECTION

    async def get_all(self) -> Dict[str, CoreCredits]:
        return {
            user_id: CoreCredits.from_document({**value, "userId": user_id})
            for user_id, value in (await self.read()).items()
        }

    async def get(self, user_id: SnowflakeLike) -> Optional[CoreCredits]:
        user_id = snowflake_str(user_id)
        value = (await self.read()).get(user_id)
        return CoreCredits.from_document({**value, "userId": user_id}) if value else None

    async def set(self, user_id: SnowflakeLike, balance: Mapping[str, Any]) -> bool:
        user_id = snowflake_str(user_id)
        document = CoreCredits.document_fields(balance, for_json=True)
        async with self.transaction() as data:
            data[user_id] = {**document, "userId": user_id}
        return True

    async def update(self, user_id: SnowflakeLike, change: float) -> bool:
        user_id = snowflake_str(user_id)
        async with self.transaction() as data:
            entry = data.setdefault(user_id, {"userId": user_id, "credits": 0})
            entry["credits"] = entry.get("credits", 0) + change
            entry["lastUpdated"] = now_utc().isoformat()
        return True

    async def delete(self, user_id: SnowflakeLike) -> bool:
        async with self.transaction() as data:
            return data.pop(snowflake_str(user_id), None) is not None
