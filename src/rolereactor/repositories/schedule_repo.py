"""
One-off (``scheduled_roles``) and recurring (``recurring_schedules``) role
schedules, both unique on ``id``. The file mirrors store ``{id: schedule}``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Dict, Generic, List, Mapping, Optional, Type, TypeVar, Union

from pymongo.errors import DuplicateKeyError

from rolereactor.datatypes.discord_datatypes import SnowflakeLike, now_utc, snowflake_str
from rolereactor.datatypes.schedule_datatypes import RecurringSchedule, ScheduledRole
from rolereactor.repositories.base_repo import BaseRepo, FileRepo, storage_operation

Schedule = TypeVar("Schedule", ScheduledRole, RecurringSchedule)
AnySchedule = Union[ScheduledRole, RecurringSchedule]


class _ScheduleRepo(BaseRepo, Generic[Schedule]):
    record_type: ClassVar[Type[AnySchedule]]

    async def _load_map(self, query: Dict[str, Any]) -> Dict[str, Schedule]:
        return {record.id: record for record in await self.find_records(self.record_type, query)}

    @storage_operation()
    async def get_all(self) -> Dict[str, Schedule]:
        return await self.read_through(self.key("all"), lambda: self._load_map({}))

    @storage_operation()
    async def get_by_id(self, schedule_id: str) -> Optional[Schedule]:
        async def load() -> Optional[Schedule]:
            document = await self.collection.find_one({"id": schedule_id})
            return self.record_type.from_document(document) if document else None

        return await self.read_through(self.key("id", schedule_id), load)

    @storage_operation()
    async def get_by_guild(self, guild_id: SnowflakeLike) -> Dict[str, Schedule]:
        guild_id = snowflake_str(guild_id)
        return await self.read_through(self.key("guild", guild_id), lambda: self._load_map({"guildId": guild_id}))

    @storage_operation(write=True)
    async def create(self, schedule: Schedule) -> bool:
        """Insert a schedule. Returns False if the id is already taken."""
        now = now_utc()
        schedule.created_at = schedule.created_at or now
        schedule.updated_at = now
        try:
            await self.collection.insert_one(schedule.to_document())
        except DuplicateKeyError:
            self.logger.warning("[REPOSITORY] Schedule %s already exists in %s", schedule.id, self.collection_name)
            return False
        self.invalidate()
        return True

    async def _set_fields(self, schedule_id: str, fields: Dict[str, Any]) -> bool:
        fields["updatedAt"] = now_utc()
        result = await self.collection.update_one({"id": schedule_id}, {"$set": fields})
        self.invalidate()
        return result.matched_count > 0

    @storage_operation(write=True)
    async def update(self, schedule_id: str, changes: Mapping[str, Any]) -> bool:
        return await self._set_fields(schedule_id, self.record_type.document_fields(changes))

    @storage_operation(write=True)
    async def delete(self, schedule_id: str) -> bool:
        result = await self.collection.delete_one({"id": schedule_id})
        self.invalidate()
        return result.deleted_count > 0


class _FileScheduleRepo(FileRepo[Schedule]):
    record_type: ClassVar[Type[AnySchedule]]

    async def _records(self) -> Dict[str, Schedule]:
        return {key: self.record_type.from_document(value) for key, value in (await self.read()).items()}

    async def get_all(self) -> Dict[str, Schedule]:
        return await self._records()

    async def get_by_id(self, schedule_id: str) -> Optional[Schedule]:
        return (await self._records()).get(schedule_id)

    async def get_by_guild(self, guild_id: SnowflakeLike) -> Dict[str, Schedule]:
        guild_id = snowflake_str(guild_id)
        return {key: record for key, record in (await self._records()).items() if record.guild_id == guild_id}

    async def create(self, schedule: Schedule) -> bool:
        now = now_utc()
        schedule.created_at = schedule.created_at or now
        schedule.updated_at = now
        async with self.transaction() as data:
            if schedule.id in data:
                return False
            data[schedule.id] = schedule.to_json_dict()
        return True

    async def _set_fields(self, schedule_id: str, fields: Dict[str, Any]) -> bool:
        async with self.transaction() as data:
            if schedule_id not in data:
                return False
            data[schedule_id] = {**data[schedule_id], **fields, "updatedAt": now_utc().isoformat()}
        return True

    async def update(self, schedule_id: str, changes: Mapping[str, Any]) -> bool:
        return await self._set_fields(schedule_id, self.record_type.document_fields(changes, for_json=True))

    async def delete(self, schedule_id: str) -> bool:
        async with self.transaction() as data:
            return data.pop(schedule_id, None) is not None


# ----------------------------------------------------------------------
# One-off schedules
# ----------------------------------------------------------------------


class ScheduledRoleRepo(_ScheduleRepo[ScheduledRole]):
    collection_name = "scheduled_roles"
    record_type = ScheduledRole

    @storage_operation()
    async def find_due(self, now: Optional[datetime] = None) -> List[ScheduledRole]:
        """Pending schedules whose time has come (not executed, not cancelled)."""
        query = {"scheduledAt": {"$lte": now or now_utc()}, "executed": {"$ne": True}, "cancelled": {"$ne": True}}
        return await self.find_records(ScheduledRole, query)

    @storage_operation(write=True)
    async def mark_executed(self, schedule_id: str) -> bool:
        return await self._set_fields(schedule_id, {"executed": True, "executedAt": now_utc()})

    @storage_operation(write=True)
    async def cancel(self, schedule_id: str) -> bool:
        return await self._set_fields(schedule_id, {"cancelled": True, "cancelledAt": now_utc()})


class FileScheduledRoleRepo(_FileScheduleRepo[ScheduledRole]):
    collection_name = "scheduled_roles"
    record_type = ScheduledRole

    async def find_due(self, now: Optional[datetime] = None) -> List[ScheduledRole]:
        cutoff = now or now_utc()
        return [
            record
            for record in (await self._records()).values()
            if record.pending and record.scheduled_at is not None and record.scheduled_at <= cutoff
        ]

    async def mark_executed(self, schedule_id: str) -> bool:
        return await self._set_fields(schedule_id, {"executed": True, "executedAt": now_utc().isoformat()})

    async def cancel(self, schedule_id: str) -> bool:
        return await self._set_fields(schedule_id, {"cancelled": True, "cancelledAt": now_utc().isoformat()})


# ----------------------------------------------------------------------
# Recurring schedules
# ----------------------------------------------------------------------


class RecurringScheduleRepo(_ScheduleRepo[RecurringSchedule]):
    collection_name = "recurring_schedules"
    record_type = RecurringSchedule

    @storage_operation()
    async def find_active(self) -> List[RecurringSchedule]:
        return await self.find_records(RecurringSchedule, {"active": True})


class FileRecurringScheduleRepo(_FileScheduleRepo[RecurringSchedule]):
    collection_name = "recurring_schedules"
    record_type = RecurringSchedule

    async def find_active(self) -> List[RecurringSchedule]:
        return [record for record in (await self._records()).values() if record.active]
