"""Tests for role schedules, guild analytics and command usage."""

from datetime import date, datetime, timedelta, timezone

import pytest
from pymongo.errors import DuplicateKeyError

from rolereactor.datatypes.schedule_datatypes import RecurrenceType, RecurringSchedule, ScheduleAction, ScheduledRole
from rolereactor.repositories.analytics_repo import (
    CommandUsageRepo,
    FileCommandUsageRepo,
    FileGuildAnalyticsRepo,
    GuildAnalyticsRepo,
    day_key,
)
from rolereactor.repositories.schedule_repo import (
    FileRecurringScheduleRepo,
    FileScheduledRoleRepo,
    ScheduledRoleRepo,
)

NOW = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)


# ----------------------------------------------------------------------
# Schedules
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_duplicate_schedule_create_returns_false(connection, cache):
    repo = ScheduledRoleRepo(connection, cache)
    connection.get_collection("scheduled_roles").insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")

    assert await repo.create(ScheduledRole(id="s1", guild_id="G1", role_id="R1", scheduled_at=NOW)) is False


@pytest.mark.asyncio
async def test_scheduled_role_find_due_query(connection, cache):
    repo = ScheduledRoleRepo(connection, cache)
    collection = connection.get_collection("scheduled_roles")

    await repo.find_due(now=NOW)

    collection.find.assert_called_with(
        {"scheduledAt": {"$lte": NOW}, "executed": {"$ne": True}, "cancelled": {"$ne": True}}
    )


@pytest.mark.asyncio
async def test_file_scheduled_roles(file_store):
    repo = FileScheduledRoleRepo(file_store)
    due = ScheduledRole(id="s1", guild_id="G1", role_id="R1", scheduled_at=NOW - timedelta(minutes=5), user_ids=["U1"])
    later = ScheduledRole(
        id="s2", guild_id="G1", role_id="R1", scheduled_at=NOW + timedelta(days=1), action=ScheduleAction.REMOVE
    )
    assert await repo.create(due) is True
    assert await repo.create(later) is True
    assert await repo.create(due) is False

    assert [schedule.id for schedule in await repo.find_due(now=NOW)] == ["s1"]
    assert (await repo.get_by_id("s2")).action is ScheduleAction.REMOVE

    assert await repo.mark_executed("s1") is True
    assert await repo.find_due(now=NOW) == []
    assert (await repo.get_by_id("s1")).executed_at is not None

    assert await repo.cancel("s2") is True
    assert (await repo.get_by_id("s2")).pending is False
    assert await repo.update("s2", {"reason": "moved"}) is True
    assert (await repo.get_by_id("s2")).reason == "moved"
    assert await repo.cancel("missing") is False
    assert set(await repo.get_by_guild("G1")) == {"s1", "s2"}


@pytest.mark.asyncio
async def test_file_recurring_schedules(file_store):
    repo = FileRecurringScheduleRepo(file_store)
    await repo.create(
        RecurringSchedule(
            id="r1",
            guild_id="G1",
            role_id="R1",
            schedule_type=RecurrenceType.WEEKLY,
            schedule_details={"day": 1, "time": "09:00"},
        )
    )
    await repo.create(RecurringSchedule(id="r2", guild_id="G1", role_id="R2", active=False))

    active = await repo.find_active()

    assert [schedule.id for schedule in active] == ["r1"]
    assert active[0].schedule_type is RecurrenceType.WEEKLY
    assert active[0].schedule_details == {"day": 1, "time": "09:00"}
    assert await repo.delete("r2") is True


# ----------------------------------------------------------------------
# Analytics
# ----------------------------------------------------------------------


def test_day_key_normalises_dates():
    assert day_key(NOW) == "2024-06-01"
    assert day_key(date(2024, 6, 1)) == "2024-06-01"
    assert day_key("2024-06-01T23:59:00Z") == "2024-06-01"


@pytest.mark.asyncio
async def test_update_counter_upserts_with_increment(connection, cache):
    repo = GuildAnalyticsRepo(connection, cache)
    collection = connection.get_collection("guild_analytics")

    await repo.update_counter("G1", NOW, "joins")

    query, update = collection.update_one.await_args.args
    assert query == {"guildId": "G1", "date": "2024-06-01"}
    assert update["$inc"] == {"joins": 1}
    assert update["$setOnInsert"] == {"leaves": 0, "members": 0}
    assert collection.update_one.await_args.kwargs == {"upsert": True}


@pytest.mark.asyncio
async def test_update_counter_rejects_unknown_kind(connection, cache):
    repo = GuildAnalyticsRepo(connection, cache)
    with pytest.raises(ValueError):
        await repo.update_counter("G1", NOW, "reactions")


@pytest.mark.asyncio
async def test_file_analytics_history_fills_missing_days(file_store):
    repo = FileGuildAnalyticsRepo(file_store)
    await repo.update_counter("G1", "2024-06-01", "joins")
    await repo.update_counter("G1", "2024-06-01", "joins")
    await repo.update_counter("G1", "2024-06-03", "leaves")

    history = await repo.get_history("G1", "2024-06-01", "2024-06-03")

    assert [(day.date, day.joins, day.leaves) for day in history] == [
        ("2024-06-01", 2, 0),
        ("2024-06-02", 0, 0),
        ("2024-06-03", 0, 1),
    ]
    assert await repo.delete_older_than("2024-06-02") == 1
    assert [day.joins for day in await repo.get_history("G1", "2024-06-01", "2024-06-01")] == [0]


@pytest.mark.asyncio
async def test_command_usage_top_is_cached(connection, cache, query_cache):
    repo = CommandUsageRepo(connection, cache, query_cache=query_cache)
    collection = connection.get_collection("command_usage")
    collection.find.return_value.to_list.return_value = [{"commandName": "poll", "count": 7}]

    top = await repo.get_top(limit=5)
    await repo.get_top(limit=5)

    assert top[0].command_name == "poll"
    assert collection.find.call_count == 1

    await repo.record("poll")
    await repo.get_top(limit=5)
    assert collection.find.call_count == 2


@pytest.mark.asyncio
async def test_file_command_usage(file_store):
    repo = FileCommandUsageRepo(file_store)
    for _ in range(3):
        await repo.record("poll")
    await repo.record("rank")

    top = await repo.get_top(limit=1)

    assert [(usage.command_name, usage.count) for usage in top] == [("poll", 3)]
    assert top[0].last_used is not None
