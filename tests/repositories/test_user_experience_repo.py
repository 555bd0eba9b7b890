"""Tests for experience records, leaderboards and ranks."""

import pytest
from pymongo import DESCENDING

from rolereactor.datatypes.guild_datatypes import UserExperience
from rolereactor.repositories.user_experience_repo import FileUserExperienceRepo, UserExperienceRepo


@pytest.fixture()
def repo(connection, cache, query_cache):
    return UserExperienceRepo(connection, cache, query_cache=query_cache)


@pytest.mark.asyncio
async def test_leaderboard_is_served_from_query_cache(repo, connection):
    collection = connection.get_collection("user_experience")
    cursor = collection.find.return_value
    cursor.to_list.return_value = [
        {"guildId": "G1", "userId": "U1", "totalXP": 500, "level": 5},
        {"guildId": "G1", "userId": "U2", "totalXP": 120, "level": 2},
    ]

    first = await repo.get_leaderboard("G1")
    second = await repo.get_leaderboard("G1")

    assert [record.user_id for record in first] == ["U1", "U2"]
    assert first[0].total_xp == 500
    assert second == first
    assert collection.find.call_count == 1
    collection.find.assert_called_with({"guildId": "G1"})
    cursor.sort.assert_called_with([("totalXP", DESCENDING), ("level", DESCENDING)])
    cursor.limit.assert_called_with(10)


@pytest.mark.asyncio
async def test_write_invalidates_leaderboard(repo, connection):
    collection = connection.get_collection("user_experience")

    await repo.get_leaderboard("G1", limit=5)
    await repo.set("G1", "U1", {"xp": 10, "total_xp": 10})
    await repo.get_leaderboard("G1", limit=5)

    assert collection.find.call_count == 2
    query, update = collection.update_one.await_args.args
    assert query == {"guildId": "G1", "userId": "U1"}
    assert update["$set"]["totalXP"] == 10
    assert collection.update_one.await_args.kwargs == {"upsert": True}


@pytest.mark.asyncio
async def test_user_rank_counts_members_ahead(repo, connection):
    collection = connection.get_collection("user_experience")
    collection.find_one.return_value = {"guildId": "G1", "userId": "U3", "totalXP": 50}
    collection.count_documents.return_value = 2

    assert await repo.get_user_rank("G1", "U3") == 3
    collection.count_documents.assert_awaited_with({"guildId": "G1", "totalXP": {"$gt": 50}})


@pytest.mark.asyncio
async def test_user_rank_is_zero_without_record(repo):
    assert await repo.get_user_rank("G1", "nobody") == 0


@pytest.mark.asyncio
async def test_get_by_user_defaults_to_level_one(repo):
    record = await repo.get_by_user("G1", "U1")
    assert record == UserExperience(guild_id="G1", user_id="U1")
    assert record.level == 1


@pytest.mark.asyncio
async def test_file_mirror_leaderboard_and_rank(file_store):
    repo = FileUserExperienceRepo(file_store)
    await repo.set("G1", "U1", {"total_xp": 100, "level": 2})
    await repo.set("G1", "U2", {"total_xp": 300, "level": 4})
    await repo.set("G1", "U3", {"total_xp": 200, "level": 3})
    await repo.set("G2", "U9", {"total_xp": 999})

    leaderboard = await repo.get_leaderboard("G1", limit=2)

    assert [record.user_id for record in leaderboard] == ["U2", "U3"]
    assert await repo.get_user_rank("G1", "U1") == 3
    assert await repo.get_user_rank("G1", "U2") == 1
    assert await repo.get_user_rank("G1", "missing") == 0
    assert len(await repo.get_all()) == 4


@pytest.mark.asyncio
async def test_file_mirror_set_merges_fields(file_store):
    repo = FileUserExperienceRepo(file_store)
    await repo.set("G1", "U1", {"xp": 5, "messages_sent": 1})
    await repo.set("G1", "U1", {"xp": 15})

    record = await repo.get_by_user("G1", "U1")
    assert record.xp == 15
    assert record.messages_sent == 1
    assert await repo.delete("G1", "U1") is True
    assert (await repo.get_by_user("G1", "U1")).xp == 0
