"""Tests for polls and moderation logs, including duplicate handling."""

import re
from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import DuplicateKeyError

from rolereactor.database.errors import DuplicateDocumentError
from rolereactor.datatypes.moderation_datatypes import ModerationAction, ModerationLogEntry, generate_case_id
from rolereactor.datatypes.poll_datatypes import Poll
from rolereactor.repositories.moderation_log_repo import FileModerationLogRepo, ModerationLogRepo
from rolereactor.repositories.poll_repo import FilePollRepo, PollRepo

CASE_ID = re.compile(r"^MOD-\d{8}-\d{6}-[0-9A-Z]{4}$")


def warning(user_id="U1", **kwargs):
    return ModerationLogEntry(guild_id="G1", user_id=user_id, moderator_id="M1", action=ModerationAction.WARN, **kwargs)


# ----------------------------------------------------------------------
# Polls
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_duplicate_poll_create_returns_false(connection, cache):
    repo = PollRepo(connection, cache)
    connection.get_collection("polls").insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")

    assert await repo.create(Poll(id="p1", guild_id="G1", question="Lunch?")) is False


@pytest.mark.asyncio
async def test_poll_create_invalidates_cached_listings(connection, cache):
    repo = PollRepo(connection, cache)
    cache.set("polls:all", {})
    cache.set("polls:guild:G1", {})

    assert await repo.create(Poll(id="p1", guild_id="G1")) is True

    assert "polls:all" not in cache
    assert "polls:guild:G1" not in cache
    document = connection.get_collection("polls").insert_one.await_args.args[0]
    assert document["id"] == "p1"
    assert document["guildId"] == "G1"
    assert isinstance(document["createdAt"], datetime)


@pytest.mark.asyncio
async def test_file_poll_lifecycle(file_store):
    repo = FilePollRepo(file_store)
    assert await repo.create(Poll(id="p1", guild_id="G1", message_id="M1", options=["a", "b"])) is True
    assert await repo.create(Poll(id="p1", guild_id="G1")) is False

    assert await repo.update("p1", {"votes": {"U1": [0]}}) is True
    assert await repo.update("missing", {"question": "?"}) is False

    poll = await repo.get_by_message_id("M1")
    assert poll is not None and poll.votes == {"U1": [0]}
    assert list(await repo.get_by_guild("G1")) == ["p1"]
    assert await repo.delete("p1") is True
    assert await repo.get_by_id("p1") is None


@pytest.mark.asyncio
async def test_file_cleanup_removes_polls_ended_over_a_day_ago(file_store):
    repo = FilePollRepo(file_store)
    now = datetime(2024, 5, 2, 12, tzinfo=timezone.utc)
    await repo.create(Poll(id="old", guild_id="G1", is_active=False, ended_at=now - timedelta(hours=25)))
    await repo.create(Poll(id="recent", guild_id="G1", is_active=False, ended_at=now - timedelta(hours=2)))
    await repo.create(Poll(id="open", guild_id="G1"))

    assert await repo.cleanup_ended_polls(now=now) == 1
    assert sorted(await repo.get_all()) == ["open", "recent"]


# ----------------------------------------------------------------------
# Moderation logs
# ----------------------------------------------------------------------


def test_generate_case_id_format():
    case_id = generate_case_id(datetime(2024, 5, 2, 13, 4, 5, tzinfo=timezone.utc))
    assert CASE_ID.match(case_id)
    assert case_id.startswith("MOD-20240502-130405-")


@pytest.mark.asyncio
async def test_moderation_create_assigns_case_id_and_timestamp(connection, cache):
    repo = ModerationLogRepo(connection, cache)

    entry = await repo.create(warning(reason="spam"))

    assert CASE_ID.match(entry.case_id)
    assert entry.timestamp is not None
    document = connection.get_collection("moderation_logs").insert_one.await_args.args[0]
    assert document["action"] == "warn"
    assert document["caseId"] == entry.case_id


@pytest.mark.asyncio
async def test_moderation_duplicate_case_id_raises(connection, cache):
    repo = ModerationLogRepo(connection, cache)
    connection.get_collection("moderation_logs").insert_one.side_effect = DuplicateKeyError(
        "E11000 duplicate key", 11000, {"keyValue": {"caseId": "MOD-20240101-000000-AAAA"}}
    )

    with pytest.raises(DuplicateDocumentError) as excinfo:
        await repo.create(warning(case_id="MOD-20240101-000000-AAAA"))

    assert excinfo.value.collection == "moderation_logs"
    assert excinfo.value.key == {"caseId": "MOD-20240101-000000-AAAA"}


@pytest.mark.asyncio
async def test_warn_count_uses_query_cache(connection, cache, query_cache):
    repo = ModerationLogRepo(connection, cache, query_cache=query_cache)
    collection = connection.get_collection("moderation_logs")
    collection.count_documents.return_value = 2

    assert await repo.get_warn_count("G1", "U1") == 2
    assert await repo.get_warn_count("G1", "U1") == 2
    assert collection.count_documents.await_count == 1

    collection.delete_one.return_value.deleted_count = 1
    assert await repo.delete_warning("G1", "U1", "MOD-1") is True
    assert await repo.get_warn_count("G1", "U1") == 2
    assert collection.count_documents.await_count == 2


@pytest.mark.asyncio
async def test_file_moderation_log(file_store):
    repo = FileModerationLogRepo(file_store)
    first = await repo.create(warning(timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc)))
    await repo.create(warning(timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc)))
    await repo.create(
        ModerationLogEntry(guild_id="G1", user_id="U1", moderator_id="M1", action=ModerationAction.KICK)
    )

    assert await repo.get_warn_count("G1", "U1") == 2
    history = await repo.get_by_user("G1", "U1")
    assert len(history) == 3
    assert history[-1].case_id == first.case_id

    with pytest.raises(DuplicateDocumentError):
        await repo.create(warning(case_id=first.case_id))

    assert await repo.delete_warning("G1", "U1", first.case_id) is True
    assert await repo.get_warn_count("G1", "U1") == 1
    assert len(await repo.get_by_guild("G1")) == 2
