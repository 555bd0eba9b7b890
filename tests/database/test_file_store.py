"""Tests for the JSON file fallback store."""

import asyncio
import json

import pytest

from rolereactor.database.errors import FallbackStoreError
from rolereactor.database.file_store import FileFallbackStore, ReadOutcome, salvage_json_object


@pytest.fixture()
def store(tmp_path):
    return FileFallbackStore(tmp_path)


@pytest.mark.asyncio
async def test_read_missing_collection_returns_empty(store):
    result = await store.read_with_outcome("polls")
    assert result.data == {}
    assert result.outcome is ReadOutcome.MISSING
    assert result.recovered is False


@pytest.mark.asyncio
async def test_write_then_read_round_trip_leaves_no_temp_files(store, tmp_path):
    payload = {"G1": {"enabled": True, "channelId": "C1"}}
    assert await store.write("welcome_settings", payload) is True

    assert await store.read("welcome_settings") == payload
    assert json.loads((tmp_path / "welcome_settings.json").read_text()) == payload
    assert list(tmp_path.glob("*.tmp")) == []


@pytest.mark.asyncio
async def test_empty_file_reads_as_empty_object(store, tmp_path):
    (tmp_path / "polls.json").write_text("   \n")
    result = await store.read_with_outcome("polls")
    assert result.data == {}
    assert result.outcome is ReadOutcome.OK


@pytest.mark.asyncio
async def test_corrupted_file_is_backed_up_and_salvaged(store, tmp_path):
    damaged = 'xx garbage {"G1": {"enabled": true}} trailing'
    (tmp_path / "welcome_settings.json").write_text(damaged)

    result = await store.read_with_outcome("welcome_settings")

    assert result.outcome is ReadOutcome.RECOVERED_FROM_BACKUP
    assert result.recovered is True
    assert result.data == {"G1": {"enabled": True}}
    assert result.backup_path is not None
    assert result.backup_path.name.startswith("welcome_settings.json.corrupted.")
    assert result.backup_path.read_text() == damaged
    assert json.loads((tmp_path / "welcome_settings.json").read_text()) == {"G1": {"enabled": True}}


@pytest.mark.asyncio
async def test_unsalvageable_file_is_reset_to_empty(store, tmp_path):
    (tmp_path / "polls.json").write_text('{"p1": {"question": "half')

    result = await store.read_with_outcome("polls")

    assert result.outcome is ReadOutcome.RESET_TO_EMPTY
    assert result.data == {}
    assert result.backup_path is not None and result.backup_path.exists()
    assert json.loads((tmp_path / "polls.json").read_text()) == {}


@pytest.mark.asyncio
async def test_non_object_top_level_is_recovered(store, tmp_path):
    (tmp_path / "polls.json").write_text("[1, 2, 3]")
    result = await store.read_with_outcome("polls")
    assert result.outcome is ReadOutcome.RESET_TO_EMPTY
    assert await store.read("polls") == {}


def test_salvage_falls_back_to_first_complete_object():
    assert salvage_json_object('{"a": 1} junk }') == {"a": 1}
    assert salvage_json_object("no braces here") is None
    assert salvage_json_object("[1, 2]") is None


@pytest.mark.asyncio
async def test_archive_renames_collection_file(store, tmp_path):
    await store.write("role_mappings", {"m1": {}})

    target = await store.archive("role_mappings")

    assert target == tmp_path / "role_mappings.json.migrated"
    assert target.exists()
    assert not (tmp_path / "role_mappings.json").exists()
    assert await store.archive("role_mappings") is None


@pytest.mark.asyncio
async def test_exists_and_delete(store):
    assert await store.exists("polls") is False
    await store.write("polls", {})
    assert await store.exists("polls") is True
    assert await store.delete("polls") is True
    assert await store.delete("polls") is False


def test_invalid_collection_name_is_rejected(store):
    with pytest.raises(ValueError):
        store.path_for("../escape")
    with pytest.raises(ValueError):
        store.path_for("")


@pytest.mark.asyncio
async def test_transaction_persists_on_clean_exit(store):
    async with store.transaction("command_usage") as data:
        data["ping"] = {"count": 1}
    assert await store.read("command_usage") == {"ping": {"count": 1}}


@pytest.mark.asyncio
async def test_transaction_leaves_file_untouched_when_body_raises(store):
    await store.write("command_usage", {"ping": {"count": 1}})

    with pytest.raises(RuntimeError):
        async with store.transaction("command_usage") as data:
            data["ping"]["count"] = 99
            raise RuntimeError("boom")

    assert await store.read("command_usage") == {"ping": {"count": 1}}


@pytest.mark.asyncio
async def test_concurrent_transactions_do_not_lose_updates(store):
    async def increment():
        async with store.transaction("counter") as data:
            data["value"] = data.get("value", 0) + 1

    await asyncio.gather(*(increment() for _ in range(10)))
    assert await store.read("counter") == {"value": 10}


@pytest.mark.asyncio
async def test_write_failure_is_reported(store, monkeypatch):
    def fail(path, data):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_write_sync", fail)

    assert await store.write("polls", {"p1": {}}) is False
    with pytest.raises(FallbackStoreError):
        async with store.transaction("polls") as data:
            data["p1"] = {}


@pytest.mark.asyncio
async def test_undecodable_file_is_backed_up_byte_for_byte(store, tmp_path):
    original = b'{"poll-1": {"question": "caf\xe9"}}'
    (tmp_path / "polls.json").write_bytes(original)

    result = await store.read_with_outcome("polls")

    assert result.outcome is ReadOutcome.RECOVERED_FROM_BACKUP
    assert result.backup_path is not None
    assert result.backup_path.read_bytes() == original
    assert result.data["poll-1"]["question"].startswith("caf")

    async with store.transaction("polls") as data:
        data["poll-2"] = {"question": "tea?"}

    assert set(await store.read("polls")) == {"poll-1", "poll-2"}
    assert result.backup_path.read_bytes() == original


@pytest.mark.asyncio
async def test_transaction_refuses_to_overwrite_when_backup_fails(store, tmp_path, monkeypatch):
    original = b'{"poll-1": {"question": "half'
    (tmp_path / "polls.json").write_bytes(original)

    def fail_copy(src, dst):
        raise OSError("read-only filesystem")

    monkeypatch.setattr("rolereactor.database.file_store.shutil.copy2", fail_copy)

    with pytest.raises(FallbackStoreError):
        async with store.transaction("polls") as data:
            data["poll-2"] = {}

    assert (tmp_path / "polls.json").read_bytes() == original
    assert list(tmp_path.glob("polls.json.corrupted.*")) == []
