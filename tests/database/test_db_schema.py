"""Tests for index provisioning."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import ASCENDING
from pymongo.errors import OperationFailure

from rolereactor.database.db_schema import COLLECTION_INDEXES, OBSOLETE_INDEXES, IndexSpec, SchemaManager


def make_db(existing=None):
    """Database mock whose collections are created on first subscript."""
    existing = existing or {}
    collections = {}

    def get(name):
        if name not in collections:
            collection = MagicMock(name=name)
            collection.index_information = AsyncMock(return_value=dict(existing.get(name, {})))
            collection.drop_index = AsyncMock()
            collection.create_index = AsyncMock()
            collections[name] = collection
        return collections[name]

    db = MagicMock(name="db")
    db.__getitem__.side_effect = get
    return db, collections


def test_index_spec_name_and_options():
    spec = IndexSpec((("guildId", 1), ("userId", 1)), unique=True)
    assert spec.name == "guildId_1_userId_1"
    assert spec.options() == {"unique": True}
    assert IndexSpec((("expiresAt", 1),)).options() == {}


@pytest.mark.asyncio
async def test_creates_every_declared_index():
    db, collections = make_db()

    report = await SchemaManager.provision_indexes(db)

    expected = sum(len(specs) for specs in COLLECTION_INDEXES.values())
    assert report.created == expected
    assert report.failed == 0
    assert report.dropped == 0
    collections["polls"].create_index.assert_any_await([("id", ASCENDING)], unique=True)
    collections["temporary_roles"].create_index.assert_any_await([("expiresAt", ASCENDING)])


@pytest.mark.asyncio
async def test_drops_obsolete_indexes_that_exist():
    db, collections = make_db(
        existing={
            "scheduled_roles": {"_id_": {}, "scheduleId_1": {}},
            "temporary_roles": {"_id_": {}},
        }
    )

    report = await SchemaManager.provision_indexes(db)

    assert report.dropped == 1
    collections["scheduled_roles"].drop_index.assert_awaited_once_with("scheduleId_1")
    collections["temporary_roles"].drop_index.assert_not_awaited()
    assert set(OBSOLETE_INDEXES) <= set(collections)


@pytest.mark.asyncio
async def test_index_failures_are_counted_not_raised():
    db, collections = make_db()
    db["polls"].create_index.side_effect = OperationFailure("index conflict")
    db["recurring_schedules"].index_information.side_effect = OperationFailure("not authorized")

    report = await SchemaManager.provision_indexes(db)

    assert report.failed == len(COLLECTION_INDEXES["polls"])
    assert report.created == sum(len(specs) for specs in COLLECTION_INDEXES.values()) - report.failed
