"""
Index provisioning for every MongoDB collection.

Indexes are declared once here and (re)created after each successful
connection. Index names left over from older document layouts are dropped
first so they cannot reject writes in the current layout. Failures are logged
and skipped; the bot keeps working without an optimal index.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from rolereactor.util.logger import get_logger

logger = get_logger("database_schema")


@dataclass(frozen=True)
class IndexSpec:
    keys: Tuple[Tuple[str, int], ...]
    unique: bool = False

    @property
    def name(self) -> str:
        """Default MongoDB index name, e.g. ``guildId_1_userId_1``."""
        return "_".join(f"{field}_{direction}" for field, direction in self.keys)

    def options(self) -> Dict[str, Any]:
        return {"unique": True} if self.unique else {}


def _index(*keys: Tuple[str, int], unique: bool = False) -> IndexSpec:
    return IndexSpec(tuple(keys), unique)


COLLECTION_INDEXES: Dict[str, List[IndexSpec]] = {
    "role_mappings": [_index(("messageId", ASCENDING), unique=True)],
    "temporary_roles": [
        _index(("expiresAt", ASCENDING)),
        _index(("guildId", ASCENDING)),
        _index(("roleId", ASCENDING)),
    ],
    "welcome_settings": [_index(("guildId", ASCENDING), unique=True)],
    "goodbye_settings": [_index(("guildId", ASCENDING), unique=True)],
    "guild_settings": [_index(("guildId", ASCENDING), unique=True)],
    "voice_control_roles": [_index(("guildId", ASCENDING), unique=True)],
    "user_experience": [
        _index(("guildId", ASCENDING), ("userId", ASCENDING), unique=True),
        _index(("guildId", ASCENDING), ("totalXP", DESCENDING)),
    ],
    "polls": [
        _index(("id", ASCENDING), unique=True),
        _index(("guildId", ASCENDING)),
        _index(("createdAt", ASCENDING)),
    ],
    "scheduled_roles": [
        _index(("id", ASCENDING), unique=True),
        _index(("guildId", ASCENDING)),
        _index(("scheduledAt", ASCENDING)),
        _index(("executed", ASCENDING)),
    ],
    "recurring_schedules": [
        _index(("id", ASCENDING), unique=True),
        _index(("guildId", ASCENDING)),
        _index(("active", ASCENDING)),
    ],
    "command_usage": [_index(("commandName", ASCENDING), unique=True)],
    "core_credits": [_index(("userId", ASCENDING), unique=True)],
    "guild_analytics": [_index(("guildId", ASCENDING), ("date", ASCENDING), unique=True)],
    "moderation_logs": [
        _index(("guildId", ASCENDING)),
        _index(("userId", ASCENDING)),
        _index(("caseId", ASCENDING), unique=True),
        _index(("timestamp", DESCENDING)),
    ],
}

OBSOLETE_INDEXES: Dict[str, Sequence[str]] = {
    "scheduled_roles": ("scheduleId_1",),
    "recurring_schedules": ("scheduleId_1",),
    "temporary_roles": ("guildId_1_userId_1_roleId_1",),
}


@dataclass
class ProvisioningReport:
    created: int = 0
    dropped: int = 0
    failed: int = 0


class SchemaManager:
    """Creates declared indexes and drops obsolete ones on a Motor database."""

    @staticmethod
    async def provision_indexes(db: Any) -> ProvisioningReport:
        """
        Drop obsolete indexes, then create every declared index.

        Never raises for driver errors; each failure is logged as a warning
        and counted in the returned report.

        Args:
            db: Motor database handle
        """
        report = ProvisioningReport()
        await SchemaManager._drop_obsolete_indexes(db, report)
        await SchemaManager._create_indexes(db, report)
        if report.failed:
            logger.warning(
                "[DB SCHEMA] Index provisioning finished with %d failures (%d created, %d dropped)",
                report.failed, report.created, report.dropped,
            )
        else:
            logger.info("[DB SCHEMA] Indexes ready (%d created, %d dropped)", report.created, report.dropped)
        return report

    @staticmethod
    async def _drop_obsolete_indexes(db: Any, report: ProvisioningReport) -> None:
        for collection_name, names in OBSOLETE_INDEXES.items():
            collection = db[collection_name]
            try:
                existing = await collection.index_information()
            except PyMongoError as exc:
                logger.debug("[DB SCHEMA] Could not list indexes on %s: %s", collection_name, exc)
                continue
            for name in names:
                if name not in existing:
                    continue
                try:
                    await collection.drop_index(name)
                    report.dropped += 1
                    logger.info("[DB SCHEMA] Dropped obsolete index %s from %s", name, collection_name)
                except PyMongoError as exc:
                    report.failed += 1
                    logger.warning("[DB SCHEMA] Failed to drop %s from %s: %s", name, collection_name, exc)

    @staticmethod
    async def _create_indexes(db: Any, report: ProvisioningReport) -> None:
        for collection_name, specs in COLLECTION_INDEXES.items():
            collection = db[collection_name]
            for spec in specs:
                try:
                    await collection.create_index(list(spec.keys), **spec.options())
                    report.created += 1
                except PyMongoError as exc:
                    report.failed += 1
                    logger.warning(
                        "[DB SCHEMA] Failed to create index %s on %s: %s", spec.name, collection_name, exc
                    )
