"""Records for one-off and recurring role schedules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from rolereactor.datatypes.document import DocumentMixin


class ScheduleAction(Enum):
    ASSIGN = "assign"
    REMOVE = "remove"


class RecurrenceType(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


@dataclass(slots=True)
class ScheduledRole(DocumentMixin):
    id: str
    guild_id: str
    role_id: str
    scheduled_at: Optional[datetime] = None
    user_ids: List[str] = field(default_factory=list)
    action: ScheduleAction = ScheduleAction.ASSIGN
    reason: Optional[str] = None
    created_by: Optional[str] = None
    executed: bool = False
    executed_at: Optional[datetime] = None
    cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def pending(self) -> bool:
        return not self.executed and not self.cancelled


@dataclass(slots=True)
class RecurringSchedule(DocumentMixin):
    """A role action repeated on a schedule. ``schedule_details`` holds e.g. ``{"time": "09:00", "day": 1}``."""

    id: str
    guild_id: str
    role_id: str
    schedule_type: RecurrenceType = RecurrenceType.DAILY
    schedule_details: Dict[str, Any] = field(default_factory=dict)
    user_ids: List[str] = field(default_factory=list)
    action: ScheduleAction = ScheduleAction.ASSIGN
    reason: Optional[str] = None
    created_by: Optional[str] = None
    active: bool = True
    last_executed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
