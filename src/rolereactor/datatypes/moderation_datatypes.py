"""
Moderation case records.

Every action gets a case id of the form ``MOD-YYYYMMDD-HHMMSS-XXXX`` (UTC
timestamp plus four random base-36 characters), unique across the
``moderation_logs`` collection.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from rolereactor.datatypes.document import DocumentMixin

_CASE_ALPHABET = string.digits + string.ascii_uppercase


class ModerationAction(Enum):
    WARN = "warn"
    TIMEOUT = "timeout"
    UNTIMEOUT = "untimeout"
    KICK = "kick"
    BAN = "ban"
    UNBAN = "unban"
    PURGE = "purge"


def generate_case_id(when: datetime) -> str:
    suffix = "".join(secrets.choice(_CASE_ALPHABET) for _ in range(4))
    return f"MOD-{when:%Y%m%d-%H%M%S}-{suffix}"


@dataclass(slots=True)
class ModerationLogEntry(DocumentMixin):
    guild_id: str
    user_id: str
    moderator_id: str
    action: ModerationAction
    case_id: Optional[str] = None
    reason: Optional[str] = None
    duration: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_warning(self) -> bool:
        return self.action is ModerationAction.WARN
