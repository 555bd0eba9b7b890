"""
Per-guild settings and counters.

Settings records double as defaults: ``get_by_guild`` on a guild with nothing
stored returns the record built from just the guild id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from rolereactor.datatypes.document import DocumentMixin


def default_experience_system() -> Dict[str, Any]:
    """Experience settings for a guild that never configured them (disabled)."""
    return {
        "enabled": False,
        "messageXP": True,
        "commandXP": True,
        "roleXP": True,
        "voiceXP": True,
        "messageXPAmount": {"min": 15, "max": 25},
        "commandXPAmount": {"base": 8},
        "roleXPAmount": 50,
        "messageCooldown": 60,
        "commandCooldown": 30,
        "levelUpMessages": True,
        "levelUpChannel": None,
    }


@dataclass(slots=True)
class WelcomeSettings(DocumentMixin):
    guild_id: str
    enabled: bool = False
    channel_id: Optional[str] = None
    message: Optional[str] = None
    embed_enabled: bool = True
    auto_role_id: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class GoodbyeSettings(DocumentMixin):
    guild_id: str
    enabled: bool = False
    channel_id: Optional[str] = None
    message: Optional[str] = None
    embed_enabled: bool = True
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class GuildSettings(DocumentMixin):
    guild_id: str
    experience_system: Dict[str, Any] = field(default_factory=default_experience_system)
    disabled_commands: List[str] = field(default_factory=list)
    supporters: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def experience_enabled(self) -> bool:
        return bool(self.experience_system.get("enabled"))


@dataclass(slots=True)
class UserExperience(DocumentMixin):
    guild_id: str
    user_id: str
    xp: int = 0
    level: int = 1
    total_xp: int = field(default=0, metadata={"key": "totalXP"})
    messages_sent: int = 0
    last_message_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


ANALYTICS_COUNTERS = ("joins", "leaves", "members")


@dataclass(slots=True)
class GuildAnalyticsDay(DocumentMixin):
    """Join/leave/member counters for one guild on one ``YYYY-MM-DD`` day."""

    guild_id: str
    date: str
    joins: int = 0
    leaves: int = 0
    members: int = 0


@dataclass(slots=True)
class CommandUsage(DocumentMixin):
    command_name: str
    count: int = 0
    last_used: Optional[datetime] = None
