"""Records for reaction-role mappings, temporary roles, supporters and voice control roles."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from rolereactor.datatypes.document import DocumentMixin

SUPPORTER_TYPE = "supporter"


@dataclass(slots=True)
class RoleMapping(DocumentMixin):
    """One reaction-role message: which emoji grants which role."""

    message_id: str
    guild_id: str
    channel_id: str
    roles: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class Pagination:
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.current_page > 1

    @classmethod
    def build(cls, page: int, limit: int, total_items: int) -> "Pagination":
        total_pages = -(-total_items // limit) if limit else 0
        return cls(page, total_pages, total_items, limit)


@dataclass(slots=True)
class RoleMappingPage:
    """One page of a guild's role mappings, newest first, keyed by message id."""

    mappings: Dict[str, RoleMapping]
    pagination: Pagination


@dataclass(slots=True)
class TemporaryRole(DocumentMixin):
    """
    A role granted until ``expires_at``.

    Single-user grants carry ``user_id``; bulk grants carry ``user_ids`` and
    are stored as one document.
    """

    guild_id: str
    role_id: str
    expires_at: datetime
    user_id: Optional[str] = None
    user_ids: Optional[List[str]] = None
    notify_expiry: bool = False
    updated_at: Optional[datetime] = None

    def members(self) -> List[str]:
        if self.user_ids:
            return list(self.user_ids)
        return [self.user_id] if self.user_id else []


@dataclass(slots=True)
class SupporterRole(DocumentMixin):
    """A supporter role assignment, kept alongside temporary roles with ``type="supporter"``."""

    guild_id: str
    user_id: str
    role_id: str
    assigned_at: Optional[datetime] = None
    reason: Optional[str] = None
    is_active: bool = True
    kind: str = field(default=SUPPORTER_TYPE, metadata={"key": "type"})


@dataclass(slots=True)
class VoiceControlRoles(DocumentMixin):
    guild_id: str
    disconnect_role_ids: List[str] = field(default_factory=list)
    mute_role_ids: List[str] = field(default_factory=list)
    deafen_role_ids: List[str] = field(default_factory=list)
    move_role_mappings: Dict[str, str] = field(default_factory=dict)  # role id -> channel id
    updated_at: Optional[datetime] = None
