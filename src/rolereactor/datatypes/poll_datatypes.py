from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from rolereactor.datatypes.document import DocumentMixin


@dataclass(slots=True)
class Poll(DocumentMixin):
    """A poll posted in a guild channel. ``votes`` maps user id to chosen option indexes."""

    id: str
    guild_id: str
    channel_id: Optional[str] = None
    message_id: Optional[str] = None
    creator_id: Optional[str] = None
    question: str = ""
    options: List[str] = field(default_factory=list)
    votes: Dict[str, List[int]] = field(default_factory=dict)
    allow_multiple: bool = False
    is_active: bool = True
    ends_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
