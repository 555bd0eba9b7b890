"""Per-user Core credit balances (``core_credits``, unique on ``userId``)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from rolereactor.datatypes.document import DocumentMixin


@dataclass(slots=True)
class CoreCredits(DocumentMixin):
    """
    A user's Core balance.

    ``credits`` is the spendable balance; ``total_generated`` only ever grows.
    Provider receipts (``crypto_payments``) are kept on the record so a
    repeated webhook can be recognised and ignored.
    """

    user_id: str
    credits: float = 0
    subscription_credits: float = 0
    bonus_credits: float = 0
    total_generated: int = 0
    crypto_payments: List[Dict[str, Any]] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    def has_payment(self, charge_id: str) -> bool:
        return any(payment.get("chargeId") == charge_id for payment in self.crypto_payments)
