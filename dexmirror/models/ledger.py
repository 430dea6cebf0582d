"""
Copy-trade ledger and notification models
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum


class NotificationType(str, Enum):
    NEW_TRADE = "NEW_TRADE"
    SUBSCRIPTION_STARTED = "SUBSCRIPTION_STARTED"
    SUBSCRIPTION_ENDED = "SUBSCRIPTION_ENDED"
    TRADE_COPIED = "TRADE_COPIED"
    RISK_ALERT = "RISK_ALERT"


class CopyTrade(BaseModel):
    """One recorded decision to mirror a trade into a copier's account"""
    id: str
    original_trade_id: str
    copier_id: str
    amount_copied: Decimal
    profit_loss: Optional[Decimal] = None  # filled in by settlement
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def realized_loss(self) -> Decimal:
        """Magnitude of a settled loss, zero otherwise"""
        if self.profit_loss is not None and self.profit_loss < 0:
            return -self.profit_loss
        return Decimal("0")

    class Config:
        frozen = True


class Notification(BaseModel):
    """A polled, user-facing event"""
    id: str
    user_id: str
    type: NotificationType
    message: str
    read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.now)


class MarkReadRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    notification_ids: Optional[List[str]] = None
