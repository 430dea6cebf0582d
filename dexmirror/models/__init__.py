# Models package
from dexmirror.models.trader import Trader, TraderRegistration
from dexmirror.models.trade import Trade, TradeSubmission, TradeUpdate
from dexmirror.models.subscription import (
    Subscription, SubscriptionStatus, CopySettings, SizingMode,
    PercentageSizing, FixedSizing, ProportionalSizing
)
from dexmirror.models.ledger import CopyTrade, Notification, NotificationType
from dexmirror.models.decision import (
    Copy, Skip, Decision, SkipReason, NegativeValuePolicy, FanOutError, FanOutResult
)

__all__ = [
    "Trader", "TraderRegistration",
    "Trade", "TradeSubmission", "TradeUpdate",
    "Subscription", "SubscriptionStatus", "CopySettings", "SizingMode",
    "PercentageSizing", "FixedSizing", "ProportionalSizing",
    "CopyTrade", "Notification", "NotificationType",
    "Copy", "Skip", "Decision", "SkipReason", "NegativeValuePolicy",
    "FanOutError", "FanOutResult"
]
