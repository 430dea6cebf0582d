"""
Copy-Trade Ledger & Notification Writer

Records "would-copy" ledger entries and the notifications that go with them.
No trade is executed on-chain; settlement fills in profit/loss later.
"""
from decimal import Decimal
import logging

from dexmirror.models.trade import Trade
from dexmirror.models.ledger import CopyTrade, Notification, NotificationType
from dexmirror.brain.sizer import format_usd
from dexmirror.store import CopyTradeStore

logger = logging.getLogger(__name__)

RISK_ALERT_MESSAGE = "Daily loss limit reached. Copy trading paused for today."


def copied_message(trade: Trade, amount: Decimal) -> str:
    return f"Trade copied: {trade.pair} (${format_usd(amount)})"


def new_trade_message(trader_name: str, trade: Trade) -> str:
    return f"{trader_name} made a new trade: {trade.pair}"


class LedgerWriter:
    """Writes copy trades and copier notifications through the store"""

    def __init__(self, store: CopyTradeStore):
        self.store = store

    async def record_copy(self, trade: Trade, copier_id: str, amount: Decimal) -> CopyTrade:
        """
        Record one copy decision and tell the copier about it.

        The ledger row and its TRADE_COPIED notification are committed
        together; a duplicate (trade, copier) pair writes neither.
        """
        copy_trade = await self.store.record_copy(
            trade.id, copier_id, amount, copied_message(trade, amount)
        )
        logger.info(f"📝 COPY: {trade.pair} | ${format_usd(amount)} | copier {copier_id} | trade {trade.id}")
        return copy_trade

    async def risk_alert(self, copier_id: str) -> Notification:
        return await self.store.create_notification(
            copier_id, NotificationType.RISK_ALERT, RISK_ALERT_MESSAGE
        )

    async def broadcast_new_trade(self, trader_id: str, message: str) -> int:
        """Send one NEW_TRADE notification to every active subscriber of a trader"""
        copier_ids = await self.store.active_subscriber_ids(trader_id)
        count = await self.store.create_notifications(copier_ids, NotificationType.NEW_TRADE, message)
        logger.info(f"Sent notifications to {count} copiers of trader {trader_id}")
        return count
