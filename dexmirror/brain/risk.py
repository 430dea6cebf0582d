"""
Daily Loss Risk Gate

Circuit breaker on a copier's realized losses: once the settled losses of
today's copy trades reach the copier's `max_daily_loss`, copying stops until
the next calendar day (server local time).
"""
from typing import Callable, Optional
from datetime import datetime
from decimal import Decimal
import logging

from dexmirror.models.subscription import CopySettings
from dexmirror.models.ledger import NotificationType
from dexmirror.store import CopyTradeStore

logger = logging.getLogger(__name__)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class RiskGate:
    """
    Consulted before a copy is committed.

    `alerts` is the writer used to raise RISK_ALERT notifications; it must
    provide `async risk_alert(copier_id)`.
    """

    def __init__(
        self,
        store: CopyTradeStore,
        alerts,
        clock: Optional[Callable[[], datetime]] = None,
        dedupe_alerts: bool = False
    ):
        self.store = store
        self.alerts = alerts
        self.clock = clock or datetime.now
        self.dedupe_alerts = dedupe_alerts

    async def daily_loss(self, copier_id: str) -> Decimal:
        """Sum of today's realized loss magnitudes for a copier"""
        since = start_of_day(self.clock())
        copy_trades = await self.store.copy_trades_since(copier_id, since)
        return sum((ct.realized_loss for ct in copy_trades), Decimal("0"))

    async def allowed(self, copier_id: str, settings: CopySettings) -> bool:
        """
        Check the copier's daily loss cap.

        A failed loss query denies the copy (fail closed) for this copier only.
        """
        if settings.max_daily_loss is None:
            return True

        try:
            total_loss = await self.daily_loss(copier_id)
        except Exception as e:
            logger.error(f"Daily loss query failed for copier {copier_id}, denying copy: {e}")
            return False

        if total_loss < settings.max_daily_loss:
            return True

        logger.warning(
            f"⛔ Daily loss limit reached for copier {copier_id}: "
            f"${total_loss} >= ${settings.max_daily_loss}"
        )
        await self._alert(copier_id)
        return False

    async def _alert(self, copier_id: str) -> None:
        if self.dedupe_alerts:
            since = start_of_day(self.clock())
            if await self.store.has_notification_since(copier_id, NotificationType.RISK_ALERT, since):
                logger.debug(f"Risk alert already sent today to copier {copier_id}")
                return
        await self.alerts.risk_alert(copier_id)
