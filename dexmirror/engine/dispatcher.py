"""
Background dispatch of trade propagation

The trade-submission handler hands a freshly stored trade to
`TradeDispatcher.submit` and returns immediately. Fan-out and the new-trade
broadcast run as independent background tasks; their failures are logged
and never reach the trader's response.
"""
from typing import Set
import asyncio
import logging

from dexmirror.models.trade import Trade
from dexmirror.engine.fanout import FanOutCoordinator
from dexmirror.engine.ledger import LedgerWriter, new_trade_message

logger = logging.getLogger(__name__)


class TradeDispatcher:
    """Fire-and-forget trigger for fan-out and new-trade broadcast"""

    def __init__(self, coordinator: FanOutCoordinator, ledger: LedgerWriter):
        self.coordinator = coordinator
        self.ledger = ledger
        # Strong references so running tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, trade: Trade, trader_name: str) -> None:
        """
        Schedule propagation of a stored trade without waiting for it.

        Must be called from inside a running event loop.
        """
        self._spawn(self._fan_out(trade), f"fanout-{trade.id}")
        self._spawn(self._broadcast(trade, trader_name), f"broadcast-{trade.id}")

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fan_out(self, trade: Trade) -> None:
        try:
            result = await self.coordinator.copy_trade_to_subscribers(trade)
        except Exception as e:
            logger.error(f"Fan-out crashed for trade {trade.id}: {e}")
            return

        logger.info(
            f"Trade copy results for {trade.id}: copied={result.copied_count} "
            f"skipped={result.skipped_count} errors={len(result.errors)}"
        )
        for error in result.errors:
            logger.error(f"Errors during copy of trade {trade.id}: {error}")

    async def _broadcast(self, trade: Trade, trader_name: str) -> None:
        try:
            await self.ledger.broadcast_new_trade(trade.trader_id, new_trade_message(trader_name, trade))
        except Exception as e:
            logger.error(f"Error notifying copiers of trader {trade.trader_id}: {e}")

    async def drain(self) -> None:
        """Wait for every scheduled task to finish"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
