"""
Trade Fan-Out

Propagates one trader's trade to every active subscriber. Each subscriber is
evaluated in its own task, so a slow or failing subscriber never holds up or
breaks the others.
"""
from typing import Optional, Tuple
import asyncio
import logging

from dexmirror.models.trade import Trade
from dexmirror.models.subscription import Subscription
from dexmirror.models.decision import (
    Decision, Skip, SkipReason, NegativeValuePolicy, FanOutError, FanOutResult
)
from dexmirror.brain.decider import evaluate
from dexmirror.brain.risk import RiskGate
from dexmirror.engine.ledger import LedgerWriter
from dexmirror.store import CopyTradeStore, DuplicateCopyTradeError

logger = logging.getLogger(__name__)


class FanOutCoordinator:
    """
    Evaluates and records one trade for all of its trader's active copiers.

    Per copier: copy settings present -> risk gate -> eligibility -> ledger.
    """

    def __init__(
        self,
        store: CopyTradeStore,
        risk_gate: RiskGate,
        ledger: LedgerWriter,
        negative_value_policy: NegativeValuePolicy = NegativeValuePolicy.PROPAGATE,
        subscriber_timeout: Optional[float] = None
    ):
        self.store = store
        self.risk_gate = risk_gate
        self.ledger = ledger
        self.negative_value_policy = negative_value_policy
        self.subscriber_timeout = subscriber_timeout

    async def copy_trade_to_subscribers(self, trade: Trade) -> FanOutResult:
        """
        Copy a trade to all eligible subscribers.

        Never raises: per-copier failures and a failed subscription lookup
        are reported in `FanOutResult.errors`.
        """
        result = FanOutResult(trade_id=trade.id)

        try:
            subscriptions = await self.store.active_subscriptions(trade.trader_id)
        except Exception as e:
            logger.error(f"Error loading subscriptions for trade {trade.id}: {e}")
            result.errors.append(FanOutError(detail=str(e)))
            return result

        logger.info(f"Found {len(subscriptions)} active subscriptions for trade {trade.id}")

        try:
            outcomes = await asyncio.gather(
                *(self._process_isolated(trade, sub) for sub in subscriptions)
            )
        except Exception as e:
            logger.error(f"Error in fan-out for trade {trade.id}: {e}")
            result.errors.append(FanOutError(detail=str(e)))
            return result

        for subscription, (decision, error) in zip(subscriptions, outcomes):
            result.record(subscription.copier_id, decision)
            if error is not None:
                result.errors.append(error)

        logger.info(
            f"Fan-out for trade {trade.id}: {result.copied_count} copied, "
            f"{result.skipped_count} skipped, {len(result.errors)} errors"
        )
        return result

    async def _process_isolated(
        self,
        trade: Trade,
        subscription: Subscription
    ) -> Tuple[Decision, Optional[FanOutError]]:
        copier_id = subscription.copier_id
        try:
            if self.subscriber_timeout is None:
                decision = await self._decide(trade, subscription)
            else:
                decision = await asyncio.wait_for(
                    self._decide(trade, subscription),
                    timeout=self.subscriber_timeout
                )
            if decision.should_copy:
                # Not bounded by the timeout: a started write is reported by what it did
                decision = await self._record(trade, copier_id, decision)
        except asyncio.TimeoutError:
            detail = f"timed out after {self.subscriber_timeout}s"
            logger.error(f"Error copying trade {trade.id} for copier {copier_id}: {detail}")
            return Skip(reason=SkipReason.ERROR), FanOutError(copier_id=copier_id, detail=detail)
        except Exception as e:
            logger.error(f"Error copying trade {trade.id} for copier {copier_id}: {e}")
            return Skip(reason=SkipReason.ERROR), FanOutError(copier_id=copier_id, detail=str(e))

        if not decision.should_copy:
            logger.debug(f"Skipping copier {copier_id} for trade {trade.id}: {decision.reason.value}")
        return decision, None

    async def _decide(self, trade: Trade, subscription: Subscription) -> Decision:
        settings = subscription.copy_settings

        if settings is None:
            return Skip(reason=SkipReason.NO_COPY_SETTINGS)

        # Loss read completes before this copier's decision
        if not await self.risk_gate.allowed(subscription.copier_id, settings):
            return Skip(reason=SkipReason.RISK_LIMIT_REACHED)

        return evaluate(trade, settings, self.negative_value_policy)

    async def _record(self, trade: Trade, copier_id: str, decision: Decision) -> Decision:
        try:
            await self.ledger.record_copy(trade, copier_id, decision.amount)
        except DuplicateCopyTradeError:
            logger.info(f"Trade {trade.id} already copied for copier {copier_id}")
            return Skip(reason=SkipReason.ALREADY_COPIED)
        return decision
