"""Tests for trade fan-out to subscribers."""
import time
from datetime import datetime
from decimal import Decimal

import pytest

from dexmirror.brain.risk import RiskGate
from dexmirror.engine.fanout import FanOutCoordinator
from dexmirror.engine.ledger import LedgerWriter
from dexmirror.models.decision import Copy, Skip, SkipReason, NegativeValuePolicy
from dexmirror.models.ledger import NotificationType
from dexmirror.models.subscription import (
    CopySettings, PercentageSizing, FixedSizing, SubscriptionStatus
)
from dexmirror.store import SqlStore


def make_coordinator(store, **kwargs) -> FanOutCoordinator:
    ledger = LedgerWriter(store)
    return FanOutCoordinator(store, RiskGate(store, ledger), ledger, **kwargs)


@pytest.fixture
def coordinator(memory_store):
    return make_coordinator(memory_store)


async def test_end_to_end_scenario(coordinator, memory_store, trade):
    memory_store.subscribe("A", CopySettings(sizing=PercentageSizing(amount=Decimal("100"))))
    memory_store.subscribe("B", CopySettings(
        sizing=FixedSizing(amount=Decimal("50")), max_trade_size=Decimal("40")
    ))
    memory_store.subscribe("C", CopySettings(copy_enabled=False))

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert (result.copied_count, result.skipped_count, result.errors) == (1, 2, [])
    assert result.outcomes == {
        "A": Copy(amount=Decimal("1000")),
        "B": Skip(reason=SkipReason.ABOVE_MAX_SIZE),
        "C": Skip(reason=SkipReason.COPYING_DISABLED),
    }
    [copy_trade] = memory_store.copy_trades
    assert copy_trade.copier_id == "A"
    assert copy_trade.amount_copied == Decimal("1000")
    assert [n.user_id for n in memory_store.notifications_of(NotificationType.TRADE_COPIED)] == ["A"]
    assert memory_store.notifications_of(NotificationType.RISK_ALERT) == []


async def test_one_failing_subscriber_does_not_block_others(coordinator, memory_store, trade, settings):
    for copier in ("first", "second", "third"):
        memory_store.subscribe(copier, settings)
    memory_store.fail_copy_for.add("second")

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert result.copied_count == 2
    assert result.skipped_count == 1
    assert len(result.errors) == 1
    assert result.errors[0].copier_id == "second"
    assert "disk full" in str(result.errors[0])
    assert {ct.copier_id for ct in memory_store.copy_trades} == {"first", "third"}


async def test_missing_copy_settings_is_skipped(coordinator, memory_store, trade, settings):
    memory_store.subscribe("configured", settings)
    memory_store.subscribe("bare", None)

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert result.copied_count == 1
    assert result.outcomes["bare"] == Skip(reason=SkipReason.NO_COPY_SETTINGS)
    assert result.errors == []


async def test_inactive_subscriptions_are_not_evaluated(coordinator, memory_store, trade, settings):
    memory_store.subscribe("paused", settings, status=SubscriptionStatus.PAUSED)
    memory_store.subscribe("cancelled", settings, status=SubscriptionStatus.CANCELLED)

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert (result.copied_count, result.skipped_count) == (0, 0)
    assert memory_store.copy_trades == []


async def test_valueless_trade_skips_everyone(coordinator, memory_store, trade):
    memory_store.subscribe("a", CopySettings(sizing=FixedSizing(amount=Decimal("5"))))
    memory_store.subscribe("b", CopySettings())

    result = await coordinator.copy_trade_to_subscribers(trade.model_copy(update={"usd_value": None}))

    assert result.skipped_count == 2
    assert set(result.outcomes.values()) == {Skip(reason=SkipReason.NO_USD_VALUE)}


async def test_risk_denial_alerts_and_skips(coordinator, memory_store, trade):
    memory_store.subscribe("loser", CopySettings(max_daily_loss=Decimal("100")))
    memory_store.add_copy_trade("loser", "-150", datetime.now())

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert result.outcomes["loser"] == Skip(reason=SkipReason.RISK_LIMIT_REACHED)
    assert len(memory_store.notifications_of(NotificationType.RISK_ALERT, "loser")) == 1
    assert memory_store.notifications_of(NotificationType.TRADE_COPIED) == []


async def test_risk_query_failure_only_affects_that_copier(coordinator, memory_store, trade):
    capped = CopySettings(max_daily_loss=Decimal("100"))
    memory_store.subscribe("broken", capped)
    memory_store.subscribe("fine", capped)
    memory_store.fail_loss_query_for.add("broken")

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert result.outcomes["broken"] == Skip(reason=SkipReason.RISK_LIMIT_REACHED)
    assert result.outcomes["fine"].should_copy


async def test_subscription_query_failure_is_reported(coordinator, memory_store, trade):
    memory_store.fail_subscriptions = True

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert (result.copied_count, result.skipped_count) == (0, 0)
    assert len(result.errors) == 1
    assert result.errors[0].copier_id is None
    assert str(result.errors[0]).startswith("General error")


async def test_reinvocation_does_not_double_copy(coordinator, memory_store, trade, settings):
    memory_store.subscribe("alice", settings)

    first = await coordinator.copy_trade_to_subscribers(trade)
    second = await coordinator.copy_trade_to_subscribers(trade)

    assert first.copied_count == 1
    assert second.copied_count == 0
    assert second.outcomes["alice"] == Skip(reason=SkipReason.ALREADY_COPIED)
    assert second.errors == []
    assert len(memory_store.copy_trades) == 1
    assert len(memory_store.notifications_of(NotificationType.TRADE_COPIED)) == 1


async def test_stuck_subscriber_times_out(memory_store, trade, settings):
    coordinator = make_coordinator(memory_store, subscriber_timeout=0.05)
    memory_store.subscribe("stuck", CopySettings(max_daily_loss=Decimal("10")))
    memory_store.subscribe("quick", settings)
    memory_store.hang_for.add("stuck")

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert result.copied_count == 1
    assert result.skipped_count == 1
    assert result.errors[0].copier_id == "stuck"
    assert "timed out" in result.errors[0].detail


async def test_negative_value_policy_is_applied(memory_store, trade):
    coordinator = make_coordinator(memory_store, negative_value_policy=NegativeValuePolicy.SKIP)
    memory_store.subscribe("alice", CopySettings())

    result = await coordinator.copy_trade_to_subscribers(
        trade.model_copy(update={"usd_value": Decimal("-20")})
    )

    assert result.outcomes["alice"] == Skip(reason=SkipReason.NEGATIVE_USD_VALUE)


class SlowWriteStore(SqlStore):
    """SqlStore whose ledger write outlasts the subscriber timeout"""

    def _record_copy(self, *args):
        time.sleep(0.3)
        return super()._record_copy(*args)


async def test_slow_ledger_write_is_reported_by_its_outcome(sql_store, settings):
    store = SlowWriteStore(sql_store._session_factory)
    trader = await store.create_trader("0xtrader", "alpha", Decimal("0"))
    trade = await store.create_trade(
        trader_id=trader.id, token_in="USDC", token_out="ETH",
        amount_in="1000", amount_out="0.31", usd_value=Decimal("1000")
    )
    await store.create_subscription("slow", trader, settings)
    coordinator = make_coordinator(store, subscriber_timeout=0.1)

    result = await coordinator.copy_trade_to_subscribers(trade)

    assert result.errors == []
    assert result.outcomes == {"slow": Copy(amount=Decimal("1000"))}
    [copy_trade] = await store.list_copy_trades("slow")
    assert copy_trade.amount_copied == Decimal("1000")
    notes = await store.list_notifications("slow")
    assert [n.message for n in notes] == ["Trade copied: USDC → ETH ($1000.00)"]

    again = await coordinator.copy_trade_to_subscribers(trade)

    assert again.outcomes == {"slow": Skip(reason=SkipReason.ALREADY_COPIED)}
    assert len(await store.list_notifications("slow")) == 1
