"""
DexMirror - Main Application

FastAPI server with:
- Trade submission, which triggers copy-trade fan-out in the background
- Copy settings and subscription management
- Polled notifications and the copy-trade ledger
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from dexmirror.config import get_settings, Settings
from dexmirror.database import init_db
from dexmirror.store import (
    SqlStore, DuplicateTradeError, InvalidTransitionError, NotFoundError, StoreError
)
from dexmirror.brain.risk import RiskGate
from dexmirror.engine.ledger import LedgerWriter
from dexmirror.engine.fanout import FanOutCoordinator
from dexmirror.engine.dispatcher import TradeDispatcher
from dexmirror.models.trader import TraderRegistration
from dexmirror.models.trade import TradeSubmission, TradeUpdate
from dexmirror.models.subscription import (
    CopySettings, PercentageSizing, SubscriptionRequest, SubscriptionStatus,
    SubscriptionStatusUpdate, CopySettingsUpdate
)
from dexmirror.models.ledger import MarkReadRequest, NotificationType
from dexmirror.models.decision import NegativeValuePolicy

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S"
)
logger = logging.getLogger(__name__)

# Settings given to every new subscription
DEFAULT_COPY_SETTINGS = CopySettings(
    copy_enabled=True,
    sizing=PercentageSizing(amount=Decimal("100")),
    max_trade_size=Decimal("10000"),
    min_trade_size=Decimal("10")
)


def build_dispatcher(store: SqlStore, settings: Settings) -> TradeDispatcher:
    """Wire the propagation engine on top of a store"""
    ledger = LedgerWriter(store)
    risk_gate = RiskGate(store, ledger, dedupe_alerts=settings.dedupe_risk_alerts)
    coordinator = FanOutCoordinator(
        store,
        risk_gate,
        ledger,
        negative_value_policy=NegativeValuePolicy(settings.negative_value_policy),
        subscriber_timeout=settings.fanout_subscriber_timeout
    )
    return TradeDispatcher(coordinator, ledger)


# Global state
store = SqlStore()
dispatcher = build_dispatcher(store, settings)


def get_store() -> SqlStore:
    return store


def get_dispatcher() -> TradeDispatcher:
    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("🚀 Starting DexMirror...")
    init_db()

    yield

    # Shutdown: let in-flight fan-outs finish
    if dispatcher.pending:
        logger.info(f"Waiting for {dispatcher.pending} background tasks...")
    await dispatcher.drain()
    logger.info("👋 DexMirror stopped")


# Create FastAPI app
app = FastAPI(
    title="DexMirror",
    description="Copy-trading marketplace: publish trades, mirror them into subscribers' ledgers",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== REST API Routes ====================

@app.get("/api/status")
async def get_status():
    """Service health"""
    return {
        "status": "ok",
        "pending_tasks": dispatcher.pending,
        "timestamp": datetime.now().isoformat()
    }


@app.post("/api/traders", status_code=201)
async def register_trader(body: TraderRegistration, store: SqlStore = Depends(get_store)):
    """Register a user as a trader"""
    try:
        trader = await store.create_trader(body.user_id, body.username, body.subscription_price)
    except StoreError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"trader": trader}


@app.post("/api/traders/{trader_id}/trades", status_code=201)
async def submit_trade(
    trader_id: str,
    body: TradeSubmission,
    store: SqlStore = Depends(get_store),
    dispatcher: TradeDispatcher = Depends(get_dispatcher)
):
    """
    Record a new trade, then copy it to subscribers in the background.

    The response never waits on, or reports, fan-out results.
    """
    trader = await store.get_trader(trader_id)
    if not trader:
        raise HTTPException(status_code=404, detail="Trader not found")

    try:
        trade = await store.create_trade(
            trader_id=trader.id,
            token_in=body.token_in,
            token_out=body.token_out,
            amount_in=body.amount_in,
            amount_out=body.amount_out,
            usd_value=body.usd_value,
            tx_hash=body.tx_hash,
            notes=body.notes
        )
    except DuplicateTradeError:
        raise HTTPException(status_code=409, detail="This transaction has already been recorded.")

    try:
        dispatcher.submit(trade, trader.display_name)
    except Exception as e:
        logger.error(f"Could not schedule fan-out for trade {trade.id}: {e}")

    return {"message": "Trade submitted successfully", "trade": trade}


@app.get("/api/trades")
async def get_trades(
    trader_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    store: SqlStore = Depends(get_store)
):
    """Get trade history"""
    trades, total = await store.list_trades(trader_id, limit, offset)
    return {
        "trades": trades,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < total
        }
    }


async def _owned_trade(store: SqlStore, trade_id: str, user_id: str):
    trade = await store.get_trade(trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    trader = await store.get_trader(trade.trader_id)
    if not trader or trader.user_id != user_id:
        raise HTTPException(status_code=403, detail="You can only change your own trades")
    return trade


@app.get("/api/trades/{trade_id}")
async def get_trade(trade_id: str, store: SqlStore = Depends(get_store)):
    trade = await store.get_trade(trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return {"trade": trade}


@app.put("/api/trades/{trade_id}")
async def update_trade(trade_id: str, body: TradeUpdate, store: SqlStore = Depends(get_store)):
    """Edit a trade. Copies already made from it are not touched."""
    await _owned_trade(store, trade_id, body.user_id)
    try:
        trade = await store.update_trade(
            trade_id,
            token_in=body.token_in,
            token_out=body.token_out,
            amount_in=body.amount_in,
            amount_out=body.amount_out,
            usd_value=body.usd_value,
            tx_hash=body.tx_hash,
            notes=body.notes
        )
    except DuplicateTradeError:
        raise HTTPException(status_code=409, detail="This transaction hash is already in use")
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Trade not found")
    return {"message": "Trade updated successfully", "trade": trade}


@app.delete("/api/trades/{trade_id}")
async def delete_trade(trade_id: str, user_id: str, store: SqlStore = Depends(get_store)):
    """Delete a trade. Its copy trades remain in copiers' ledgers."""
    await _owned_trade(store, trade_id, user_id)
    try:
        await store.delete_trade(trade_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Trade not found")
    logger.info(f"🗑️ Trade {trade_id} deleted by {user_id}")
    return {"message": "Trade deleted successfully"}


# ==================== Subscriptions ====================

@app.get("/api/subscriptions")
async def get_subscriptions(copier_id: str, store: SqlStore = Depends(get_store)):
    return {"subscriptions": await store.list_subscriptions(copier_id)}


@app.post("/api/subscriptions", status_code=201)
async def subscribe(body: SubscriptionRequest, store: SqlStore = Depends(get_store)):
    """Subscribe a copier to a trader with default copy settings"""
    trader = await store.get_trader(body.trader_id)
    if not trader:
        raise HTTPException(status_code=404, detail="Trader not found")
    if trader.user_id == body.copier_id:
        raise HTTPException(status_code=400, detail="Cannot subscribe to yourself")
    if await store.find_active_subscription(body.copier_id, trader.id):
        raise HTTPException(status_code=400, detail="Already subscribed to this trader")

    subscription = await store.create_subscription(body.copier_id, trader, DEFAULT_COPY_SETTINGS)
    await store.create_notification(
        body.copier_id,
        NotificationType.SUBSCRIPTION_STARTED,
        f"You are now subscribed to {trader.display_name}"
    )
    return {"subscription": subscription}


@app.patch("/api/subscriptions/{subscription_id}")
async def update_subscription(
    subscription_id: str,
    body: SubscriptionStatusUpdate,
    store: SqlStore = Depends(get_store)
):
    """Pause, resume or cancel a subscription. Cancellation is final."""
    subscription = await store.get_subscription(subscription_id)
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    if subscription.copier_id != body.copier_id:
        raise HTTPException(status_code=403, detail="Unauthorized")

    try:
        updated = await store.update_subscription_status(subscription_id, body.status)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Subscription not found")

    if subscription.status != body.status:
        if body.status == SubscriptionStatus.CANCELLED:
            note_type = NotificationType.SUBSCRIPTION_ENDED
        elif body.status == SubscriptionStatus.ACTIVE:
            note_type = NotificationType.SUBSCRIPTION_STARTED
        else:
            note_type = None
        if note_type is not None:
            await store.create_notification(
                body.copier_id, note_type, f"Subscription {body.status.value.lower()}"
            )

    return {"subscription": updated}


# ==================== Copy Settings ====================

async def _owned_subscription(store: SqlStore, subscription_id: str, copier_id: str):
    subscription = await store.get_subscription(subscription_id)
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    if subscription.copier_id != copier_id:
        raise HTTPException(status_code=403, detail="Unauthorized")
    return subscription


@app.get("/api/copy-settings/{subscription_id}")
async def get_copy_settings(
    subscription_id: str,
    copier_id: str,
    store: SqlStore = Depends(get_store)
):
    subscription = await _owned_subscription(store, subscription_id, copier_id)
    return {"copy_settings": subscription.copy_settings}


@app.patch("/api/copy-settings/{subscription_id}")
async def update_copy_settings(
    subscription_id: str,
    body: CopySettingsUpdate,
    store: SqlStore = Depends(get_store)
):
    """Update copy settings; creates them if the subscription has none"""
    subscription = await _owned_subscription(store, subscription_id, body.copier_id)
    try:
        merged = body.apply(subscription.copy_settings)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    saved = await store.save_copy_settings(subscription_id, merged)
    return {"copy_settings": saved}


# ==================== Notifications & Ledger ====================

@app.get("/api/notifications")
async def get_notifications(
    user_id: str,
    unread_only: bool = False,
    store: SqlStore = Depends(get_store)
):
    """Latest 50 notifications, newest first"""
    return {"notifications": await store.list_notifications(user_id, unread_only, limit=50)}


@app.patch("/api/notifications")
async def mark_notifications_read(body: MarkReadRequest, store: SqlStore = Depends(get_store)):
    """Mark the given notifications (or all of them) as read"""
    updated = await store.mark_notifications_read(body.user_id, body.notification_ids)
    return {"success": True, "updated": updated}


@app.get("/api/copy-trades")
async def get_copy_trades(
    copier_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    store: SqlStore = Depends(get_store)
):
    return {"copy_trades": await store.list_copy_trades(copier_id, limit)}


# ==================== Main Entry Point ====================

def main():
    """Run the application"""
    uvicorn.run(
        "dexmirror.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
