"""
Persistence collaborator for copy-trade propagation

`CopyTradeStore` is the port the fan-out engine depends on. `SqlStore` is the
SQLAlchemy implementation; every unit of work runs in a worker thread so that
store calls are await points and never block the event loop.
"""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple
from datetime import datetime
from decimal import Decimal
from uuid import uuid4
import asyncio
import json
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from dexmirror.database import (
    SessionLocal, TraderDB, TradeDB, SubscriptionDB, CopySettingsDB, CopyTradeDB, NotificationDB
)
from dexmirror.models.trader import Trader
from dexmirror.models.trade import Trade
from dexmirror.models.subscription import (
    Subscription, SubscriptionStatus, CopySettings, make_sizing
)
from dexmirror.models.ledger import CopyTrade, Notification, NotificationType

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for persistence errors"""


class NotFoundError(StoreError):
    pass


class DuplicateTradeError(StoreError):
    """A trade with the same transaction hash is already recorded"""


class DuplicateCopyTradeError(StoreError):
    """The (trade, copier) pair already has a ledger entry"""

    def __init__(self, trade_id: str, copier_id: str):
        super().__init__(f"Trade {trade_id} already copied for {copier_id}")
        self.trade_id = trade_id
        self.copier_id = copier_id


class InvalidTransitionError(StoreError):
    pass


class CopyTradeStore(ABC):
    """Reads and writes the propagation engine needs"""

    @abstractmethod
    async def active_subscriptions(self, trader_id: str) -> List[Subscription]:
        """ACTIVE subscriptions of a trader, each with its copy settings"""

    @abstractmethod
    async def active_subscriber_ids(self, trader_id: str) -> List[str]:
        """Copier ids of a trader's ACTIVE subscriptions"""

    @abstractmethod
    async def copy_trades_since(self, copier_id: str, since: datetime) -> List[CopyTrade]:
        """A copier's ledger entries with timestamp >= since"""

    @abstractmethod
    async def record_copy(self, trade_id: str, copier_id: str, amount: Decimal,
                          message: str) -> CopyTrade:
        """
        Create a ledger entry and its TRADE_COPIED notification in one
        transaction; raises DuplicateCopyTradeError for a repeated pair
        """

    @abstractmethod
    async def create_notification(
        self, user_id: str, type: NotificationType, message: str
    ) -> Notification:
        pass

    @abstractmethod
    async def create_notifications(
        self, user_ids: Iterable[str], type: NotificationType, message: str
    ) -> int:
        """Batch-create one notification per user; returns the number written"""

    @abstractmethod
    async def has_notification_since(
        self, user_id: str, type: NotificationType, since: datetime
    ) -> bool:
        pass


# ==================== Row Conversion ====================

def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _tokens(value: Optional[str]) -> List[str]:
    return json.loads(value) if value else []


def _trader_from_row(row: TraderDB) -> Trader:
    return Trader(
        id=row.id,
        user_id=row.user_id,
        username=row.username,
        subscription_price=_dec(row.subscription_price) or Decimal("0"),
        created_at=row.created_at
    )


def _trade_from_row(row: TradeDB) -> Trade:
    return Trade(
        id=row.id,
        trader_id=row.trader_id,
        token_in=row.token_in,
        token_out=row.token_out,
        amount_in=row.amount_in,
        amount_out=row.amount_out,
        usd_value=_dec(row.usd_value),
        tx_hash=row.tx_hash,
        notes=row.notes,
        timestamp=row.timestamp
    )


def _settings_from_row(row: Optional[CopySettingsDB]) -> Optional[CopySettings]:
    if row is None:
        return None
    return CopySettings(
        copy_enabled=row.copy_enabled,
        sizing=make_sizing(row.copy_amount_type, Decimal(row.copy_amount)),
        max_trade_size=_dec(row.max_trade_size),
        min_trade_size=_dec(row.min_trade_size),
        max_daily_loss=_dec(row.max_daily_loss),
        stop_loss_percent=_dec(row.stop_loss_percent),
        allowed_tokens=_tokens(row.allowed_tokens),
        excluded_tokens=_tokens(row.excluded_tokens)
    )


def _apply_settings(row: CopySettingsDB, settings: CopySettings) -> None:
    row.copy_enabled = settings.copy_enabled
    row.copy_amount_type = settings.sizing_mode
    row.copy_amount = str(settings.sizing.amount)
    row.max_trade_size = _str(settings.max_trade_size)
    row.min_trade_size = _str(settings.min_trade_size)
    row.max_daily_loss = _str(settings.max_daily_loss)
    row.stop_loss_percent = _str(settings.stop_loss_percent)
    row.allowed_tokens = json.dumps(sorted(settings.allowed_tokens)) if settings.allowed_tokens else None
    row.excluded_tokens = json.dumps(sorted(settings.excluded_tokens)) if settings.excluded_tokens else None


def _subscription_from_row(row: SubscriptionDB) -> Subscription:
    return Subscription(
        id=row.id,
        copier_id=row.copier_id,
        trader_id=row.trader_id,
        status=row.status,
        monthly_price=_dec(row.monthly_price) or Decimal("0"),
        start_date=row.start_date,
        end_date=row.end_date,
        copy_settings=_settings_from_row(row.copy_settings)
    )


def _copy_trade_from_row(row: CopyTradeDB) -> CopyTrade:
    return CopyTrade(
        id=row.id,
        original_trade_id=row.original_trade_id,
        copier_id=row.copier_id,
        amount_copied=Decimal(row.amount_copied),
        profit_loss=_dec(row.profit_loss),
        timestamp=row.timestamp
    )


def _notification_from_row(row: NotificationDB) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        message=row.message,
        read=row.read,
        created_at=row.created_at
    )


class SqlStore(CopyTradeStore):
    """SQLAlchemy-backed store"""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    async def _run(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    # ==================== Traders ====================

    async def create_trader(self, user_id: str, username: Optional[str],
                            subscription_price: Decimal) -> Trader:
        return await self._run(self._create_trader, user_id, username, subscription_price)

    def _create_trader(self, user_id, username, subscription_price) -> Trader:
        db = self._session_factory()
        try:
            row = TraderDB(
                id=str(uuid4()),
                user_id=user_id,
                username=username,
                subscription_price=str(subscription_price),
                created_at=datetime.now()
            )
            db.add(row)
            db.commit()
            return _trader_from_row(row)
        except IntegrityError as e:
            db.rollback()
            raise StoreError(f"Trader already registered for user {user_id}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def get_trader(self, trader_id: str) -> Optional[Trader]:
        return await self._run(self._get_trader, trader_id)

    def _get_trader(self, trader_id) -> Optional[Trader]:
        db = self._session_factory()
        try:
            row = db.get(TraderDB, trader_id)
            return _trader_from_row(row) if row else None
        finally:
            db.close()

    # ==================== Trades ====================

    async def create_trade(self, trader_id: str, token_in: str, token_out: str,
                           amount_in: str, amount_out: str, usd_value: Optional[Decimal],
                           tx_hash: Optional[str] = None, notes: Optional[str] = None) -> Trade:
        return await self._run(
            self._create_trade, trader_id, token_in, token_out, amount_in, amount_out,
            usd_value, tx_hash, notes
        )

    def _create_trade(self, trader_id, token_in, token_out, amount_in, amount_out,
                      usd_value, tx_hash, notes) -> Trade:
        db = self._session_factory()
        try:
            row = TradeDB(
                id=str(uuid4()),
                trader_id=trader_id,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                amount_out=amount_out,
                usd_value=_str(usd_value),
                tx_hash=tx_hash,
                notes=notes,
                timestamp=datetime.now()
            )
            db.add(row)
            db.commit()
            return _trade_from_row(row)
        except IntegrityError as e:
            db.rollback()
            raise DuplicateTradeError(f"Transaction {tx_hash} has already been recorded") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def list_trades(self, trader_id: Optional[str] = None, limit: int = 50,
                          offset: int = 0) -> Tuple[List[Trade], int]:
        return await self._run(self._list_trades, trader_id, limit, offset)

    def _list_trades(self, trader_id, limit, offset) -> Tuple[List[Trade], int]:
        db = self._session_factory()
        try:
            query = db.query(TradeDB)
            if trader_id:
                query = query.filter(TradeDB.trader_id == trader_id)
            total = query.with_entities(func.count(TradeDB.id)).scalar()
            rows = query.order_by(TradeDB.timestamp.desc()).offset(offset).limit(limit).all()
            return [_trade_from_row(r) for r in rows], total
        finally:
            db.close()

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        return await self._run(self._get_trade, trade_id)

    def _get_trade(self, trade_id) -> Optional[Trade]:
        db = self._session_factory()
        try:
            row = db.get(TradeDB, trade_id)
            return _trade_from_row(row) if row else None
        finally:
            db.close()

    async def update_trade(self, trade_id: str, token_in: str, token_out: str,
                           amount_in: str, amount_out: str, usd_value: Optional[Decimal],
                           tx_hash: Optional[str] = None, notes: Optional[str] = None) -> Trade:
        """Rewrite a trade's fields. Copy trades already recorded are left as they are."""
        return await self._run(
            self._update_trade, trade_id, token_in, token_out, amount_in, amount_out,
            usd_value, tx_hash, notes
        )

    def _update_trade(self, trade_id, token_in, token_out, amount_in, amount_out,
                      usd_value, tx_hash, notes) -> Trade:
        db = self._session_factory()
        try:
            row = db.get(TradeDB, trade_id)
            if row is None:
                raise NotFoundError(f"Trade {trade_id} not found")
            row.token_in = token_in
            row.token_out = token_out
            row.amount_in = amount_in
            row.amount_out = amount_out
            row.usd_value = _str(usd_value)
            row.tx_hash = tx_hash
            row.notes = notes
            db.commit()
            return _trade_from_row(row)
        except IntegrityError as e:
            db.rollback()
            raise DuplicateTradeError(f"Transaction {tx_hash} is already in use") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def delete_trade(self, trade_id: str) -> None:
        """Delete a trade. Its copy trades stay in the ledger."""
        await self._run(self._delete_trade, trade_id)

    def _delete_trade(self, trade_id) -> None:
        db = self._session_factory()
        try:
            row = db.get(TradeDB, trade_id)
            if row is None:
                raise NotFoundError(f"Trade {trade_id} not found")
            db.delete(row)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ==================== Subscriptions ====================

    async def active_subscriptions(self, trader_id: str) -> List[Subscription]:
        return await self._run(self._active_subscriptions, trader_id)

    def _active_subscriptions(self, trader_id) -> List[Subscription]:
        db = self._session_factory()
        try:
            rows = db.query(SubscriptionDB).filter(
                SubscriptionDB.trader_id == trader_id,
                SubscriptionDB.status == SubscriptionStatus.ACTIVE
            ).all()
            return [_subscription_from_row(r) for r in rows]
        finally:
            db.close()

    async def active_subscriber_ids(self, trader_id: str) -> List[str]:
        return await self._run(self._active_subscriber_ids, trader_id)

    def _active_subscriber_ids(self, trader_id) -> List[str]:
        db = self._session_factory()
        try:
            rows = db.query(SubscriptionDB.copier_id).filter(
                SubscriptionDB.trader_id == trader_id,
                SubscriptionDB.status == SubscriptionStatus.ACTIVE
            ).all()
            return [r.copier_id for r in rows]
        finally:
            db.close()

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return await self._run(self._get_subscription, subscription_id)

    def _get_subscription(self, subscription_id) -> Optional[Subscription]:
        db = self._session_factory()
        try:
            row = db.get(SubscriptionDB, subscription_id)
            return _subscription_from_row(row) if row else None
        finally:
            db.close()

    async def find_active_subscription(self, copier_id: str, trader_id: str) -> Optional[Subscription]:
        return await self._run(self._find_active_subscription, copier_id, trader_id)

    def _find_active_subscription(self, copier_id, trader_id) -> Optional[Subscription]:
        db = self._session_factory()
        try:
            row = db.query(SubscriptionDB).filter(
                SubscriptionDB.copier_id == copier_id,
                SubscriptionDB.trader_id == trader_id,
                SubscriptionDB.status == SubscriptionStatus.ACTIVE
            ).first()
            return _subscription_from_row(row) if row else None
        finally:
            db.close()

    async def list_subscriptions(self, copier_id: str) -> List[Subscription]:
        return await self._run(self._list_subscriptions, copier_id)

    def _list_subscriptions(self, copier_id) -> List[Subscription]:
        db = self._session_factory()
        try:
            rows = db.query(SubscriptionDB).filter(
                SubscriptionDB.copier_id == copier_id
            ).order_by(SubscriptionDB.start_date.desc()).all()
            return [_subscription_from_row(r) for r in rows]
        finally:
            db.close()

    async def create_subscription(self, copier_id: str, trader: Trader,
                                  settings: Optional[CopySettings]) -> Subscription:
        return await self._run(self._create_subscription, copier_id, trader, settings)

    def _create_subscription(self, copier_id, trader, settings) -> Subscription:
        db = self._session_factory()
        try:
            row = SubscriptionDB(
                id=str(uuid4()),
                copier_id=copier_id,
                trader_id=trader.id,
                status=SubscriptionStatus.ACTIVE,
                monthly_price=str(trader.subscription_price),
                start_date=datetime.now()
            )
            if settings is not None:
                settings_row = CopySettingsDB(id=str(uuid4()))
                _apply_settings(settings_row, settings)
                row.copy_settings = settings_row
            db.add(row)
            db.commit()
            return _subscription_from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def update_subscription_status(self, subscription_id: str,
                                         status: SubscriptionStatus) -> Subscription:
        return await self._run(self._update_subscription_status, subscription_id, status)

    def _update_subscription_status(self, subscription_id, status) -> Subscription:
        db = self._session_factory()
        try:
            row = db.get(SubscriptionDB, subscription_id)
            if row is None:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            if row.status == SubscriptionStatus.CANCELLED:
                raise InvalidTransitionError("Cancelled subscriptions cannot be changed")
            row.status = status
            row.end_date = datetime.now() if status == SubscriptionStatus.CANCELLED else None
            db.commit()
            return _subscription_from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def save_copy_settings(self, subscription_id: str, settings: CopySettings) -> CopySettings:
        return await self._run(self._save_copy_settings, subscription_id, settings)

    def _save_copy_settings(self, subscription_id, settings) -> CopySettings:
        db = self._session_factory()
        try:
            row = db.get(SubscriptionDB, subscription_id)
            if row is None:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            if row.copy_settings is None:
                row.copy_settings = CopySettingsDB(id=str(uuid4()))
            _apply_settings(row.copy_settings, settings)
            db.commit()
            return _settings_from_row(row.copy_settings)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ==================== Copy Trade Ledger ====================

    async def copy_trades_since(self, copier_id: str, since: datetime) -> List[CopyTrade]:
        return await self._run(self._copy_trades_since, copier_id, since)

    def _copy_trades_since(self, copier_id, since) -> List[CopyTrade]:
        db = self._session_factory()
        try:
            rows = db.query(CopyTradeDB).filter(
                CopyTradeDB.copier_id == copier_id,
                CopyTradeDB.timestamp >= since
            ).all()
            return [_copy_trade_from_row(r) for r in rows]
        finally:
            db.close()

    async def list_copy_trades(self, copier_id: str, limit: int = 50) -> List[CopyTrade]:
        return await self._run(self._list_copy_trades, copier_id, limit)

    def _list_copy_trades(self, copier_id, limit) -> List[CopyTrade]:
        db = self._session_factory()
        try:
            rows = db.query(CopyTradeDB).filter(
                CopyTradeDB.copier_id == copier_id
            ).order_by(CopyTradeDB.timestamp.desc()).limit(limit).all()
            return [_copy_trade_from_row(r) for r in rows]
        finally:
            db.close()

    async def record_copy(self, trade_id: str, copier_id: str, amount: Decimal,
                          message: str) -> CopyTrade:
        return await self._run(self._record_copy, trade_id, copier_id, amount, message)

    def _record_copy(self, trade_id, copier_id, amount, message) -> CopyTrade:
        db = self._session_factory()
        try:
            now = datetime.now()
            row = CopyTradeDB(
                id=str(uuid4()),
                original_trade_id=trade_id,
                copier_id=copier_id,
                amount_copied=str(amount),
                profit_loss=None,
                timestamp=now
            )
            db.add(row)
            # Flush first so a duplicate pair fails before the notification is staged
            db.flush()
            db.add(NotificationDB(
                id=str(uuid4()),
                user_id=copier_id,
                type=NotificationType.TRADE_COPIED,
                message=message,
                read=False,
                created_at=now
            ))
            db.commit()
            return _copy_trade_from_row(row)
        except IntegrityError as e:
            db.rollback()
            raise DuplicateCopyTradeError(trade_id, copier_id) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ==================== Notifications ====================

    async def create_notification(self, user_id: str, type: NotificationType,
                                  message: str) -> Notification:
        return await self._run(self._create_notification, user_id, type, message)

    def _create_notification(self, user_id, type, message) -> Notification:
        db = self._session_factory()
        try:
            row = NotificationDB(
                id=str(uuid4()),
                user_id=user_id,
                type=type,
                message=message,
                read=False,
                created_at=datetime.now()
            )
            db.add(row)
            db.commit()
            return _notification_from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def create_notifications(self, user_ids: Iterable[str], type: NotificationType,
                                   message: str) -> int:
        return await self._run(self._create_notifications, list(user_ids), type, message)

    def _create_notifications(self, user_ids, type, message) -> int:
        if not user_ids:
            return 0
        db = self._session_factory()
        try:
            now = datetime.now()
            db.add_all([
                NotificationDB(
                    id=str(uuid4()),
                    user_id=user_id,
                    type=type,
                    message=message,
                    read=False,
                    created_at=now
                )
                for user_id in user_ids
            ])
            db.commit()
            return len(user_ids)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def has_notification_since(self, user_id: str, type: NotificationType,
                                     since: datetime) -> bool:
        return await self._run(self._has_notification_since, user_id, type, since)

    def _has_notification_since(self, user_id, type, since) -> bool:
        db = self._session_factory()
        try:
            return db.query(NotificationDB.id).filter(
                NotificationDB.user_id == user_id,
                NotificationDB.type == type,
                NotificationDB.created_at >= since
            ).first() is not None
        finally:
            db.close()

    async def list_notifications(self, user_id: str, unread_only: bool = False,
                                 limit: int = 50) -> List[Notification]:
        return await self._run(self._list_notifications, user_id, unread_only, limit)

    def _list_notifications(self, user_id, unread_only, limit) -> List[Notification]:
        db = self._session_factory()
        try:
            query = db.query(NotificationDB).filter(NotificationDB.user_id == user_id)
            if unread_only:
                query = query.filter(NotificationDB.read.is_(False))
            rows = query.order_by(NotificationDB.created_at.desc()).limit(limit).all()
            return [_notification_from_row(r) for r in rows]
        finally:
            db.close()

    async def mark_notifications_read(self, user_id: str,
                                      notification_ids: Optional[List[str]] = None) -> int:
        return await self._run(self._mark_notifications_read, user_id, notification_ids)

    def _mark_notifications_read(self, user_id, notification_ids) -> int:
        db = self._session_factory()
        try:
            query = db.query(NotificationDB).filter(NotificationDB.user_id == user_id)
            if notification_ids is not None:
                query = query.filter(NotificationDB.id.in_(notification_ids))
            count = query.update({NotificationDB.read: True}, synchronize_session=False)
            db.commit()
            return count
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
