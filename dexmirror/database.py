"""
Database setup and session management
"""
from sqlalchemy import (
    create_engine, Column, String, Boolean, DateTime, Text, ForeignKey,
    UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime
import os

from dexmirror.config import get_settings, DATA_DIR
from dexmirror.models.subscription import SubscriptionStatus, SizingMode
from dexmirror.models.ledger import NotificationType

Base = declarative_base()


def create_session_factory(database_url: str):
    """Build an engine and session factory for `database_url`"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if database_url.startswith(f"sqlite:///{DATA_DIR}"):
            os.makedirs(DATA_DIR, exist_ok=True)
    engine = create_engine(database_url, connect_args=connect_args)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


engine, SessionLocal = create_session_factory(get_settings().database_url)


# Database Models
# Decimal values are stored as strings to keep arbitrary precision.

class TraderDB(Base):
    """Users who publish trades"""
    __tablename__ = "traders"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(100), unique=True, index=True)
    username = Column(String(50), nullable=True)
    subscription_price = Column(String(40), default="0")
    created_at = Column(DateTime, default=datetime.now)


class TradeDB(Base):
    """Trades submitted by traders"""
    __tablename__ = "trades"

    id = Column(String(36), primary_key=True)
    trader_id = Column(String(36), ForeignKey("traders.id"), index=True)

    token_in = Column(String(10))
    token_out = Column(String(10))
    amount_in = Column(String(80))
    amount_out = Column(String(80))
    usd_value = Column(String(40), nullable=True)

    tx_hash = Column(String(66), unique=True, nullable=True)
    notes = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.now, index=True)


class SubscriptionDB(Base):
    """Copier -> trader subscriptions"""
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True)
    copier_id = Column(String(100), index=True)
    trader_id = Column(String(36), ForeignKey("traders.id"), index=True)
    status = Column(SQLEnum(SubscriptionStatus), default=SubscriptionStatus.ACTIVE, index=True)
    monthly_price = Column(String(40), default="0")

    start_date = Column(DateTime, default=datetime.now)
    end_date = Column(DateTime, nullable=True)

    copy_settings = relationship(
        "CopySettingsDB",
        uselist=False,
        back_populates="subscription",
        cascade="all, delete-orphan",
        lazy="joined"
    )


class CopySettingsDB(Base):
    """Per-subscription copy policy (1:1, deleted with its subscription)"""
    __tablename__ = "copy_settings"

    id = Column(String(36), primary_key=True)
    subscription_id = Column(
        String(36), ForeignKey("subscriptions.id", ondelete="CASCADE"), unique=True
    )

    copy_enabled = Column(Boolean, default=True)
    copy_amount_type = Column(SQLEnum(SizingMode), default=SizingMode.PERCENTAGE)
    copy_amount = Column(String(40), default="100")

    max_trade_size = Column(String(40), nullable=True)
    min_trade_size = Column(String(40), nullable=True)
    max_daily_loss = Column(String(40), nullable=True)
    stop_loss_percent = Column(String(40), nullable=True)

    allowed_tokens = Column(Text, nullable=True)  # JSON list
    excluded_tokens = Column(Text, nullable=True)  # JSON list

    subscription = relationship("SubscriptionDB", back_populates="copy_settings")


class CopyTradeDB(Base):
    """Ledger of copy decisions; an audit trail that outlives its trade"""
    __tablename__ = "copy_trades"
    __table_args__ = (
        UniqueConstraint("original_trade_id", "copier_id", name="uq_copy_trade_trade_copier"),
    )

    id = Column(String(36), primary_key=True)
    original_trade_id = Column(String(36), index=True)  # no FK: history survives trade deletion
    copier_id = Column(String(100), index=True)
    amount_copied = Column(String(80))
    profit_loss = Column(String(40), nullable=True)
    timestamp = Column(DateTime, default=datetime.now, index=True)


class NotificationDB(Base):
    """Polled user notifications"""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(100), index=True)
    type = Column(SQLEnum(NotificationType))
    message = Column(Text)
    read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.now, index=True)


def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)
