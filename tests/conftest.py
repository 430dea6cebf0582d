"""Pytest fixtures for DexMirror tests."""
import os
import tempfile

# Keep the module-level engine away from the real data directory
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.mkdtemp(prefix='dexmirror-'), 'default.db')}"
)

from datetime import datetime
from decimal import Decimal

import pytest

from dexmirror.database import create_session_factory, init_db
from dexmirror.store import SqlStore
from dexmirror.models.trade import Trade
from dexmirror.models.subscription import CopySettings, PercentageSizing

from fakes import InMemoryStore


@pytest.fixture
def trade():
    """USDC -> ETH swap worth $1000"""
    return Trade(
        id="trade-1",
        trader_id="trader-1",
        token_in="USDC",
        token_out="ETH",
        amount_in="1000",
        amount_out="0.31",
        usd_value=Decimal("1000"),
        timestamp=datetime(2026, 10, 17, 12, 0)
    )


@pytest.fixture
def settings():
    """Copy 100% of every trade, no bounds, no filters"""
    return CopySettings(sizing=PercentageSizing(amount=Decimal("100")))


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def sql_store(tmp_path):
    engine, session_factory = create_session_factory(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield SqlStore(session_factory)
    engine.dispose()
