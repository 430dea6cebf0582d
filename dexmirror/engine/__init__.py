# Engine package - Trade propagation
from dexmirror.engine.ledger import LedgerWriter
from dexmirror.engine.fanout import FanOutCoordinator
from dexmirror.engine.dispatcher import TradeDispatcher

__all__ = ["LedgerWriter", "FanOutCoordinator", "TradeDispatcher"]
