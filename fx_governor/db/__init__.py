"""
Database module for fx_governor
"""

from .trade_store import (
    PersistOutcome,
    TradeStore,
    InMemoryTradeStore,
    SqlTradeStore,
)

__all__ = [
    'PersistOutcome',
    'TradeStore',
    'InMemoryTradeStore',
    'SqlTradeStore',
]
