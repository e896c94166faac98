"""
Ledger Module - append-only trade history.

Usage:
    from cryptosage.ledger import TradeLedger, TradeRecord, TradeStatus

    ledger = TradeLedger("data/ledger.db")
    await ledger.initialize()
    await ledger.append(record)
"""

from .schema import SQL_SCHEMA, TradeRecord, TradeStatus, format_timestamp
from .store import TradeLedger

__all__ = [
    "SQL_SCHEMA",
    "TradeLedger",
    "TradeRecord",
    "TradeStatus",
    "format_timestamp",
]
