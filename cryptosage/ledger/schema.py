"""
Trade Ledger Schema

THE append-only history. Every analysis outcome lands here as exactly one
TradeRecord, and Position / daily PnL are rederived from it.

Record statuses:
- OPEN:    BUY acknowledged by the exchange (new position)
- CLOSED:  SELL acknowledged (position exited, pnl realized)
- LOGGED:  decision recorded, nothing sent (HOLD, low confidence, preview)
- FAILED:  order attempted but refused (too small, rejected, not acknowledged)

Design Principles:
- Records are never updated or deleted
- Decimal stored as TEXT to preserve precision
- Timestamps assigned by the ledger at append time (UTC, fixed-width ISO)
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from ..advisory.schema import Action


class TradeStatus(Enum):
    """Ledger record status."""
    OPEN = "open"
    CLOSED = "closed"
    LOGGED = "logged"
    FAILED = "failed"


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def format_timestamp(ts: datetime) -> str:
    """Fixed-width UTC ISO string - sorts lexicographically."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def decimal_to_str(d: Optional[Decimal]) -> Optional[str]:
    """Convert Decimal to string for storage, preserving None"""
    return str(d) if d is not None else None


def str_to_decimal(s: Optional[str]) -> Optional[Decimal]:
    """Convert string back to Decimal, preserving None"""
    return Decimal(s) if s is not None else None


@dataclass(frozen=True)
class TradeRecord:
    """
    One immutable ledger entry.

    timestamp is None until the ledger appends the record.
    """
    pair: str
    action: Action
    price: Decimal
    notional: Decimal
    status: TradeStatus
    rationale: str = ""
    pnl: Decimal = Decimal("0")
    quantity: Optional[Decimal] = None
    stop_pct: Optional[float] = None
    take_pct: Optional[float] = None
    confidence: Optional[float] = None
    order_id: Optional[str] = None
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: Optional[datetime] = None

    @property
    def is_entry(self) -> bool:
        return self.status == TradeStatus.OPEN

    @property
    def is_exit(self) -> bool:
        return self.status == TradeStatus.CLOSED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database storage"""
        return {
            "record_id": self.record_id,
            "timestamp": format_timestamp(self.timestamp) if self.timestamp else None,
            "pair": self.pair,
            "action": self.action.value,
            "price": decimal_to_str(self.price),
            "notional": decimal_to_str(self.notional),
            "pnl": decimal_to_str(self.pnl),
            "quantity": decimal_to_str(self.quantity),
            "rationale": self.rationale,
            "status": self.status.value,
            "stop_pct": self.stop_pct,
            "take_pct": self.take_pct,
            "confidence": self.confidence,
            "order_id": self.order_id,
        }

    @classmethod
    def from_row(cls, row) -> "TradeRecord":
        return cls(
            record_id=row["record_id"],
            timestamp=parse_timestamp(row["timestamp"]),
            pair=row["pair"],
            action=Action(row["action"]),
            price=str_to_decimal(row["price"]),
            notional=str_to_decimal(row["notional"]),
            pnl=str_to_decimal(row["pnl"]),
            quantity=str_to_decimal(row["quantity"]),
            rationale=row["rationale"] or "",
            status=TradeStatus(row["status"]),
            stop_pct=row["stop_pct"],
            take_pct=row["take_pct"],
            confidence=row["confidence"],
            order_id=row["order_id"],
        )


SQL_SCHEMA = """
-- =============================================================================
-- TRADE LEDGER: append-only, never UPDATE, never DELETE
-- =============================================================================
CREATE TABLE IF NOT EXISTS trade_records (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id TEXT NOT NULL UNIQUE,
    timestamp TEXT NOT NULL,          -- fixed-width UTC ISO-8601
    pair TEXT NOT NULL,
    action TEXT NOT NULL,             -- BUY / SELL / HOLD
    price TEXT NOT NULL,              -- Decimal as string
    notional TEXT NOT NULL,
    pnl TEXT NOT NULL,
    quantity TEXT,
    rationale TEXT,
    status TEXT NOT NULL,             -- open / closed / logged / failed
    stop_pct REAL,
    take_pct REAL,
    confidence REAL,
    order_id TEXT                     -- exchange order id when acknowledged
);

CREATE INDEX IF NOT EXISTS idx_trade_records_timestamp ON trade_records(timestamp);
CREATE INDEX IF NOT EXISTS idx_trade_records_pair_status ON trade_records(pair, status);

CREATE TRIGGER IF NOT EXISTS trade_records_no_update
BEFORE UPDATE ON trade_records
BEGIN
    SELECT RAISE(ABORT, 'trade_records is append-only');
END;

CREATE TRIGGER IF NOT EXISTS trade_records_no_delete
BEFORE DELETE ON trade_records
BEGIN
    SELECT RAISE(ABORT, 'trade_records is append-only');
END;
"""
