"""
Trade Ledger - the durable, append-only history.

Usage:
    ledger = TradeLedger("data/ledger.db")
    await ledger.initialize()          # Creates tables if needed

    record = await ledger.append(TradeRecord(
        pair="XRP/USDT", action=Action.BUY, price=Decimal("0.52"),
        notional=Decimal("10"), status=TradeStatus.OPEN,
        rationale="OPEN: pullback to EMA20",
    ))

    history = await ledger.records()                 # oldest first
    pnl = await ledger.daily_realized_pnl(day_start)  # sum of CLOSED pnl
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, List, Optional

import aiosqlite

from .schema import SQL_SCHEMA, TradeRecord, TradeStatus, format_timestamp

logger = logging.getLogger(__name__)


class TradeLedger:
    """
    Asynchronous aiosqlite ledger.

    Appends are serialized through an asyncio.Lock (single writer) and
    timestamps are assigned here, so read-back order equals append order.
    """

    def __init__(self, db_path: str, clock: Optional[Callable[[], datetime]] = None):
        self.db_path = Path(db_path)
        self._ensure_directory()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._write_lock = asyncio.Lock()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def _get_connection(self):
        """Async context manager for database connections"""
        async with aiosqlite.connect(str(self.db_path)) as db:
            db.row_factory = aiosqlite.Row
            try:
                yield db
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error(f"Ledger database error: {e}")
                raise

    async def initialize(self) -> None:
        """
        Initialize the schema and enable WAL mode.

        Safe to call multiple times.
        """
        async with self._get_connection() as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.executescript(SQL_SCHEMA)
        logger.info(f"Trade ledger initialized (WAL mode) at {self.db_path}")

    async def append(self, record: TradeRecord) -> TradeRecord:
        """
        Append a record; the ledger assigns the timestamp.

        Returns the stored record (with timestamp).
        """
        async with self._write_lock:
            stamped = replace(record, timestamp=self._clock())
            data = stamped.to_dict()
            async with self._get_connection() as db:
                await db.execute("""
                    INSERT INTO trade_records (
                        record_id, timestamp, pair, action, price, notional, pnl,
                        quantity, rationale, status, stop_pct, take_pct,
                        confidence, order_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    data["record_id"],
                    data["timestamp"],
                    data["pair"],
                    data["action"],
                    data["price"],
                    data["notional"],
                    data["pnl"],
                    data["quantity"],
                    data["rationale"],
                    data["status"],
                    data["stop_pct"],
                    data["take_pct"],
                    data["confidence"],
                    data["order_id"],
                ))

        logger.debug(
            f"Ledger append: {stamped.pair} {stamped.action.value} "
            f"{stamped.status.value} notional={stamped.notional}"
        )
        return stamped

    async def records(self, pair: Optional[str] = None) -> List[TradeRecord]:
        """All records, oldest first (optionally for one pair)."""
        query = "SELECT * FROM trade_records"
        params: tuple = ()
        if pair is not None:
            query += " WHERE pair = ?"
            params = (pair,)
        query += " ORDER BY timestamp ASC, seq ASC"

        async with self._get_connection() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [TradeRecord.from_row(row) for row in rows]

    async def records_since(self, since: datetime) -> List[TradeRecord]:
        """Records with timestamp >= since, oldest first."""
        async with self._get_connection() as db:
            cursor = await db.execute(
                "SELECT * FROM trade_records WHERE timestamp >= ? ORDER BY timestamp ASC, seq ASC",
                (format_timestamp(since),),
            )
            rows = await cursor.fetchall()
        return [TradeRecord.from_row(row) for row in rows]

    async def daily_realized_pnl(self, day_start: datetime) -> Decimal:
        """Sum of pnl over CLOSED records since day_start."""
        records = await self.records_since(day_start)
        return sum(
            (r.pnl for r in records if r.status == TradeStatus.CLOSED),
            Decimal("0"),
        )

    async def latest_entry(self, pair: str) -> Optional[TradeRecord]:
        """Most recent OPEN record for a pair, if any."""
        async with self._get_connection() as db:
            cursor = await db.execute(
                "SELECT * FROM trade_records WHERE pair = ? AND status = ? "
                "ORDER BY timestamp DESC, seq DESC LIMIT 1",
                (pair, TradeStatus.OPEN.value),
            )
            row = await cursor.fetchone()
        return TradeRecord.from_row(row) if row else None

    async def count(self) -> int:
        async with self._get_connection() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM trade_records")
            row = await cursor.fetchone()
        return int(row[0])
