"""
Trade ledger: append-only storage with ledger-assigned timestamps.
"""

import sqlite3
from decimal import Decimal

import aiosqlite
import pytest

from conftest import FakeClock

from cryptosage.advisory import Action
from cryptosage.ledger import TradeLedger, TradeRecord, TradeStatus
from cryptosage.risk import start_of_day


def record(pair="XRP/USDT", status=TradeStatus.LOGGED, action=Action.HOLD, pnl="0", notional="0", **kwargs):
    return TradeRecord(
        pair=pair,
        action=action,
        price=Decimal("0.5123"),
        notional=Decimal(notional),
        status=status,
        pnl=Decimal(pnl),
        **kwargs,
    )


class TestTradeLedger:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    async def ledger(self, tmp_path, clock):
        ledger = TradeLedger(str(tmp_path / "nested" / "ledger.db"), clock=clock)
        await ledger.initialize()
        return ledger

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, ledger):
        await ledger.initialize()
        assert await ledger.count() == 0

    @pytest.mark.asyncio
    async def test_append_assigns_timestamp_and_round_trips_decimals(self, ledger, clock):
        stored = await ledger.append(record(
            status=TradeStatus.OPEN, action=Action.BUY, notional="10.00",
            quantity=Decimal("19.5198"), stop_pct=0.004, take_pct=0.005, confidence=0.85, order_id="abc",
        ))

        assert stored.timestamp == clock()
        [read] = await ledger.records()
        assert read == stored
        assert read.notional == Decimal("10.00")
        assert read.quantity == Decimal("19.5198")

    @pytest.mark.asyncio
    async def test_read_back_in_append_order(self, ledger, clock):
        for i in range(3):
            await ledger.append(record(rationale=f"r{i}"))
        clock.advance(1)
        await ledger.append(record(rationale="r3"))

        assert [r.rationale for r in await ledger.records()] == ["r0", "r1", "r2", "r3"]

    @pytest.mark.asyncio
    async def test_filter_by_pair(self, ledger):
        await ledger.append(record(pair="XRP/USDT"))
        await ledger.append(record(pair="DOGE/USDT"))
        assert [r.pair for r in await ledger.records("DOGE/USDT")] == ["DOGE/USDT"]

    @pytest.mark.asyncio
    async def test_update_and_delete_are_refused(self, ledger):
        await ledger.append(record())
        async with aiosqlite.connect(str(ledger.db_path)) as db:
            with pytest.raises(sqlite3.DatabaseError):
                await db.execute("UPDATE trade_records SET notional = '99'")
            with pytest.raises(sqlite3.DatabaseError):
                await db.execute("DELETE FROM trade_records")
        assert await ledger.count() == 1

    @pytest.mark.asyncio
    async def test_daily_realized_pnl_counts_closed_since_day_start(self, ledger, clock):
        await ledger.append(record(status=TradeStatus.CLOSED, action=Action.SELL, pnl="-5"))
        clock.advance(24 * 3600)
        await ledger.append(record(status=TradeStatus.CLOSED, action=Action.SELL, pnl="-1.25"))
        await ledger.append(record(status=TradeStatus.CLOSED, action=Action.SELL, pnl="0.5"))
        await ledger.append(record(status=TradeStatus.FAILED, action=Action.SELL, pnl="-100"))

        assert await ledger.daily_realized_pnl(start_of_day(clock())) == Decimal("-0.75")

    @pytest.mark.asyncio
    async def test_records_since(self, ledger, clock):
        await ledger.append(record(rationale="old"))
        clock.advance(60)
        cutoff = clock()
        await ledger.append(record(rationale="new"))

        assert [r.rationale for r in await ledger.records_since(cutoff)] == ["new"]

    @pytest.mark.asyncio
    async def test_latest_entry(self, ledger, clock):
        assert await ledger.latest_entry("XRP/USDT") is None
        await ledger.append(record(status=TradeStatus.OPEN, action=Action.BUY, stop_pct=0.003))
        clock.advance(10)
        await ledger.append(record(status=TradeStatus.OPEN, action=Action.BUY, stop_pct=0.004))
        await ledger.append(record(status=TradeStatus.LOGGED))

        latest = await ledger.latest_entry("XRP/USDT")
        assert latest.stop_pct == 0.004
