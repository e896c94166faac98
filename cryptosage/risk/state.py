"""
RiskState - the process-wide risk bookkeeping.

Single-writer discipline: every mutation goes through one of the async
methods below, all guarded by the same asyncio.Lock. Readers take a
RiskSnapshot and never touch the live object.

    record_analysis(pair, at)   cooldown stamp
    record_close(pnl)           realized pnl fast path
    rederive(...)               authoritative refresh from ledger + exchange
    halt(reason) / reset()      operator-level switches
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional

from .schema import RiskSnapshot

logger = logging.getLogger(__name__)


def start_of_day(ts: datetime) -> datetime:
    """UTC midnight of the day containing ts."""
    ts = ts.astimezone(timezone.utc) if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
    return ts.replace(hour=0, minute=0, second=0, microsecond=0)


class RiskState:
    """
    Mutable risk state, owned by the engine and written by one party at a time.

    Usage:
        state = RiskState()
        await state.rederive(total_capital=Decimal("100"),
                             available_capital=Decimal("100"),
                             daily_pnl=Decimal("0"))
        await state.record_analysis("XRP/USDT", now)
        snapshot = state.snapshot()
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self._available_capital = Decimal("0")
        self._initial_capital: Optional[Decimal] = None
        self._daily_pnl = Decimal("0")
        self._trading_day = start_of_day(self._clock())
        self._pnl_epoch: Optional[datetime] = None
        self._last_analyzed: Dict[str, datetime] = {}
        self._halted_reason: Optional[str] = None

    # =========================================================================
    # READ
    # =========================================================================

    def snapshot(self) -> RiskSnapshot:
        """Immutable copy for one cycle."""
        self._roll_day()
        return RiskSnapshot(
            available_capital=self._available_capital,
            initial_capital=self._initial_capital,
            daily_pnl=self._daily_pnl,
            last_analyzed=dict(self._last_analyzed),
            halted_reason=self._halted_reason,
        )

    def pnl_window_start(self, now: Optional[datetime] = None) -> datetime:
        """Start of the window whose closed trades count toward daily pnl."""
        day_start = start_of_day(now or self._clock())
        if self._pnl_epoch is not None and self._pnl_epoch > day_start:
            return self._pnl_epoch
        return day_start

    def _roll_day(self) -> None:
        today = start_of_day(self._clock())
        if today != self._trading_day:
            logger.info(f"New trading day {today.date()} - daily pnl reset")
            self._trading_day = today
            self._daily_pnl = Decimal("0")

    # =========================================================================
    # WRITE (single writer)
    # =========================================================================

    async def record_analysis(self, pair: str, at: Optional[datetime] = None) -> None:
        """Stamp the cooldown for a pair."""
        async with self._lock:
            self._last_analyzed[pair] = at or self._clock()

    async def record_close(self, pnl: Decimal) -> None:
        """Add realized pnl of a closed trade to today's total."""
        async with self._lock:
            self._roll_day()
            self._daily_pnl += pnl
            logger.info(f"Realized pnl {pnl:+.2f} -> daily {self._daily_pnl:+.2f}")

    async def rederive(
        self,
        total_capital: Decimal,
        available_capital: Decimal,
        daily_pnl: Decimal,
    ) -> None:
        """
        Replace capital and pnl with values rederived from exchange + ledger.

        The first positive total capital seen becomes the initial capital
        (the kill-switch denominator) until reset.
        """
        async with self._lock:
            self._roll_day()
            self._available_capital = available_capital
            self._daily_pnl = daily_pnl
            if self._initial_capital is None and total_capital > 0:
                self._initial_capital = total_capital
                logger.info(f"Initial capital captured: ${total_capital:.2f}")

    async def halt(self, reason: str) -> None:
        """Refuse new entries until reset."""
        async with self._lock:
            if self._halted_reason is None:
                logger.warning(f"TRADING HALTED: {reason}")
            self._halted_reason = reason

    async def reset(self) -> None:
        """
        Operator reset: clears cooldowns, halt flag, pnl and initial capital.

        Closed trades before the reset stop counting toward daily pnl.
        Exchange and ledger are untouched.
        """
        async with self._lock:
            now = self._clock()
            self._last_analyzed.clear()
            self._halted_reason = None
            self._daily_pnl = Decimal("0")
            self._initial_capital = None
            self._pnl_epoch = now
            self._trading_day = start_of_day(now)
            logger.warning("Risk state RESET by operator")
