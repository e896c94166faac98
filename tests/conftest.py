"""
Shared fixtures: a scripted market, a scripted advisor, a controllable
clock, and a fully wired paper engine on a temporary ledger.
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from cryptosage.advisory import AdvisoryGateway
from cryptosage.controller import DecisionStreamController
from cryptosage.execution import ExecutionRecorder, PaperExecutor
from cryptosage.ledger import TradeLedger
from cryptosage.market import SnapshotBuilder, candles_to_frame
from cryptosage.portfolio import PositionReconciler
from cryptosage.risk import RiskConfig, RiskManager, RiskState
from cryptosage.selector import OpportunitySelector

PAIRS = ["XRP/USDT", "DOGE/USDT"]

# stop = 0.004, take = 0.005 whenever ATR is small relative to price
ENGINE_RISK = dict(
    risk_per_trade_pct=10.0,
    daily_loss_limit_pct=2.0,
    cooldown_seconds=75.0,
    confidence_threshold=0.8,
    max_spread=0.001,
    estimated_fees=0.0004,
    min_stop_pct=0.004,
    atr_stop_multiplier=0.5,
    reward_multiple=1.25,
    min_take_pct=0.002,
    max_take_pct=0.01,
    dust_threshold=4.5,
    min_order_notional=5.0,
)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_candles(count: int = 60, close: float = 1.0, width: float = 0.001, step: float = 0.0):
    """Kline rows oldest first; the last close equals `close`."""
    start_ms = 1_714_560_000_000
    rows = []
    for i in range(count):
        c = close - step * (count - 1 - i)
        rows.append([start_ms + i * 60_000, c, c + width, c - width, c, 1000.0])
    return rows


class FakeMarket:
    """Public market data + price source with per-pair scripting."""

    def __init__(self, pairs=PAIRS, price: str = "1.0"):
        self.frames: Dict[str, Any] = {}
        self.books: Dict[str, Dict[str, Decimal]] = {}
        self.prices: Dict[str, Decimal] = {}
        self.ping_ok = True
        for pair in pairs:
            self.set_price(pair, price)

    def set_price(self, pair: str, price: str) -> None:
        value = Decimal(price)
        self.frames[pair] = candles_to_frame(make_candles(close=float(value)))
        half = value * Decimal("0.00005")
        self.books[pair] = {"bid": value - half, "ask": value + half}
        self.prices[pair] = value

    async def get_klines(self, pair: str, interval: str, limit: int):
        return self.frames.get(pair, candles_to_frame([]))

    async def get_book_ticker(self, pair: str):
        return self.books.get(pair, {})

    async def get_prices(self, pairs):
        return {pair: self.prices[pair] for pair in pairs if pair in self.prices}

    async def ping(self) -> bool:
        return self.ping_ok


class ScriptedAdvisor:
    """
    Advisor double. Scores and plans are payload dicts, exceptions, or
    lists of either consumed one per call. `gate` blocks score calls until set.
    """

    def __init__(self, scores: Optional[Dict[str, Any]] = None, plans: Any = None, default_score=None):
        self.scores = scores or {}
        self.plans = plans
        self.default_score = default_score or {"p_up": 0.6, "score": 0.5, "rationale": "steady"}
        self.score_calls: List[tuple] = []
        self.plan_calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    @staticmethod
    def _next(script):
        if isinstance(script, list):
            script = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(script, BaseException):
            raise script
        return dict(script)

    async def score(self, request):
        self.score_calls.append((request.pair, request.prior_error))
        if self.gate is not None:
            await self.gate.wait()
        return self._next(self.scores.get(request.pair, self.default_score))

    async def plan(self, request):
        self.plan_calls.append((request.pair, request.prior_error))
        if self.plans is None:
            return {"action": "HOLD", "confidence": 0.9, "rationale": "nothing to do"}
        return self._next(self.plans)


def buy_plan(notional: float = 10.0, confidence: float = 0.9) -> Dict[str, Any]:
    return {
        "action": "BUY",
        "notional_usdt": notional,
        "order_type": "MARKET",
        "confidence": confidence,
        "rationale": "Pullback held EMA20 in 15m uptrend",
    }


def sell_plan(confidence: float = 0.9) -> Dict[str, Any]:
    return {
        "action": "SELL",
        "notional_usdt": 0,
        "confidence": confidence,
        "technical_structure_ok": False,
        "ev_ok": False,
        "rationale": "Structure broken",
    }


async def build_engine(tmp_path, advisor, market=None, risk=None, balance="100", pairs=PAIRS, executor=None):
    market = market or FakeMarket(pairs)
    clock = FakeClock()
    config = RiskConfig(**{**ENGINE_RISK, **(risk or {})})

    ledger = TradeLedger(str(tmp_path / "ledger.db"), clock=clock)
    await ledger.initialize()

    executor = executor or PaperExecutor(
        starting_balance=Decimal(balance),
        base_slippage_pct=Decimal("0"),
        noise_slippage_pct=Decimal("0"),
        size_impact_per_10k=Decimal("0"),
        fee_rate=Decimal("0"),
    )
    state = RiskState(clock=clock)
    risk_manager = RiskManager(config)
    reconciler = PositionReconciler(
        executor, market, ledger, pairs, "USDT", Decimal(str(config.dust_threshold))
    )
    recorder = ExecutionRecorder(
        executor, ledger, reconciler, state, min_order_notional=Decimal(str(config.min_order_notional))
    )
    gateway = AdvisoryGateway(advisor, retries=1, retry_delay_seconds=0)
    selector = OpportunitySelector(
        SnapshotBuilder(market, clock=clock), gateway, risk_manager, pairs, clock=clock
    )
    controller = DecisionStreamController(selector, gateway, risk_manager, state, recorder, clock=clock)

    return SimpleNamespace(
        advisor=advisor,
        market=market,
        clock=clock,
        config=config,
        ledger=ledger,
        executor=executor,
        state=state,
        risk_manager=risk_manager,
        reconciler=reconciler,
        recorder=recorder,
        gateway=gateway,
        selector=selector,
        controller=controller,
    )


async def collect(stream) -> list:
    return [event async for event in stream]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def market():
    return FakeMarket()
