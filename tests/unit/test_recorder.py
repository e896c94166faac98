"""
ExecutionRecorder: every decision leaves exactly one ledger record, and
the portfolio is rederived from the wallet afterwards.
"""

from decimal import Decimal
from unittest.mock import Mock

import pytest

from conftest import ScriptedAdvisor, build_engine

from cryptosage.advisory import Action, Decision
from cryptosage.errors import OrderTooSmall
from cryptosage.ledger import TradeStatus


def entry(notional="10", confidence=0.9):
    return Decision(
        pair="XRP/USDT", action=Action.BUY, notional=Decimal(notional),
        confidence=confidence, rationale="breakout", stop_pct=0.004, take_pct=0.005,
    )


class TestExecutionRecorder:
    @pytest.fixture
    async def engine(self, tmp_path):
        return await build_engine(tmp_path, ScriptedAdvisor())

    @pytest.mark.asyncio
    async def test_hold_is_logged(self, engine):
        outcome = await engine.recorder.record(Decision.hold("XRP/USDT", "wait"), Decimal("1.0"))

        assert outcome.record.status == TradeStatus.LOGGED
        assert outcome.record.notional == Decimal("0")
        assert outcome.record.rationale == "wait"
        assert not outcome.sent
        assert outcome.view is not None
        assert await engine.ledger.count() == 1

    @pytest.mark.asyncio
    async def test_unsent_decision_is_logged_with_zero_notional(self, engine):
        outcome = await engine.recorder.record(
            entry(confidence=0.5), Decimal("1.0"), send=False,
            note="Confidence 0.50 below threshold 0.80",
        )

        assert outcome.record.status == TradeStatus.LOGGED
        assert outcome.record.action == Action.BUY
        assert outcome.record.notional == Decimal("0")
        assert outcome.record.rationale.startswith("[NOT SENT] Confidence 0.50 below threshold")
        assert engine.executor.get_execution_history() == []

    @pytest.mark.asyncio
    async def test_order_below_minimum_fails_without_submitting(self, engine):
        outcome = await engine.recorder.record(entry("4.994"), Decimal("1.0"))

        assert isinstance(outcome.error, OrderTooSmall)
        assert outcome.record.status == TradeStatus.FAILED
        assert outcome.record.notional == Decimal("4.99")
        assert "below the exchange minimum" in outcome.record.rationale
        assert engine.executor.get_execution_history() == []

    @pytest.mark.asyncio
    async def test_notional_rounded_half_up_before_minimum_check(self, engine):
        outcome = await engine.recorder.record(entry("4.995"), Decimal("1.0"))
        assert outcome.record.status == TradeStatus.OPEN
        assert outcome.record.notional == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_acknowledged_buy_opens_position(self, engine):
        outcome = await engine.recorder.record(entry("10"), Decimal("1.0"))

        assert outcome.sent
        assert outcome.record.status == TradeStatus.OPEN
        assert outcome.record.order_id == outcome.execution.order_id
        assert outcome.record.quantity == Decimal("10")
        assert outcome.record.rationale == "OPEN: breakout"

        position = outcome.view.position
        assert position.pair == "XRP/USDT"
        assert position.entry_price == Decimal("1")
        assert position.stop_pct == 0.004
        assert outcome.view.quote_balance == Decimal("90")

    @pytest.mark.asyncio
    async def test_acknowledged_sell_closes_with_realized_pnl(self, engine):
        await engine.recorder.record(entry("10"), Decimal("1.0"))
        engine.market.set_price("XRP/USDT", "0.9")
        position = (await engine.recorder.refresh()).position

        exit_decision = Decision(
            pair="XRP/USDT", action=Action.SELL, notional=position.size,
            confidence=0.9, rationale="Structure broken",
        )
        outcome = await engine.recorder.record(exit_decision, Decimal("0.9"), position)

        assert outcome.record.status == TradeStatus.CLOSED
        assert outcome.record.pnl == Decimal("-1")
        assert outcome.record.stop_pct == 0.004
        assert outcome.view.position is None
        assert engine.state.snapshot().daily_pnl == Decimal("-1")

    @pytest.mark.asyncio
    async def test_close_with_unknown_entry_realizes_nothing(self, engine):
        await engine.executor.set_balance("XRP", Decimal("10"))
        position = (await engine.recorder.refresh()).position
        assert position.entry_reliable is False

        outcome = await engine.recorder.record(
            Decision(pair="XRP/USDT", action=Action.SELL, notional=position.size, confidence=1.0),
            Decimal("1.0"), position,
        )
        assert outcome.record.status == TradeStatus.CLOSED
        assert outcome.record.pnl == Decimal("0")

    @pytest.mark.asyncio
    async def test_refused_order_is_failed_and_position_untouched(self, engine):
        outcome = await engine.recorder.record(entry("500"), Decimal("1.0"))

        assert outcome.record.status == TradeStatus.FAILED
        assert not outcome.execution.is_acknowledged
        assert "Insufficient balance" in outcome.record.rationale
        assert outcome.view.position is None
        assert outcome.view.quote_balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_sell_without_position_is_failed(self, engine):
        outcome = await engine.recorder.record(
            Decision(pair="XRP/USDT", action=Action.SELL, notional=Decimal("10"), confidence=0.9),
            Decimal("1.0"),
        )
        assert outcome.record.status == TradeStatus.FAILED
        assert engine.executor.get_execution_history() == []

    @pytest.mark.asyncio
    async def test_multiple_positions_halt_trading(self, engine):
        await engine.executor.set_balance("XRP", Decimal("10"))
        await engine.executor.set_balance("DOGE", Decimal("10"))

        assert await engine.recorder.refresh() is None
        snap = engine.state.snapshot()
        assert snap.is_halted
        assert "Multiple open positions" in snap.halted_reason

    @pytest.mark.asyncio
    async def test_notifier_alerted_on_open(self, engine):
        engine.recorder.notifier = Mock()
        await engine.recorder.record(Decision.hold("XRP/USDT", "wait"), Decimal("1.0"))
        engine.recorder.notifier.send_trade_alert.assert_not_called()

        outcome = await engine.recorder.record(entry("10"), Decimal("1.0"))
        engine.recorder.notifier.send_trade_alert.assert_called_once_with(outcome.record)

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_lose_the_record(self, engine):
        engine.recorder.notifier = Mock()
        engine.recorder.notifier.send_trade_alert.side_effect = RuntimeError("webhook down")

        outcome = await engine.recorder.record(entry("10"), Decimal("1.0"))
        assert outcome.record.status == TradeStatus.OPEN
        assert await engine.ledger.count() == 1
