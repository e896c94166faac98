"""
Risk gates: kill-switch, expected value, spread, sizing, confidence,
cooldown, and fail-closed configuration.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from cryptosage.advisory import Action, Decision
from cryptosage.portfolio import Position
from cryptosage.risk import (
    GateRequest,
    RiskCheckName,
    RiskConfig,
    RiskConfigError,
    RiskManager,
    RiskSnapshot,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def snapshot(available="100", initial="100", daily_pnl="0", last_analyzed=None, halted=None) -> RiskSnapshot:
    return RiskSnapshot(
        available_capital=Decimal(available),
        initial_capital=Decimal(initial) if initial is not None else None,
        daily_pnl=Decimal(daily_pnl),
        last_analyzed=last_analyzed or {},
        halted_reason=halted,
    )


class TestRiskManager:
    @pytest.fixture
    def config(self):
        # stop 0.004 / take 0.005 for small ATR; fees 0.0004
        return RiskConfig(
            risk_per_trade_pct=10.0,
            daily_loss_limit_pct=2.0,
            cooldown_seconds=75.0,
            confidence_threshold=0.8,
            max_spread=0.001,
            estimated_fees=0.0004,
            min_stop_pct=0.004,
            atr_stop_multiplier=0.5,
            reward_multiple=1.25,
        )

    @pytest.fixture
    def manager(self, config):
        return RiskManager(config)

    @pytest.fixture
    def entry(self):
        return GateRequest(
            pair="XRP/USDT",
            p_up=0.55,
            price=Decimal("1.0"),
            atr=0.001,
            spread=0.0001,
            slippage=0.0002,
        )

    def test_requires_config(self):
        with pytest.raises(TypeError):
            RiskManager(None)

    def test_approve_valid_entry(self, manager, entry):
        result = manager.evaluate(entry, snapshot())
        assert result.approved is True
        assert [c.name for c in result.checks] == [
            RiskCheckName.TRADING_HALTED,
            RiskCheckName.KILL_SWITCH,
            RiskCheckName.EXPECTED_VALUE,
            RiskCheckName.SPREAD,
        ]

    # ---- kill-switch -------------------------------------------------------

    def test_kill_switch_blocks_new_entry(self, manager, entry):
        result = manager.evaluate(entry, snapshot(daily_pnl="-2.5"))
        assert result.approved is False
        assert result.first_failure.name == RiskCheckName.KILL_SWITCH
        assert manager.kill_switch_active(snapshot(daily_pnl="-2.5"))

    def test_kill_switch_allows_exit(self, manager, entry):
        entry.is_exit = True
        result = manager.evaluate(entry, snapshot(daily_pnl="-2.5"))
        assert result.approved is True
        assert all(c.reason == "Bypassing for EXIT order" for c in result.checks)

    def test_kill_switch_boundary_is_inclusive(self, manager):
        assert manager.kill_switch_active(snapshot(daily_pnl="-2.0"))
        assert not manager.kill_switch_active(snapshot(daily_pnl="-1.99"))

    def test_kill_switch_inactive_without_initial_capital(self, manager):
        assert not manager.kill_switch_active(snapshot(initial=None, daily_pnl="-50"))

    def test_halted_blocks_before_everything(self, manager, entry):
        result = manager.evaluate(entry, snapshot(daily_pnl="-5", halted="two positions"))
        assert result.first_failure.name == RiskCheckName.TRADING_HALTED

    # ---- expected value ----------------------------------------------------

    def test_stop_take_from_atr(self, manager):
        assert manager.stop_take(0.001, Decimal("1.0")) == pytest.approx((0.004, 0.005))
        # ATR-driven stop, take capped at max_take_pct
        stop, take = manager.stop_take(0.04, Decimal("1.0"))
        assert stop == pytest.approx(0.02)
        assert take == pytest.approx(0.01)

    def test_expected_value_formula(self):
        ev = RiskManager.expected_value(0.55, 0.004, 0.005, 0.0006)
        assert ev == pytest.approx(0.00035)

    def test_expected_value_with_higher_costs_is_negative(self):
        # 0.55*0.005 - 0.45*0.004 - 0.0012 = -0.00025
        assert RiskManager.expected_value(0.55, 0.004, 0.005, 0.0012) == pytest.approx(-0.00025)

    def test_positive_ev_allows_planning(self, manager, entry):
        result = manager.evaluate(entry, snapshot())
        ev_check = result.check(RiskCheckName.EXPECTED_VALUE)
        assert ev_check.passed
        assert ev_check.details["expected_value"] == pytest.approx(0.00035)
        assert ev_check.details["stop_pct"] == pytest.approx(0.004)
        assert ev_check.details["take_pct"] == pytest.approx(0.005)

    def test_low_p_up_forces_hold(self, manager, entry):
        entry.p_up = 0.45
        result = manager.evaluate(entry, snapshot())
        assert result.approved is False
        assert result.first_failure.name == RiskCheckName.EXPECTED_VALUE

    def test_costs_flip_marginal_edge(self, manager):
        request = GateRequest(pair="XRP/USDT", p_up=0.5, price=Decimal("1"), atr=0.0,
                              spread=0.0, slippage=0.0)
        # gross edge 0.5*0.005 - 0.5*0.004 = 0.0005
        assert manager.evaluate(request, snapshot()).approved
        request.slippage = 0.0002
        assert not manager.evaluate(request, snapshot()).approved

    # ---- spread ------------------------------------------------------------

    def test_wide_spread_forces_hold(self, manager, entry):
        entry.spread = 0.002
        result = manager.evaluate(entry, snapshot())
        assert result.first_failure.name == RiskCheckName.SPREAD

    # ---- sizing ------------------------------------------------------------

    def test_oversized_entry_capped_and_prefixed(self, manager):
        decision = Decision(pair="XRP/USDT", action=Action.BUY, notional=Decimal("50"), rationale="go")
        sized, check = manager.size_decision(decision, snapshot(available="123.456"))
        assert sized.notional == Decimal("12.34")
        assert sized.rationale == "[ADJUSTED] go"
        assert check.passed

    def test_zero_notional_entry_set_to_cap(self, manager):
        decision = Decision(pair="XRP/USDT", action=Action.BUY, notional=Decimal("0"))
        sized, _ = manager.size_decision(decision, snapshot())
        assert sized.notional == Decimal("10.00")

    def test_entry_within_cap_untouched(self, manager):
        decision = Decision(pair="XRP/USDT", action=Action.BUY, notional=Decimal("7.5"), rationale="go")
        sized, _ = manager.size_decision(decision, snapshot())
        assert sized == decision

    def test_exit_is_full_position_size(self, manager):
        position = Position(pair="XRP/USDT", entry_price=Decimal("0.5"), size=Decimal("9.87"),
                            quantity=Decimal("19.74"))
        decision = Decision(pair="XRP/USDT", action=Action.SELL, notional=Decimal("3"))
        sized, _ = manager.size_decision(decision, snapshot(), position)
        assert sized.notional == Decimal("9.87")

    def test_buy_while_holding_becomes_hold(self, manager):
        position = Position(pair="XRP/USDT", entry_price=Decimal("0.5"), size=Decimal("10"),
                            quantity=Decimal("20"))
        decision = Decision(pair="XRP/USDT", action=Action.BUY, notional=Decimal("5"))
        sized, check = manager.size_decision(decision, snapshot(), position)
        assert sized.action == Action.HOLD
        assert sized.notional == Decimal("0")
        assert not check.passed

    def test_sell_without_position_becomes_hold(self, manager):
        decision = Decision(pair="XRP/USDT", action=Action.SELL, notional=Decimal("5"))
        sized, _ = manager.size_decision(decision, snapshot())
        assert sized.action == Action.HOLD

    # ---- confidence --------------------------------------------------------

    def test_confidence_gate_never_rewrites_action(self, manager):
        decision = Decision(pair="XRP/USDT", action=Action.BUY, notional=Decimal("10"), confidence=0.79)
        check = manager.check_confidence(decision)
        assert check.passed is False
        assert decision.action == Action.BUY

    def test_confidence_at_threshold_passes(self, manager):
        decision = Decision(pair="XRP/USDT", action=Action.SELL, notional=Decimal("10"), confidence=0.8)
        assert manager.check_confidence(decision).passed

    def test_hold_is_never_sent(self, manager):
        assert not manager.check_confidence(Decision.hold("XRP/USDT", "wait")).passed

    # ---- cooldown ----------------------------------------------------------

    def test_cooldown_boundaries(self, manager):
        risk = snapshot(last_analyzed={"XRP/USDT": T0})
        just_before = T0 + timedelta(seconds=75) - timedelta(milliseconds=1)
        just_after = T0 + timedelta(seconds=75) + timedelta(milliseconds=1)

        assert manager.eligible_pairs(["XRP/USDT"], risk, just_before) == []
        assert manager.eligible_pairs(["XRP/USDT"], risk, just_after) == ["XRP/USDT"]

    def test_never_analyzed_is_eligible_and_order_kept(self, manager):
        risk = snapshot(last_analyzed={"DOGE/USDT": T0})
        pairs = ["XRP/USDT", "DOGE/USDT", "PEPE/USDT"]
        assert manager.eligible_pairs(pairs, risk, T0) == ["XRP/USDT", "PEPE/USDT"]


class TestRiskConfig:
    def test_invalid_values_fail_closed(self):
        with pytest.raises(RiskConfigError) as exc:
            RiskConfig(risk_per_trade_pct=0, confidence_threshold=1.5)
        assert "risk_per_trade_pct" in str(exc.value)
        assert "confidence_threshold" in str(exc.value)

    def test_take_bounds_must_be_ordered(self):
        with pytest.raises(RiskConfigError):
            RiskConfig(min_take_pct=0.02, max_take_pct=0.01)

    def test_unknown_key_fails_closed(self):
        with pytest.raises(RiskConfigError):
            RiskConfig.from_dict({"risk_per_trade_pct": 5, "max_trades_per_hour": 3})

    def test_missing_file_fails_closed(self, tmp_path):
        with pytest.raises(RiskConfigError):
            RiskConfig.load_from_yaml(str(tmp_path / "missing.yaml"))

    def test_missing_section_fails_closed(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("engine:\n  quote_asset: USDT\n")
        with pytest.raises(RiskConfigError):
            RiskConfig.load_from_yaml(str(path))

    def test_loads_risk_section(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("risk:\n  risk_per_trade_pct: 5\n  cooldown_seconds: 60\n")
        config = RiskConfig.load_from_yaml(str(path))
        assert config.risk_per_trade_pct == 5
        assert config.cooldown_seconds == 60
        assert config.to_dict()["daily_loss_limit_pct"] == 2.0
