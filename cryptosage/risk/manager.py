"""
Risk Manager - Observable Gates for Spot Entries

Every check returns a RiskCheckResult instead of a bool, so every forced
HOLD is explainable.

Gate order for a new entry (fail-fast, all captured for the event stream):
1. Trading Halted  - multiple positions detected, operator must reset
2. Kill Switch     - daily realized pnl at or below -daily_loss_limit_pct
3. Expected Value  - EV = p_up*take - (1-p_up)*stop - (fees+slippage) > 0
4. Spread          - (ask-bid)/mid <= max_spread

After planning:
5. Sizing          - cap new entries at risk_per_trade_pct of capital,
                     exits are always the full position size
6. Confidence      - BUY/SELL is sent only at confidence >= threshold

Scan-level:
7. Cooldown        - a pair analyzed less than cooldown_seconds ago is skipped

Exits bypass gates 1-4: closing is always allowed.

Usage:
    risk_manager = RiskManager(config)
    result = risk_manager.evaluate(gate_request, state.snapshot())
    if not result.approved:
        decision = Decision.hold(pair, result.rejection_reason)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import yaml

from ..advisory.schema import Action, Decision
from ..errors import ConfigError
from .schema import (
    GateRequest,
    RiskCheckName,
    RiskCheckResult,
    RiskResult,
    RiskSnapshot,
)

if TYPE_CHECKING:
    from ..portfolio.schema import Position

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class RiskConfigError(ConfigError):
    """Raised when risk configuration is invalid or missing."""
    pass


@dataclass
class RiskConfig:
    """
    Risk configuration - all thresholds in one place.

    FAIL CLOSED PRINCIPLE:
    - Missing config file -> RiskConfigError (not defaults)
    - Invalid values -> RiskConfigError (not silent correction)
    - Unknown keys -> RiskConfigError (typos are not ignored)

    Defaults exist for unit tests with explicit construction.
    Production code loads through load_from_yaml() / from_dict().
    """
    risk_per_trade_pct: float = 10.0
    daily_loss_limit_pct: float = 2.0
    cooldown_seconds: float = 75.0
    confidence_threshold: float = 0.8
    max_spread: float = 0.001
    estimated_fees: float = 0.001
    min_stop_pct: float = 0.0015
    atr_stop_multiplier: float = 0.8
    reward_multiple: float = 1.3
    min_take_pct: float = 0.002
    max_take_pct: float = 0.01
    dust_threshold: float = 4.5
    min_order_notional: float = 5.0

    def __post_init__(self):
        """Validate config values - fail closed on invalid."""
        self._validate()

    def _validate(self):
        """
        Validate all config values are sane.

        Raises RiskConfigError on any invalid value.
        """
        errors = []

        if not 0 < self.risk_per_trade_pct <= 100:
            errors.append(f"risk_per_trade_pct must be in (0, 100], got {self.risk_per_trade_pct}")
        if self.daily_loss_limit_pct <= 0:
            errors.append(f"daily_loss_limit_pct must be > 0, got {self.daily_loss_limit_pct}")
        if self.cooldown_seconds < 0:
            errors.append(f"cooldown_seconds must be >= 0, got {self.cooldown_seconds}")
        if not 0 <= self.confidence_threshold <= 1:
            errors.append(f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}")

        # Cost and spread fractions
        if self.max_spread <= 0:
            errors.append(f"max_spread must be > 0, got {self.max_spread}")
        if self.estimated_fees < 0:
            errors.append(f"estimated_fees must be >= 0, got {self.estimated_fees}")

        # Stop / take shape
        if self.min_stop_pct <= 0:
            errors.append(f"min_stop_pct must be > 0, got {self.min_stop_pct}")
        if self.atr_stop_multiplier <= 0:
            errors.append(f"atr_stop_multiplier must be > 0, got {self.atr_stop_multiplier}")
        if self.reward_multiple <= 0:
            errors.append(f"reward_multiple must be > 0, got {self.reward_multiple}")
        if self.min_take_pct <= 0:
            errors.append(f"min_take_pct must be > 0, got {self.min_take_pct}")
        if self.max_take_pct < self.min_take_pct:
            errors.append(
                f"max_take_pct must be >= min_take_pct, got {self.max_take_pct} < {self.min_take_pct}"
            )

        if self.dust_threshold < 0:
            errors.append(f"dust_threshold must be >= 0, got {self.dust_threshold}")
        if self.min_order_notional <= 0:
            errors.append(f"min_order_notional must be > 0, got {self.min_order_notional}")

        if errors:
            raise RiskConfigError(f"Invalid risk configuration: {'; '.join(errors)}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskConfig":
        """Build from a parsed 'risk' section. Unknown keys are an error."""
        try:
            return cls(**data)
        except TypeError as e:
            raise RiskConfigError(f"Invalid risk config structure: {e}")

    @classmethod
    def load_from_yaml(cls, path: str = "config.yaml") -> "RiskConfig":
        """
        Load risk settings from YAML file.

        FAIL CLOSED: Raises RiskConfigError if the file is missing or
        unparseable, the 'risk' section is missing, or any value is invalid.
        """
        config_path = Path(path)
        if not config_path.exists():
            raise RiskConfigError(
                f"Risk config file not found: {path}. "
                f"Cannot run without explicit risk configuration."
            )

        try:
            with open(config_path, "r") as f:
                full_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RiskConfigError(f"Failed to parse risk config {path}: {e}")

        if full_config is None:
            raise RiskConfigError(f"Risk config file is empty: {path}")

        risk_data = full_config.get("risk")
        if risk_data is None:
            raise RiskConfigError(
                f"No 'risk' section in config file: {path}. "
                f"Risk configuration is required."
            )
        return cls.from_dict(risk_data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "risk_per_trade_pct": self.risk_per_trade_pct,
            "daily_loss_limit_pct": self.daily_loss_limit_pct,
            "cooldown_seconds": self.cooldown_seconds,
            "confidence_threshold": self.confidence_threshold,
            "max_spread": self.max_spread,
            "estimated_fees": self.estimated_fees,
            "min_stop_pct": self.min_stop_pct,
            "atr_stop_multiplier": self.atr_stop_multiplier,
            "reward_multiple": self.reward_multiple,
            "min_take_pct": self.min_take_pct,
            "max_take_pct": self.max_take_pct,
            "dust_threshold": self.dust_threshold,
            "min_order_notional": self.min_order_notional,
        }


class RiskManager:
    """
    The gate keeper. Stateless: everything it knows about the account
    arrives as a RiskSnapshot.
    """

    def __init__(self, config: RiskConfig):
        """
        FAIL CLOSED: Config is REQUIRED, not optional.
        Passing None raises TypeError (no default fallback).
        """
        if config is None:
            raise TypeError(
                "RiskManager requires explicit RiskConfig. "
                "Use RiskConfig.load_from_yaml() to load from file, "
                "or RiskConfig(...) with explicit values for tests."
            )
        self.config = config

    # =========================================================================
    # Stop / take / expected value
    # =========================================================================

    def stop_take(self, atr: float, price: Decimal) -> Tuple[float, float]:
        """
        ATR-derived stop and take fractions.

            stop = max(min_stop_pct, atr_stop_multiplier * atr / price)
            take = max(min_take_pct, min(reward_multiple * stop, max_take_pct))
        """
        cfg = self.config
        atr_fraction = atr / float(price) if price > 0 else 0.0
        stop_pct = max(cfg.min_stop_pct, cfg.atr_stop_multiplier * atr_fraction)
        take_pct = max(cfg.min_take_pct, min(cfg.reward_multiple * stop_pct, cfg.max_take_pct))
        return stop_pct, take_pct

    @staticmethod
    def expected_value(p_up: float, stop_pct: float, take_pct: float, costs: float) -> float:
        """EV per unit notional: p_up*take - (1-p_up)*stop - costs."""
        return p_up * take_pct - (1.0 - p_up) * stop_pct - costs

    def kill_switch_active(self, snapshot: RiskSnapshot) -> bool:
        return not self._check_kill_switch(snapshot).passed

    # =========================================================================
    # Pre-planning gates
    # =========================================================================

    def evaluate(self, request: GateRequest, snapshot: RiskSnapshot) -> RiskResult:
        """
        Run the pre-planning gates and return the complete result.

        Args:
            request: the candidate being gated
            snapshot: read-only RiskState for this cycle

        Returns:
            RiskResult with approved/rejected status and all check details.
            The EXPECTED_VALUE check's details carry stop_pct, take_pct and
            expected_value for the planner.
        """
        checks: List[RiskCheckResult] = []
        first_failure: Optional[RiskCheckResult] = None

        check_methods = [
            (RiskCheckName.TRADING_HALTED, lambda: self._check_trading_halted(snapshot)),
            (RiskCheckName.KILL_SWITCH, lambda: self._check_kill_switch(snapshot)),
            (RiskCheckName.EXPECTED_VALUE, lambda: self._check_expected_value(request)),
            (RiskCheckName.SPREAD, lambda: self._check_spread(request)),
        ]

        for check_name, check_method in check_methods:
            if request.is_exit:
                result = RiskCheckResult(
                    name=check_name,
                    passed=True,
                    reason="Bypassing for EXIT order",
                    details={"is_exit": True},
                    threshold="N/A",
                    actual="EXIT"
                )
            else:
                result = check_method()

            checks.append(result)

            if not result.passed and first_failure is None:
                first_failure = result
                logger.warning(
                    f"Risk check FAILED: {check_name.value} - {result.reason}"
                )

        if first_failure:
            return RiskResult.rejected_result(checks, first_failure)

        logger.info(f"All risk checks PASSED for {request.pair}")
        return RiskResult.approved_result(checks)

    # =========================================================================
    # Layer 1: Trading Halted
    # =========================================================================
    def _check_trading_halted(self, snapshot: RiskSnapshot) -> RiskCheckResult:
        if snapshot.is_halted:
            return RiskCheckResult(
                name=RiskCheckName.TRADING_HALTED,
                passed=False,
                reason=f"Trading is halted: {snapshot.halted_reason}",
                details={"halted_reason": snapshot.halted_reason},
                threshold="not halted",
                actual="halted"
            )
        return RiskCheckResult(
            name=RiskCheckName.TRADING_HALTED,
            passed=True,
            reason="Trading is active",
            threshold="not halted",
            actual="active"
        )

    # =========================================================================
    # Layer 2: Kill Switch (daily realized loss)
    # =========================================================================
    def _check_kill_switch(self, snapshot: RiskSnapshot) -> RiskCheckResult:
        limit_pct = self.config.daily_loss_limit_pct
        threshold = f"-{limit_pct:.2f}%"

        if not snapshot.initial_capital:
            return RiskCheckResult(
                name=RiskCheckName.KILL_SWITCH,
                passed=True,
                reason="Initial capital unknown - daily loss not measurable yet",
                details={"daily_pnl": str(snapshot.daily_pnl)},
                threshold=threshold,
                actual="N/A"
            )

        pnl_pct = snapshot.daily_pnl_ratio * 100
        details = {
            "daily_pnl": str(snapshot.daily_pnl),
            "initial_capital": str(snapshot.initial_capital),
            "daily_pnl_pct": pnl_pct,
            "limit_pct": limit_pct,
        }

        if pnl_pct <= -limit_pct:
            return RiskCheckResult(
                name=RiskCheckName.KILL_SWITCH,
                passed=False,
                reason=f"Daily loss limit reached: {pnl_pct:.2f}% <= {threshold}",
                details=details,
                threshold=threshold,
                actual=f"{pnl_pct:.2f}%"
            )

        return RiskCheckResult(
            name=RiskCheckName.KILL_SWITCH,
            passed=True,
            reason=f"Daily pnl {pnl_pct:+.2f}% within limit",
            details=details,
            threshold=threshold,
            actual=f"{pnl_pct:.2f}%"
        )

    # =========================================================================
    # Layer 3: Expected Value
    # =========================================================================
    def _check_expected_value(self, request: GateRequest) -> RiskCheckResult:
        stop_pct, take_pct = self.stop_take(request.atr, request.price)
        costs = self.config.estimated_fees + request.slippage
        ev = self.expected_value(request.p_up, stop_pct, take_pct, costs)
        details = {
            "p_up": request.p_up,
            "stop_pct": stop_pct,
            "take_pct": take_pct,
            "fees": self.config.estimated_fees,
            "slippage": request.slippage,
            "expected_value": ev,
        }

        if ev <= 0:
            return RiskCheckResult(
                name=RiskCheckName.EXPECTED_VALUE,
                passed=False,
                reason=f"Negative expected value: EV={ev:.5f} (p_up={request.p_up:.2f})",
                details=details,
                threshold="> 0",
                actual=f"{ev:.5f}"
            )

        return RiskCheckResult(
            name=RiskCheckName.EXPECTED_VALUE,
            passed=True,
            reason=f"Positive expected value: EV={ev:.5f}",
            details=details,
            threshold="> 0",
            actual=f"{ev:.5f}"
        )

    # =========================================================================
    # Layer 4: Spread
    # =========================================================================
    def _check_spread(self, request: GateRequest) -> RiskCheckResult:
        max_spread = self.config.max_spread
        details = {"spread": request.spread, "max_spread": max_spread}

        if request.spread > max_spread:
            return RiskCheckResult(
                name=RiskCheckName.SPREAD,
                passed=False,
                reason=f"Spread too wide: {request.spread:.4%} > {max_spread:.4%}",
                details=details,
                threshold=f"<= {max_spread:.4%}",
                actual=f"{request.spread:.4%}"
            )

        return RiskCheckResult(
            name=RiskCheckName.SPREAD,
            passed=True,
            reason=f"Spread {request.spread:.4%} within limit",
            details=details,
            threshold=f"<= {max_spread:.4%}",
            actual=f"{request.spread:.4%}"
        )

    # =========================================================================
    # Layer 5: Sizing
    # =========================================================================
    def size_decision(
        self,
        decision: Decision,
        snapshot: RiskSnapshot,
        position: Optional["Position"] = None,
    ) -> Tuple[Decision, RiskCheckResult]:
        """
        Enforce notional rules on a planned decision.

        - HOLD keeps notional 0.
        - SELL of the held pair closes the full position size.
        - BUY while a position is open, or SELL with nothing held, becomes HOLD
          (spot only, one position at a time).
        - A new entry with notional 0 or above the cap is set to the cap
          and its rationale prefixed with "[ADJUSTED]".
        """
        if decision.is_hold:
            return decision, self._sizing_result(True, "HOLD carries no size", decision)

        if position is not None:
            if decision.action == Action.SELL and decision.pair == position.pair:
                closed = decision.with_notional(position.size)
                return closed, self._sizing_result(
                    True, f"Exit sized to full position ${position.size:.2f}", closed
                )
            hold = Decision.hold(
                decision.pair,
                f"Position already open in {position.pair} - {decision.action.value} not allowed",
                p_up=decision.p_up,
            )
            return hold, self._sizing_result(False, hold.rationale, decision)

        if decision.action == Action.SELL:
            hold = Decision.hold(decision.pair, "No open position to sell", p_up=decision.p_up)
            return hold, self._sizing_result(False, hold.rationale, decision)

        cap = self.entry_cap(snapshot.available_capital)
        if decision.notional <= 0 or decision.notional > cap:
            adjusted = decision.with_notional(cap, "[ADJUSTED]")
            logger.info(
                f"Sizing adjusted {decision.pair}: ${decision.notional} -> ${cap} "
                f"({self.config.risk_per_trade_pct}% of ${snapshot.available_capital:.2f})"
            )
            return adjusted, self._sizing_result(
                True, f"Notional adjusted to cap ${cap}", adjusted, cap
            )

        return decision, self._sizing_result(
            True, f"Notional ${decision.notional} within cap ${cap}", decision, cap
        )

    def entry_cap(self, available_capital: Decimal) -> Decimal:
        """available_capital * risk_per_trade_pct, rounded down to cents."""
        cap = available_capital * Decimal(str(self.config.risk_per_trade_pct)) / Decimal("100")
        return cap.quantize(CENT, rounding=ROUND_DOWN)

    def _sizing_result(
        self,
        passed: bool,
        reason: str,
        decision: Decision,
        cap: Optional[Decimal] = None,
    ) -> RiskCheckResult:
        return RiskCheckResult(
            name=RiskCheckName.SIZING,
            passed=passed,
            reason=reason,
            details={"action": decision.action.value, "notional": str(decision.notional)},
            threshold=f"<= ${cap}" if cap is not None else "N/A",
            actual=f"${decision.notional}"
        )

    # =========================================================================
    # Layer 6: Confidence
    # =========================================================================
    def check_confidence(self, decision: Decision) -> RiskCheckResult:
        """
        BUY/SELL is sent only at confidence >= threshold.

        The action itself is never rewritten here; a failing check means
        the decision is recorded as Logged instead of sent.
        """
        threshold = self.config.confidence_threshold
        if decision.is_hold:
            return RiskCheckResult(
                name=RiskCheckName.CONFIDENCE,
                passed=False,
                reason="HOLD decisions are never sent",
                threshold=f">= {threshold:.2f}",
                actual=f"{decision.confidence:.2f}"
            )
        passed = decision.confidence >= threshold
        return RiskCheckResult(
            name=RiskCheckName.CONFIDENCE,
            passed=passed,
            reason=(
                f"Confidence {decision.confidence:.2f} meets threshold"
                if passed else
                f"Confidence {decision.confidence:.2f} below threshold {threshold:.2f}"
            ),
            details={"confidence": decision.confidence},
            threshold=f">= {threshold:.2f}",
            actual=f"{decision.confidence:.2f}"
        )

    # =========================================================================
    # Layer 7: Cooldown
    # =========================================================================
    def check_cooldown(self, pair: str, snapshot: RiskSnapshot, now: datetime) -> RiskCheckResult:
        """A pair is eligible once now - last_analyzed >= cooldown_seconds."""
        cooldown = self.config.cooldown_seconds
        last = snapshot.last_analyzed.get(pair)
        if last is None:
            return RiskCheckResult(
                name=RiskCheckName.COOLDOWN,
                passed=True,
                reason=f"{pair} never analyzed",
                threshold=f">= {cooldown:.0f}s",
                actual="never"
            )

        elapsed = (now - last).total_seconds()
        if elapsed < cooldown:
            return RiskCheckResult(
                name=RiskCheckName.COOLDOWN,
                passed=False,
                reason=f"{pair} in cooldown: {elapsed:.1f}s < {cooldown:.0f}s",
                details={"last_analyzed": last.isoformat(), "remaining": cooldown - elapsed},
                threshold=f">= {cooldown:.0f}s",
                actual=f"{elapsed:.1f}s"
            )
        return RiskCheckResult(
            name=RiskCheckName.COOLDOWN,
            passed=True,
            reason=f"{pair} cooled down ({elapsed:.1f}s)",
            details={"last_analyzed": last.isoformat()},
            threshold=f">= {cooldown:.0f}s",
            actual=f"{elapsed:.1f}s"
        )

    def eligible_pairs(
        self,
        pairs: Sequence[str],
        snapshot: RiskSnapshot,
        now: datetime,
    ) -> List[str]:
        """Pairs whose cooldown has expired, in configured order."""
        eligible = []
        for pair in pairs:
            result = self.check_cooldown(pair, snapshot, now)
            if result.passed:
                eligible.append(pair)
            else:
                logger.debug(result.reason)
        return eligible
