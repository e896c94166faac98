"""
Risk Schema - Observable Risk Results

Every gate returns a RiskCheckResult: what it checked, what it found,
pass or fail. A kill-switch refusal is a failed KILL_SWITCH check, not an
exception - it silently turns a new entry into HOLD.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class RiskCheckName(Enum):
    """All gates, in evaluation order."""
    TRADING_HALTED = "trading_halted"
    KILL_SWITCH = "kill_switch"
    EXPECTED_VALUE = "expected_value"
    SPREAD = "spread"
    SIZING = "sizing"
    CONFIDENCE = "confidence"
    COOLDOWN = "cooldown"


@dataclass
class RiskCheckResult:
    """
    Result of a single risk check.

    Example:
        RiskCheckResult(
            name=RiskCheckName.KILL_SWITCH,
            passed=False,
            reason="Daily loss limit reached: -2.50% <= -2.00%",
            details={"daily_pnl": "-25.00", "initial_capital": "1000"},
            threshold="-2.00%",
            actual="-2.50%"
        )
    """
    name: RiskCheckName
    passed: bool
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)
    threshold: Optional[str] = None
    actual: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization / progress events."""
        return {
            "name": self.name.value,
            "passed": self.passed,
            "reason": self.reason,
            "threshold": self.threshold,
            "actual": self.actual,
            "details": self.details
        }


@dataclass
class RiskResult:
    """
    The complete result of a gate evaluation.

    Usage:
        result = risk_manager.evaluate(request, snapshot)
        if not result.approved:
            print(f"Forced HOLD: {result.rejection_reason}")
            print(f"Failed check: {result.first_failure.name.value}")
    """
    approved: bool
    rejection_reason: Optional[str]
    checks: List[RiskCheckResult]
    first_failure: Optional[RiskCheckResult] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def failed_checks(self) -> List[RiskCheckResult]:
        """List of checks that failed."""
        return [check for check in self.checks if not check.passed]

    def check(self, name: RiskCheckName) -> Optional[RiskCheckResult]:
        """Find a check by name."""
        return next((c for c in self.checks if c.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": self.approved,
            "rejection_reason": self.rejection_reason,
            "timestamp": self.timestamp.isoformat(),
            "first_failure": self.first_failure.to_dict() if self.first_failure else None,
            "checks": {check.name.value: check.to_dict() for check in self.checks}
        }

    @classmethod
    def approved_result(cls, checks: List[RiskCheckResult]) -> "RiskResult":
        """Factory for approved entries - all checks passed."""
        return cls(
            approved=True,
            rejection_reason=None,
            checks=checks,
            first_failure=None
        )

    @classmethod
    def rejected_result(
        cls,
        checks: List[RiskCheckResult],
        first_failure: RiskCheckResult
    ) -> "RiskResult":
        """Factory for rejected entries - at least one check failed."""
        return cls(
            approved=False,
            rejection_reason=first_failure.reason,
            checks=checks,
            first_failure=first_failure
        )


@dataclass
class GateRequest:
    """
    Input to the pre-planning gates - what are we about to ask the planner for?

    For a new entry every gate runs; for an exit (is_exit) every gate is
    bypassed, exits are always allowed.
    """
    pair: str
    p_up: float
    price: Decimal
    atr: float
    spread: float
    slippage: float
    is_exit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "p_up": self.p_up,
            "price": str(self.price),
            "atr": self.atr,
            "spread": self.spread,
            "slippage": self.slippage,
            "is_exit": self.is_exit,
        }


@dataclass(frozen=True)
class RiskSnapshot:
    """
    Read-only copy of RiskState for one cycle.

    Components other than the recorder only ever see this.
    """
    available_capital: Decimal
    initial_capital: Optional[Decimal]
    daily_pnl: Decimal
    last_analyzed: Mapping[str, datetime]
    halted_reason: Optional[str] = None

    @property
    def daily_pnl_ratio(self) -> float:
        """daily_pnl / initial_capital (0 when initial capital unknown)."""
        if not self.initial_capital:
            return 0.0
        return float(self.daily_pnl / self.initial_capital)

    @property
    def is_halted(self) -> bool:
        return self.halted_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available_capital": str(self.available_capital),
            "initial_capital": str(self.initial_capital) if self.initial_capital is not None else None,
            "daily_pnl": str(self.daily_pnl),
            "daily_pnl_ratio": self.daily_pnl_ratio,
            "halted_reason": self.halted_reason,
            "last_analyzed": {pair: ts.isoformat() for pair, ts in self.last_analyzed.items()},
        }
