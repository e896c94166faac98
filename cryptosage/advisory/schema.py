"""
Advisory Schema - what the Watcher and the Executor advisors exchange with the engine.

Opportunity: the Watcher's view of one pair (p_up, score, regime, rationale)
Decision:    the Executor's concrete proposal (action, notional, order kind)

THE invariant: Decision(action=HOLD) always carries notional 0. It is
enforced at construction and Decision is frozen, so no later step can
break it.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from ..portfolio.schema import Position


class Action(Enum):
    """Trade action."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class OrderKind(Enum):
    """Order type proposed by the Executor advisor."""
    MARKET = "MARKET"
    LIMIT = "LIMIT"


def clamp_unit(value: Any, default: float = 0.0) -> float:
    """Coerce to float in [0, 1]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(1.0, max(0.0, number))


def _decimal(value: Any, default: str = "0") -> Decimal:
    try:
        return Decimal(str(value)) if value is not None else Decimal(default)
    except (InvalidOperation, ValueError):
        return Decimal(default)


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_flag(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


@dataclass(frozen=True)
class Opportunity:
    """Scored buy opportunity for one pair. Consumed once, never mutated."""
    pair: str
    p_up: float
    score: float
    regime: Dict[str, Any] = field(default_factory=dict)
    rationale: str = ""

    def __post_init__(self):
        object.__setattr__(self, "p_up", clamp_unit(self.p_up))
        object.__setattr__(self, "score", clamp_unit(self.score))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "p_up": self.p_up,
            "score": self.score,
            "regime": dict(self.regime),
            "rationale": self.rationale,
        }

    @classmethod
    def from_payload(cls, pair: str, payload: Dict[str, Any]) -> "Opportunity":
        """Parse an advisory JSON payload (pair taken from the payload if present)."""
        regime = payload.get("regime") or payload.get("context") or {}
        if not isinstance(regime, dict):
            regime = {"label": str(regime)}
        return cls(
            pair=str(payload.get("pair") or pair),
            p_up=payload.get("p_up", 0.0),
            score=payload.get("score", 0.0),
            regime=regime,
            rationale=str(payload.get("rationale", "")),
        )


@dataclass(frozen=True)
class Decision:
    """
    Concrete trading decision for one pair.

    Usage:
        decision = Decision(pair="XRP/USDT", action=Action.BUY,
                            notional=Decimal("10"), confidence=0.85,
                            rationale="Pullback to EMA20 in 15m uptrend")
        adjusted = decision.with_notional(Decimal("8"), "[ADJUSTED]")
    """
    pair: str
    action: Action
    notional: Decimal = Decimal("0")
    order_kind: OrderKind = OrderKind.MARKET
    confidence: float = 0.0
    rationale: str = ""
    stop_pct: Optional[float] = None
    take_pct: Optional[float] = None
    limit_price: Optional[Decimal] = None
    technical_structure_ok: Optional[bool] = None
    ev_ok: Optional[bool] = None
    p_up: Optional[float] = None
    expected_value: Optional[float] = None

    def __post_init__(self):
        notional = _decimal(self.notional)
        if notional < 0:
            raise ValueError(f"notional must be >= 0, got {notional}")
        if self.action == Action.HOLD:
            notional = Decimal("0")
        object.__setattr__(self, "notional", notional)
        object.__setattr__(self, "confidence", clamp_unit(self.confidence))
        if self.order_kind == OrderKind.LIMIT and self.limit_price is None and self.action != Action.HOLD:
            raise ValueError("LIMIT decision requires limit_price")

    @property
    def is_hold(self) -> bool:
        return self.action == Action.HOLD

    def with_notional(self, notional: Decimal, prefix: Optional[str] = None) -> "Decision":
        rationale = f"{prefix} {self.rationale}".strip() if prefix else self.rationale
        return replace(self, notional=notional, rationale=rationale)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "action": self.action.value,
            "notional": str(self.notional),
            "order_kind": self.order_kind.value,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "stop_pct": self.stop_pct,
            "take_pct": self.take_pct,
            "limit_price": str(self.limit_price) if self.limit_price is not None else None,
            "technical_structure_ok": self.technical_structure_ok,
            "ev_ok": self.ev_ok,
            "p_up": self.p_up,
            "expected_value": self.expected_value,
        }

    @classmethod
    def hold(cls, pair: str, rationale: str, confidence: float = 1.0, **extra) -> "Decision":
        """Factory for a HOLD decision."""
        return cls(pair=pair, action=Action.HOLD, confidence=confidence, rationale=rationale, **extra)

    @classmethod
    def from_payload(cls, pair: str, payload: Dict[str, Any]) -> "Decision":
        """
        Parse an Executor advisory payload.

        Accepts both the snake_case names and the camelCase exit
        flags (technicalStructureOK, evOK).

        Raises:
            ValueError: unknown action / order type
        """
        action = Action(str(payload.get("action", "HOLD")).upper())
        order_kind = OrderKind(str(payload.get("order_type") or payload.get("order_kind") or "MARKET").upper())
        limit_price = payload.get("limit_price")
        structure_ok = payload.get("technical_structure_ok", payload.get("technicalStructureOK"))
        ev_ok = payload.get("ev_ok", payload.get("evOK"))
        return cls(
            pair=str(payload.get("pair") or pair),
            action=action,
            notional=_decimal(payload.get("notional_usdt", payload.get("notional", 0))),
            order_kind=order_kind,
            confidence=payload.get("confidence", 0.0),
            rationale=str(payload.get("rationale", "")),
            stop_pct=_optional_float(payload.get("stop_pct")),
            take_pct=_optional_float(payload.get("take_pct")),
            limit_price=_decimal(limit_price) if limit_price is not None else None,
            technical_structure_ok=_optional_flag(structure_ok),
            ev_ok=_optional_flag(ev_ok),
        )


@dataclass
class ScoreRequest:
    """Input to the Watcher (market = summarize(snapshot)). prior_error is set only on retry attempts."""
    pair: str
    market: str
    prior_error: Optional[str] = None


@dataclass
class PlanRequest:
    """Input to the Executor advisor. prior_error is set only on retry attempts."""
    opportunity: Opportunity
    price: Decimal
    atr: float
    spread: float
    fees: float
    slippage: float
    available_capital: Decimal
    risk_per_trade: float
    position: Optional["Position"] = None
    stop_pct: Optional[float] = None
    take_pct: Optional[float] = None
    prior_error: Optional[str] = None

    @property
    def pair(self) -> str:
        return self.opportunity.pair

    @property
    def position_open(self) -> bool:
        return self.position is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "p_up": self.opportunity.p_up,
            "score": self.opportunity.score,
            "regime": dict(self.opportunity.regime),
            "watcher_rationale": self.opportunity.rationale,
            "price": str(self.price),
            "atr": self.atr,
            "spread": self.spread,
            "fees": self.fees,
            "slippage": self.slippage,
            "stop_pct": self.stop_pct,
            "take_pct": self.take_pct,
            "available_capital": str(self.available_capital),
            "risk_per_trade": self.risk_per_trade,
            "current_position": self.position.to_dict() if self.position else None,
            "prior_error": self.prior_error,
        }
