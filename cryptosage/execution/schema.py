"""
Execution Schema - Observable Order Execution

Every order attempt produces an ExecutionResult: acknowledged or failed,
with the exchange order id when there is one and the slippage against the
price the decision was made at when a fill price is known.

Sizing convention (spot):
- BUY is sized in quote currency (quote_quantity, USDT)
- SELL is sized in base quantity (the wallet balance being closed)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


def _text(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


class ExecutionMode(Enum):
    """Fixed per executor; see Executor.mode."""
    PAPER = "paper"
    LIVE = "live"


class ExecutionStatus(Enum):
    """Status of an order execution attempt."""
    FILLED = "filled"              # Fill price known (paper)
    ACKNOWLEDGED = "acknowledged"  # Exchange returned an order id
    FAILED = "failed"              # Rejected, not acknowledged, or transport error


class OrderSide(Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"


@dataclass
class OrderRequest:
    """One spot order as the recorder hands it to an executor."""
    pair: str                                # e.g., "XRP/USDT"
    side: OrderSide
    expected_price: Decimal                  # price the decision was made at
    quote_quantity: Optional[Decimal] = None  # BUY size in USDT
    quantity: Optional[Decimal] = None        # SELL size in base asset
    order_type: OrderType = OrderType.MARKET
    limit_price: Optional[Decimal] = None
    client_order_id: Optional[str] = None

    def __post_init__(self):
        if self.side == OrderSide.BUY and self.quote_quantity is None:
            if self.quantity is None:
                raise ValueError("BUY order requires quote_quantity or quantity")
        if self.side == OrderSide.SELL and self.quantity is None:
            raise ValueError("SELL order requires quantity")
        if self.order_type == OrderType.LIMIT and self.limit_price is None:
            raise ValueError("LIMIT order requires limit_price")

    @property
    def notional_value(self) -> Decimal:
        """Order value in quote currency at the expected price."""
        if self.quote_quantity is not None:
            return self.quote_quantity
        return self.expected_price * (self.quantity or Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "pair": self.pair,
            "side": self.side.value,
            "expected_price": _text(self.expected_price),
            "quote_quantity": _text(self.quote_quantity),
            "quantity": _text(self.quantity),
            "order_type": self.order_type.value,
            "limit_price": _text(self.limit_price),
            "client_order_id": self.client_order_id,
            "notional": _text(self.notional_value),
        }


@dataclass
class ExecutionResult:
    """
    Outcome of one submission. The recorder only opens or closes a position
    when is_acknowledged is True; everything else is ledgered as Failed.
    """
    status: ExecutionStatus
    fill_price: Optional[Decimal] = None
    fill_quantity: Optional[Decimal] = None
    slippage: Optional[Decimal] = None      # Absolute, positive = worse than expected
    slippage_pct: Optional[float] = None    # (slippage / expected_price) * 100
    fee: Optional[Decimal] = None
    order_id: Optional[str] = None
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    order_request: Optional[OrderRequest] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_acknowledged(self) -> bool:
        """True if the exchange accepted the order (order id present)."""
        return (
            self.status in (ExecutionStatus.FILLED, ExecutionStatus.ACKNOWLEDGED)
            and bool(self.order_id)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "fill_price": _text(self.fill_price),
            "fill_quantity": _text(self.fill_quantity),
            "slippage": _text(self.slippage),
            "slippage_pct": self.slippage_pct,
            "fee": _text(self.fee),
            "order_id": self.order_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "is_acknowledged": self.is_acknowledged,
            "order_request": self.order_request.to_dict() if self.order_request else None,
            "details": self.details
        }

    @classmethod
    def filled(
        cls,
        order_request: OrderRequest,
        fill_price: Decimal,
        fill_quantity: Decimal,
        fee: Decimal,
        order_id: str,
        details: Optional[Dict[str, Any]] = None
    ) -> "ExecutionResult":
        """Fill with a known price; slippage is signed so positive means worse."""
        slippage = fill_price - order_request.expected_price
        if order_request.side == OrderSide.SELL:
            slippage = -slippage

        slippage_pct = (
            float(slippage / order_request.expected_price * 100)
            if order_request.expected_price > 0 else 0.0
        )

        return cls(
            status=ExecutionStatus.FILLED,
            fill_price=fill_price,
            fill_quantity=fill_quantity,
            slippage=slippage,
            slippage_pct=slippage_pct,
            fee=fee,
            order_id=order_id,
            message="Order filled",
            order_request=order_request,
            details=details or {}
        )

    @classmethod
    def acknowledged(
        cls,
        order_request: OrderRequest,
        order_id: str,
        details: Optional[Dict[str, Any]] = None
    ) -> "ExecutionResult":
        """Factory for exchange acknowledgements without fill information."""
        return cls(
            status=ExecutionStatus.ACKNOWLEDGED,
            order_id=order_id,
            message="Order acknowledged",
            order_request=order_request,
            details=details or {}
        )

    @classmethod
    def failed(
        cls,
        order_request: Optional[OrderRequest],
        reason: str,
        details: Optional[Dict[str, Any]] = None
    ) -> "ExecutionResult":
        """Factory for failed orders."""
        return cls(
            status=ExecutionStatus.FAILED,
            message=reason,
            order_request=order_request,
            details=details or {"error": reason}
        )


@dataclass
class SlippageStats:
    """
    Aggregate slippage over filled orders.

    Usage:
        stats = executor.get_slippage_stats()
        if stats.avg_slippage_pct > 0.1:
            print("Slippage exceeds the modeled estimate")
    """
    total_trades: int
    avg_slippage_pct: float
    max_slippage_pct: float
    total_fees: Decimal
    worst_order_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "avg_slippage_pct": self.avg_slippage_pct,
            "max_slippage_pct": self.max_slippage_pct,
            "total_fees": _text(self.total_fees),
            "worst_order_id": self.worst_order_id
        }

    @classmethod
    def empty(cls) -> "SlippageStats":
        return cls(
            total_trades=0,
            avg_slippage_pct=0.0,
            max_slippage_pct=0.0,
            total_fees=Decimal("0")
        )
