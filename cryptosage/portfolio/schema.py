"""
Portfolio Schema - positions and the fills they are rebuilt from.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Fill:
    """One executed trade, from the exchange's history or from the ledger."""
    pair: str
    is_buy: bool
    price: Decimal
    quantity: Decimal
    quote_quantity: Decimal
    time_ms: int = 0


@dataclass(frozen=True)
class Position:
    """
    The single open position.

    entry_reliable is False when no buy history could be matched and the
    entry price fell back to 0 - PnL for such a position is meaningless.
    """
    pair: str
    entry_price: Decimal
    size: Decimal                # invested notional (quote currency)
    quantity: Decimal            # held base quantity
    stop_pct: Optional[float] = None
    take_pct: Optional[float] = None
    entry_reliable: bool = True

    @property
    def base_asset(self) -> str:
        return self.pair.split("/")[0]

    def market_value(self, price: Decimal) -> Decimal:
        return self.quantity * price

    def unrealized_pnl(self, price: Decimal) -> Optional[Decimal]:
        """None when the entry price is unknown."""
        if not self.entry_reliable:
            return None
        return (price - self.entry_price) * self.quantity

    def unrealized_pnl_pct(self, price: Decimal) -> Optional[float]:
        if not self.entry_reliable or self.entry_price <= 0:
            return None
        return float((price - self.entry_price) / self.entry_price * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "entry_price": str(self.entry_price),
            "size": str(self.size),
            "quantity": str(self.quantity),
            "stop_pct": self.stop_pct,
            "take_pct": self.take_pct,
            "entry_reliable": self.entry_reliable,
        }


@dataclass(frozen=True)
class PortfolioView:
    """Reconciled account view at one point in time."""
    position: Optional[Position]
    quote_balance: Decimal
    total_capital: Decimal
    prices: Dict[str, Decimal]

    @property
    def has_position(self) -> bool:
        return self.position is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position.to_dict() if self.position else None,
            "quote_balance": str(self.quote_balance),
            "total_capital": str(self.total_capital),
            "prices": {pair: str(price) for pair, price in self.prices.items()},
        }
