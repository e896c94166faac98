# Portfolio Module
# Reconciles exchange balances and trade history into the single open position

from .schema import Fill, PortfolioView, Position
from .reconciler import (
    PositionReconciler,
    entry_fills,
    ledger_fills,
    reconcile_position,
    values_above_dust,
)

__all__ = [
    "Fill",
    "PortfolioView",
    "Position",
    "PositionReconciler",
    "entry_fills",
    "ledger_fills",
    "reconcile_position",
    "values_above_dust",
]
