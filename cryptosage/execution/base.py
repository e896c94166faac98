"""
Executor base: order placement plus the wallet the reconciler reads.

PAPER or LIVE is fixed when the executor is built. A session that wants the
other mode builds a new executor (and a new session around it).
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List

from ..errors import CryptoSageError
from .schema import (
    ExecutionMode,
    ExecutionResult,
    ExecutionStatus,
    OrderRequest,
    SlippageStats,
)


class ExecutionModeImmutableError(CryptoSageError):
    """Assigning to Executor.mode after construction."""


class Executor(ABC):
    """
    Spot order executor and balance source.

    PaperExecutor fills against a virtual wallet; MexcExecutor places real
    orders. Both keep a journal of every ExecutionResult for slippage stats,
    and both answer get_balances() so reconciliation works the same way in
    either mode.
    """

    def __init__(self, mode: ExecutionMode):
        if not isinstance(mode, ExecutionMode):
            raise ValueError(f"Executor mode must be an ExecutionMode, not {mode!r}")

        self._mode = mode
        self._journal: List[ExecutionResult] = []
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

        if mode == ExecutionMode.LIVE:
            self.logger.warning("💰 LIVE executor - orders go to the exchange with real funds")
        else:
            self.logger.info("📋 PAPER executor - fills are simulated")

    @property
    def mode(self) -> ExecutionMode:
        return self._mode

    @mode.setter
    def mode(self, value):
        raise ExecutionModeImmutableError(
            f"Executor is locked to {self._mode.value}; build a new one for {value}"
        )

    @property
    def is_paper(self) -> bool:
        return self._mode == ExecutionMode.PAPER

    @abstractmethod
    async def execute(self, order: OrderRequest) -> ExecutionResult:
        """
        Submit one spot order.

        Exchange refusals and transport failures come back as a FAILED
        result (already journaled), never as an exception.
        """

    @abstractmethod
    async def get_balances(self) -> Dict[str, Decimal]:
        """Free balance per asset; assets at zero are left out."""

    def record_execution(self, result: ExecutionResult) -> None:
        self._journal.append(result)

    def get_execution_history(self) -> List[ExecutionResult]:
        return list(self._journal)

    def get_slippage_stats(self) -> SlippageStats:
        fills = [
            r for r in self._journal
            if r.status == ExecutionStatus.FILLED and r.slippage_pct is not None
        ]
        if not fills:
            return SlippageStats.empty()

        magnitudes = [abs(r.slippage_pct) for r in fills]
        worst = fills[magnitudes.index(max(magnitudes))]
        return SlippageStats(
            total_trades=len(fills),
            avg_slippage_pct=sum(magnitudes) / len(fills),
            max_slippage_pct=max(magnitudes),
            total_fees=sum((r.fee or Decimal("0") for r in fills), Decimal("0")),
            worst_order_id=worst.order_id,
        )

    def clear_history(self) -> int:
        """Empty the journal (operator reset). Returns how many entries went."""
        dropped = len(self._journal)
        self._journal = []
        self.logger.info(f"🧹 Execution journal cleared ({dropped} entries)")
        return dropped
