# Execution Module
# Paper / live executors with an immutable mode, and the ledger recorder

from .schema import (
    ExecutionMode,
    ExecutionResult,
    ExecutionStatus,
    OrderRequest,
    OrderSide,
    OrderType,
    SlippageStats,
)
from .base import ExecutionModeImmutableError, Executor
from .paper import PaperExecutor
from .live import MexcExecutor
from .recorder import ExecutionRecorder, RecordOutcome

__all__ = [
    "ExecutionMode",
    "ExecutionModeImmutableError",
    "ExecutionRecorder",
    "ExecutionResult",
    "ExecutionStatus",
    "Executor",
    "MexcExecutor",
    "OrderRequest",
    "OrderSide",
    "OrderType",
    "PaperExecutor",
    "RecordOutcome",
    "SlippageStats",
]
