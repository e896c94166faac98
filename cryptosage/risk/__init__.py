# Risk Module
# Observable gates: every check explains its verdict

from .schema import (
    GateRequest,
    RiskCheckName,
    RiskCheckResult,
    RiskResult,
    RiskSnapshot,
)
from .manager import RiskConfig, RiskConfigError, RiskManager
from .state import RiskState, start_of_day

__all__ = [
    "GateRequest",
    "RiskCheckName",
    "RiskCheckResult",
    "RiskConfig",
    "RiskConfigError",
    "RiskManager",
    "RiskResult",
    "RiskSnapshot",
    "RiskState",
    "start_of_day",
]
