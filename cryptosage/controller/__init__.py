# Controller Module
# Decision cycles as event streams, plus the autonomous scheduler

from .events import (
    STATE_ORDER,
    CycleOutcome,
    CycleState,
    ProgressEvent,
    TriggerSource,
)
from .streaming import CycleStream, DecisionStreamController
from .autopilot import AutonomousScheduler, ExchangeStatusMonitor, TickResult

__all__ = [
    "AutonomousScheduler",
    "CycleOutcome",
    "CycleState",
    "CycleStream",
    "DecisionStreamController",
    "ExchangeStatusMonitor",
    "ProgressEvent",
    "STATE_ORDER",
    "TickResult",
    "TriggerSource",
]
