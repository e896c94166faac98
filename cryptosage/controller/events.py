"""
Cycle events - what a decision cycle reports while it runs.

A CycleStream yields ProgressEvents in state order
    IDLE -> SCANNING -> ADVISING -> GATING -> EXECUTING
and ends with exactly one CycleOutcome whose state is DONE or ERROR.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..advisory.schema import Decision
from ..ledger.schema import TradeRecord


class CycleState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    ADVISING = "advising"
    GATING = "gating"
    EXECUTING = "executing"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (CycleState.DONE, CycleState.ERROR)


STATE_ORDER = [
    CycleState.IDLE,
    CycleState.SCANNING,
    CycleState.ADVISING,
    CycleState.GATING,
    CycleState.EXECUTING,
]


class TriggerSource(Enum):
    MANUAL = "manual"
    AUTONOMOUS = "autonomous"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProgressEvent:
    """A non-terminal step of a cycle."""
    cycle_id: str
    source: TriggerSource
    state: CycleState
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "source": self.source.value,
            "state": self.state.value,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class CycleOutcome:
    """
    The terminal event of a cycle.

    DONE carries the final decision (and the ledger record when one was
    written); ERROR carries the error message and nothing was traded.
    """
    cycle_id: str
    source: TriggerSource
    state: CycleState
    message: str
    decision: Optional[Decision] = None
    record: Optional[TradeRecord] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return True

    @property
    def succeeded(self) -> bool:
        return self.state == CycleState.DONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "source": self.source.value,
            "state": self.state.value,
            "message": self.message,
            "decision": self.decision.to_dict() if self.decision else None,
            "record": self.record.to_dict() if self.record else None,
            "error": self.error,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }
