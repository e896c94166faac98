"""
Autopilot - the recurring autonomous trigger and the exchange heartbeat.

AutonomousScheduler runs one AUTONOMOUS cycle per interval. A tick is
skipped (never queued) when:
- a cycle is still in flight
- trading is halted
- the kill-switch is active
- the exchange status monitor reports the connection down

Both loops are fail-safe: errors are logged and the loop continues.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..errors import CycleInProgress, ExchangeError
from .events import CycleOutcome, TriggerSource
from .streaming import DecisionStreamController

logger = logging.getLogger(__name__)


class ExchangeStatusMonitor:
    """
    Pings the exchange on a fixed interval and publishes connected / disconnected.

    Usage:
        monitor = ExchangeStatusMonitor(client, interval_seconds=60)
        asyncio.create_task(monitor.run())
        if monitor.connected: ...
    """

    def __init__(self, client, interval_seconds: float = 60.0, on_change: Optional[Callable[[bool], None]] = None):
        self.client = client
        self.interval_seconds = interval_seconds
        self.on_change = on_change
        self.connected = False
        self.last_checked: Optional[datetime] = None
        self._shutdown = False

    async def check(self) -> bool:
        """Ping once and update `connected`."""
        try:
            ok = await self.client.ping()
        except ExchangeError as e:
            logger.warning(f"Exchange ping failed: {e}")
            ok = False

        self.last_checked = datetime.now(timezone.utc)
        if ok != self.connected:
            logger.info(f"Exchange {'connected' if ok else 'DISCONNECTED'}")
            self.connected = ok
            if self.on_change:
                self.on_change(ok)
        return ok

    async def run(self) -> None:
        logger.info("Exchange status monitor starting...")
        while not self._shutdown:
            try:
                await self.check()
            except Exception as e:
                logger.error(f"Error in status check: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)
        logger.info("Exchange status monitor stopped")

    def shutdown(self) -> None:
        self._shutdown = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
        }


@dataclass
class TickResult:
    """What one scheduler tick did."""
    timestamp: datetime
    ran: bool
    skip_reason: Optional[str] = None
    outcome: Optional[CycleOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "ran": self.ran,
            "skip_reason": self.skip_reason,
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }


class AutonomousScheduler:
    """
    Fixed-interval driver for AUTONOMOUS cycles.

    Usage:
        scheduler = AutonomousScheduler(controller, monitor, interval_seconds=90)
        task = asyncio.create_task(scheduler.run())
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        controller: DecisionStreamController,
        monitor: Optional[ExchangeStatusMonitor] = None,
        interval_seconds: float = 90.0,
        on_event: Optional[Callable[[Any], None]] = None,
    ):
        self.controller = controller
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self.on_event = on_event
        self.last_tick: Optional[TickResult] = None
        self._tick_count = 0
        self._shutdown = False

    @property
    def running(self) -> bool:
        return not self._shutdown

    def skip_reason(self) -> Optional[str]:
        """Why the next tick would be skipped, or None if it would run."""
        if self.controller.is_busy():
            return "Cycle in flight"
        risk = self.controller.state.snapshot()
        if risk.is_halted:
            return f"Trading halted: {risk.halted_reason}"
        if self.controller.risk_manager.kill_switch_active(risk):
            return "Kill-switch active"
        if self.monitor is not None and not self.monitor.connected:
            return "Exchange disconnected"
        return None

    async def tick(self) -> TickResult:
        """Run one autonomous cycle to completion, or skip it."""
        self._tick_count += 1
        now = datetime.now(timezone.utc)

        reason = self.skip_reason()
        if reason is not None:
            logger.info(f"Autonomous tick #{self._tick_count} skipped: {reason}")
            self.last_tick = TickResult(timestamp=now, ran=False, skip_reason=reason)
            return self.last_tick

        try:
            stream = self.controller.run_cycle(TriggerSource.AUTONOMOUS, execute=True)
        except CycleInProgress as e:
            logger.info(f"Autonomous tick #{self._tick_count} skipped: {e}")
            self.last_tick = TickResult(timestamp=now, ran=False, skip_reason=str(e))
            return self.last_tick

        outcome = None
        async for event in stream:
            if self.on_event:
                self.on_event(event)
            if event.is_terminal:
                outcome = event

        self.last_tick = TickResult(timestamp=now, ran=True, outcome=outcome)
        return self.last_tick

    async def run(self) -> None:
        """
        Main autonomous loop.

        Runs until shutdown() is called.
        """
        self._shutdown = False
        logger.info(f"Autonomous mode starting (every {self.interval_seconds:.0f}s)...")
        while not self._shutdown:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in autonomous tick: {e}", exc_info=True)

            await asyncio.sleep(self.interval_seconds)

        logger.info("Autonomous mode stopped")

    def shutdown(self) -> None:
        """Signal graceful shutdown."""
        logger.info("Autonomous shutdown requested")
        self._shutdown = True

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": not self._shutdown,
            "interval_seconds": self.interval_seconds,
            "tick_count": self._tick_count,
            "next_tick_skip_reason": self.skip_reason(),
            "last_tick": self.last_tick.to_dict() if self.last_tick else None,
            "exchange": self.monitor.to_dict() if self.monitor else None,
        }
