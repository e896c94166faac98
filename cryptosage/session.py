"""
Trading Session - the operator surface.

    toggle / set_mode   manual <-> autonomous (starts / stops the scheduler)
    get_decision        run a MANUAL cycle without sending anything
    execute             run a MANUAL cycle that may send an order
    force_close         SELL the held position regardless of advisory output
    reset               clear RiskState, cooldowns and the halt flag
    status              one dict with everything worth showing

build_session() wires the whole engine from Settings and Credentials.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from .advisory import AdvisoryGateway, OpenAIAdvisor
from .advisory.schema import Action, Decision
from .config import Credentials, Settings
from .controller import (
    AutonomousScheduler,
    CycleStream,
    DecisionStreamController,
    ExchangeStatusMonitor,
    TriggerSource,
)
from .exchange import MexcClient
from .execution import Executor, ExecutionRecorder, MexcExecutor, PaperExecutor, RecordOutcome
from .ledger import TradeLedger
from .market import SnapshotBuilder
from .notifier import DiscordNotifier
from .portfolio import PositionReconciler
from .risk import RiskManager, RiskState
from .selector import OpportunitySelector

logger = logging.getLogger(__name__)


class OperatingMode(Enum):
    MANUAL = "manual"
    AUTONOMOUS = "autonomous"


class TradingSession:
    """
    Usage:
        session = await build_session(Settings.load_from_yaml(), Credentials.from_env())
        async for event in session.get_decision():
            print(event.state.value, event.message)
        await session.set_mode(OperatingMode.AUTONOMOUS)
        ...
        await session.shutdown()
    """

    def __init__(
        self,
        controller: DecisionStreamController,
        scheduler: AutonomousScheduler,
        executor: Executor,
        ledger: TradeLedger,
        monitor: Optional[ExchangeStatusMonitor] = None,
        client: Optional[MexcClient] = None,
    ):
        self.controller = controller
        self.scheduler = scheduler
        self.executor = executor
        self.ledger = ledger
        self.monitor = monitor
        self.client = client
        self.mode = OperatingMode.MANUAL
        self._scheduler_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None

    # =========================================================================
    # MODE
    # =========================================================================

    async def start(self) -> None:
        """Start the exchange heartbeat."""
        if self.monitor is not None and self._monitor_task is None:
            await self.monitor.check()
            self._monitor_task = asyncio.create_task(self.monitor.run(), name="exchange-monitor")

    async def set_mode(self, mode: OperatingMode) -> OperatingMode:
        if mode == self.mode:
            return self.mode

        if mode == OperatingMode.AUTONOMOUS:
            self._scheduler_task = asyncio.create_task(self.scheduler.run(), name="autonomous-scheduler")
        else:
            await self._stop_scheduler()

        self.mode = mode
        logger.info(f"Operating mode: {mode.value}")
        return self.mode

    async def toggle(self) -> OperatingMode:
        target = OperatingMode.MANUAL if self.mode == OperatingMode.AUTONOMOUS else OperatingMode.AUTONOMOUS
        return await self.set_mode(target)

    async def _stop_scheduler(self) -> None:
        self.scheduler.shutdown()
        task, self._scheduler_task = self._scheduler_task, None
        if task is not None and not task.done():
            # An in-flight cycle is its own task and runs to completion
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # ACTIONS
    # =========================================================================

    def get_decision(self) -> CycleStream:
        """Preview: the decision is recorded as Logged and nothing is sent."""
        return self.controller.run_cycle(TriggerSource.MANUAL, execute=False)

    def execute(self) -> CycleStream:
        return self.controller.run_cycle(TriggerSource.MANUAL, execute=True)

    async def force_close(self, reason: str = "Force close by operator") -> Optional[RecordOutcome]:
        """
        SELL the whole held position at market, bypassing advisory and
        confidence. Returns None when nothing is held (or trading is halted
        because the position is ambiguous).
        """
        recorder = self.controller.recorder
        async with self.controller.position_lock:
            view = await recorder.refresh()
            if view is None:
                logger.warning("Force close refused: position is ambiguous, resolve on the exchange")
                return None
            position = view.position
            if position is None:
                logger.info("Force close: no open position")
                return None

            price = view.prices.get(position.pair, position.entry_price)
            decision = Decision(
                pair=position.pair,
                action=Action.SELL,
                notional=position.size,
                confidence=1.0,
                rationale=reason,
                stop_pct=position.stop_pct,
                take_pct=position.take_pct,
            )
            logger.warning(f"🛑 FORCE CLOSE {position.pair} ({position.quantity} @ ~{price})")
            return await recorder.record(decision, price, position, send=True)

    async def reset(self) -> Dict[str, Any]:
        """Clear local risk bookkeeping. The exchange and the ledger are untouched."""
        await self.controller.state.reset()
        cleared = self.executor.clear_history()
        return {
            "reset_at": datetime.now(timezone.utc).isoformat(),
            "execution_history_cleared": cleared,
            "risk": self.controller.state.snapshot().to_dict(),
        }

    async def status(self) -> Dict[str, Any]:
        risk = self.controller.state.snapshot()
        return {
            "mode": self.mode.value,
            "execution_mode": self.executor.mode.value,
            "busy": self.controller.is_busy(),
            "kill_switch_active": self.controller.risk_manager.kill_switch_active(risk),
            "risk": risk.to_dict(),
            "ledger_records": await self.ledger.count(),
            "slippage": self.executor.get_slippage_stats().to_dict(),
            "scheduler": self.scheduler.get_status(),
        }

    async def shutdown(self) -> None:
        await self._stop_scheduler()
        if self._monitor_task is not None:
            self.monitor.shutdown()
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
        if self.client is not None:
            await self.client.close()
        logger.info("Trading session shut down")


async def build_session(
    settings: Settings,
    credentials: Credentials,
    advisor=None,
    notifier: Optional[DiscordNotifier] = None,
) -> TradingSession:
    """
    Wire the engine. Paper mode trades against a PaperExecutor but still
    reads market data from the exchange's public endpoints.
    """
    engine = settings.engine
    client = MexcClient(credentials.mexc_api_key, credentials.mexc_secret_key)

    if engine.execution_mode == "live":
        if not credentials.has_exchange_keys:
            raise ValueError("Live mode requires MEXC_API_KEY and MEXC_SECRET_KEY")
        executor: Executor = MexcExecutor(client)
        balance_source, history_source = client, client
    else:
        executor = PaperExecutor(
            starting_balance=Decimal(str(engine.paper_starting_balance)),
            quote_asset=engine.quote_asset,
        )
        balance_source, history_source = executor, None

    ledger = TradeLedger(engine.ledger_path)
    await ledger.initialize()

    state = RiskState()
    risk_manager = RiskManager(settings.risk)
    reconciler = PositionReconciler(
        balance_source,
        client,
        ledger,
        engine.tradable_pairs,
        engine.quote_asset,
        Decimal(str(settings.risk.dust_threshold)),
        history_source=history_source,
    )
    if notifier is None and credentials.discord_webhook_url:
        notifier = DiscordNotifier(credentials.discord_webhook_url)
    recorder = ExecutionRecorder(
        executor,
        ledger,
        reconciler,
        state,
        min_order_notional=Decimal(str(settings.risk.min_order_notional)),
        notifier=notifier,
    )

    gateway = AdvisoryGateway.from_config(
        advisor or OpenAIAdvisor.from_config(settings.advisory, api_key=credentials.openai_api_key),
        settings.advisory,
    )
    selector = OpportunitySelector(
        SnapshotBuilder.from_config(client, engine),
        gateway,
        risk_manager,
        engine.tradable_pairs,
    )
    controller = DecisionStreamController(selector, gateway, risk_manager, state, recorder)
    monitor = ExchangeStatusMonitor(client, interval_seconds=engine.status_check_interval_seconds)
    scheduler = AutonomousScheduler(controller, monitor, interval_seconds=engine.autonomous_interval_seconds)

    logger.info(
        f"Session ready: {executor.mode.value} mode, pairs={engine.tradable_pairs}, "
        f"risk={settings.risk.to_dict()}"
    )
    return TradingSession(controller, scheduler, executor, ledger, monitor=monitor, client=client)
