"""
Decision Stream Controller - one decision cycle as an async event stream.

    IDLE -> SCANNING -> ADVISING -> GATING -> EXECUTING -> DONE
                                                     any -> ERROR

SCANNING   reconcile the portfolio, snapshot and score pairs
ADVISING   pre-planning gates (halt, kill-switch, EV, spread), then the planner
GATING     sizing and confidence
EXECUTING  exactly one ledger record through the ExecutionRecorder

Concurrency rules:
- One cycle in flight per trigger source. Starting another supersedes the
  first while it is still before EXECUTING, otherwise CycleInProgress.
- A single position lock serializes EXECUTING across sources, and is held
  for the whole cycle when a position is open.
- ERROR never writes risk state, cooldown stamps, or the ledger.

Usage:
    stream = controller.run_cycle(TriggerSource.MANUAL)
    async for event in stream:
        print(event.state.value, event.message)
        if event.is_terminal:
            print(event.decision)
"""

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Union

from ..advisory.gateway import AdvisoryGateway
from ..advisory.schema import Action, Decision, PlanRequest
from ..errors import AdvisoryUnavailable, CycleInProgress, ExchangeError, InsufficientData
from ..execution.recorder import ExecutionRecorder
from ..portfolio.schema import Position
from ..risk.manager import RiskManager
from ..risk.schema import GateRequest
from ..risk.state import RiskState
from ..selector import OpportunitySelector, PairScan, Selection
from .events import CycleOutcome, CycleState, ProgressEvent, TriggerSource

logger = logging.getLogger(__name__)

NO_PAIR = "NONE"

StreamEvent = Union[ProgressEvent, CycleOutcome]


class CycleStream:
    """
    Async iterator over one cycle's events. Ends with exactly one
    CycleOutcome. Single use: iterating it a second time raises RuntimeError.
    """

    def __init__(self, cycle_id: str, source: TriggerSource):
        self.cycle_id = cycle_id
        self.source = source
        self.state = CycleState.IDLE
        self.superseded = False
        self._queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        self._task: Optional["asyncio.Task[CycleOutcome]"] = None
        self._iterated = False
        self._finished = False

    def __aiter__(self) -> "CycleStream":
        if self._iterated:
            raise RuntimeError(f"Cycle {self.cycle_id} stream can only be consumed once")
        self._iterated = True
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.is_terminal:
            self._finished = True
        return event

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def outcome(self) -> CycleOutcome:
        """Wait for the terminal event without consuming the stream."""
        return await asyncio.shield(self._task)

    def supersede(self) -> None:
        self.superseded = True
        if self._task is not None:
            self._task.cancel()

    def emit(self, state: CycleState, message: str, **data: Any) -> None:
        self.state = state
        self._queue.put_nowait(ProgressEvent(
            cycle_id=self.cycle_id,
            source=self.source,
            state=state,
            message=message,
            data=data,
        ))

    def finish(self, outcome: CycleOutcome) -> CycleOutcome:
        self.state = outcome.state
        self._queue.put_nowait(outcome)
        return outcome


class DecisionStreamController:
    """
    Runs decision cycles. Stateless apart from the in-flight registry and
    the position lock; everything durable lives in RiskState and the ledger.
    """

    def __init__(
        self,
        selector: OpportunitySelector,
        gateway: AdvisoryGateway,
        risk_manager: RiskManager,
        state: RiskState,
        recorder: ExecutionRecorder,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.selector = selector
        self.gateway = gateway
        self.risk_manager = risk_manager
        self.state = state
        self.recorder = recorder
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._active: Dict[TriggerSource, CycleStream] = {}
        self._position_lock = asyncio.Lock()

    @property
    def position_lock(self) -> asyncio.Lock:
        return self._position_lock

    def is_busy(self, source: Optional[TriggerSource] = None) -> bool:
        """True if a cycle for `source` (any source when None) is in flight."""
        sources = [source] if source else list(self._active)
        return any(
            self._active.get(s) is not None and not self._active[s].done
            for s in sources
        )

    def run_cycle(self, source: TriggerSource = TriggerSource.MANUAL, execute: bool = True) -> CycleStream:
        """
        Start a cycle and return its event stream.

        Args:
            source: trigger source (one cycle in flight per source)
            execute: False previews the decision and records it as Logged

        Raises:
            CycleInProgress: a cycle for this source is already EXECUTING
        """
        current = self._active.get(source)
        if current is not None and not current.done and not current.state.is_terminal:
            if current.state == CycleState.EXECUTING:
                raise CycleInProgress(
                    f"{source.value} cycle {current.cycle_id} is executing; cannot supersede"
                )
            logger.info(f"Superseding {source.value} cycle {current.cycle_id} ({current.state.value})")
            current.supersede()

        stream = CycleStream(uuid.uuid4().hex[:8], source)
        stream._task = asyncio.create_task(self._run(stream, execute), name=f"cycle-{stream.cycle_id}")
        self._active[source] = stream
        return stream

    # =========================================================================
    # CYCLE
    # =========================================================================

    async def _run(self, stream: CycleStream, execute: bool) -> CycleOutcome:
        stream.emit(CycleState.IDLE, f"{stream.source.value} cycle started", execute=execute)
        try:
            return await self._cycle(stream, execute)
        except asyncio.CancelledError:
            if stream.superseded:
                logger.info(f"Cycle {stream.cycle_id} superseded before execution")
                return stream.finish(self._error(stream, "Superseded by a newer cycle"))
            stream.finish(self._error(stream, "Cycle cancelled"))
            raise
        except (AdvisoryUnavailable, ExchangeError, InsufficientData) as e:
            logger.error(f"❌ Cycle {stream.cycle_id} failed: {e}")
            return stream.finish(self._error(stream, str(e)))
        except Exception as e:
            logger.error(f"❌ Cycle {stream.cycle_id} crashed: {e}", exc_info=True)
            return stream.finish(self._error(stream, f"Unexpected error: {e}"))

    async def _cycle(self, stream: CycleStream, execute: bool) -> CycleOutcome:
        stream.emit(CycleState.SCANNING, "Reconciling portfolio")
        view = await self.recorder.refresh()
        if view is None:
            risk = self.state.snapshot()
            decision = Decision.hold(NO_PAIR, f"Trading halted: {risk.halted_reason}")
            return stream.finish(self._done(stream, decision, None, decision.rationale))

        position = view.position
        if position is not None:
            async with self._position_lock:
                return await self._analyze(stream, execute, position, locked=True)
        return await self._analyze(stream, execute, None, locked=False)

    async def _analyze(
        self,
        stream: CycleStream,
        execute: bool,
        position: Optional[Position],
        locked: bool,
    ) -> CycleOutcome:
        risk = self.state.snapshot()
        stream.emit(
            CycleState.SCANNING,
            f"Analyzing held pair {position.pair}" if position else "Scanning tradable pairs",
            position=position.to_dict() if position else None,
        )

        def on_scan(scan: PairScan) -> None:
            message = (
                f"{scan.pair}: score {scan.opportunity.score:.2f}, p_up {scan.opportunity.p_up:.2f}"
                if scan.ok else f"{scan.pair}: {scan.error}"
            )
            stream.emit(CycleState.SCANNING, message, scan=scan.to_dict())

        selection = await self.selector.select(risk, position, progress=on_scan)
        if selection.is_noop:
            await self._stamp(selection)
            decision = Decision.hold(NO_PAIR, selection.describe())
            return stream.finish(self._done(
                stream, decision, None, selection.describe(), selection=selection.to_dict()
            ))

        opportunity = selection.opportunity
        snapshot = selection.snapshot
        pair = opportunity.pair
        stream.emit(CycleState.ADVISING, f"{pair} selected", opportunity=opportunity.to_dict())

        stop_pct, take_pct = self.risk_manager.stop_take(snapshot.atr, snapshot.price)
        fees = self.risk_manager.config.estimated_fees
        ev = self.risk_manager.expected_value(opportunity.p_up, stop_pct, take_pct, fees + snapshot.slippage)

        gate = self.risk_manager.evaluate(
            GateRequest(
                pair=pair,
                p_up=opportunity.p_up,
                price=snapshot.price,
                atr=snapshot.atr,
                spread=snapshot.spread,
                slippage=snapshot.slippage,
                is_exit=position is not None,
            ),
            risk,
        )

        if not gate.approved:
            failure = gate.first_failure
            decision = Decision.hold(
                pair,
                f"[{failure.name.value.upper()}] {failure.reason}",
                p_up=opportunity.p_up,
                expected_value=ev,
                stop_pct=stop_pct,
                take_pct=take_pct,
            )
            stream.emit(CycleState.GATING, f"Forced HOLD: {failure.reason}", risk=gate.to_dict())
            return await self._execute(
                stream, decision, snapshot.price, position, False, failure.reason, locked, selection
            )

        stream.emit(CycleState.ADVISING, f"Planning execution for {pair}", risk=gate.to_dict())
        decision = await self.gateway.plan_execution(PlanRequest(
            opportunity=opportunity,
            price=snapshot.price,
            atr=snapshot.atr,
            spread=snapshot.spread,
            fees=fees,
            slippage=snapshot.slippage,
            available_capital=risk.available_capital,
            risk_per_trade=self.risk_manager.config.risk_per_trade_pct,
            position=position,
            stop_pct=stop_pct,
            take_pct=take_pct,
        ))
        decision = replace(decision, expected_value=ev)

        sized, sizing = self.risk_manager.size_decision(decision, risk, position)
        confidence = self.risk_manager.check_confidence(sized)
        stream.emit(
            CycleState.GATING,
            f"{sized.action.value} {pair} ${sized.notional} (confidence {sized.confidence:.2f})",
            decision=sized.to_dict(),
            checks=[sizing.to_dict(), confidence.to_dict()],
        )

        send = execute and confidence.passed
        note = None
        if not send and not sized.is_hold:
            note = confidence.reason if execute else "Preview only"
        return await self._execute(stream, sized, snapshot.price, position, send, note, locked, selection)

    async def _execute(
        self,
        stream: CycleStream,
        decision: Decision,
        price: Decimal,
        position: Optional[Position],
        send: bool,
        note: Optional[str],
        locked: bool,
        selection: Selection,
    ) -> CycleOutcome:
        if locked:
            return await self._submit(stream, decision, price, position, send, note, selection)

        async with self._position_lock:
            if send and decision.action == Action.BUY:
                # Another cycle may have opened a position while we were advising
                view = await self.recorder.refresh()
                if view is None or view.position is not None:
                    held = view.position.pair if view is not None else "unknown"
                    logger.info(f"BUY {decision.pair} dropped: position opened meanwhile ({held})")
                    decision = Decision.hold(
                        decision.pair,
                        f"Position opened by a concurrent cycle ({held})",
                        p_up=decision.p_up,
                    )
                    send = False
            return await self._submit(stream, decision, price, position, send, note, selection)

    async def _submit(
        self,
        stream: CycleStream,
        decision: Decision,
        price: Decimal,
        position: Optional[Position],
        send: bool,
        note: Optional[str],
        selection: Selection,
    ) -> CycleOutcome:
        stream.emit(
            CycleState.EXECUTING,
            f"{'Submitting' if send else 'Recording'} {decision.action.value} {decision.pair}",
            send=send,
        )
        outcome = await asyncio.shield(
            self.recorder.record(decision, price, position, send=send, note=note)
        )
        await self._stamp(selection)

        message = f"{decision.action.value} {decision.pair}: {outcome.record.status.value}"
        if outcome.error is not None:
            message = f"{message} ({outcome.error})"
        return stream.finish(self._done(stream, decision, outcome.record, message, outcome=outcome.to_dict()))

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _stamp(self, selection: Selection) -> None:
        now = self._clock()
        for pair in selection.analyzed_pairs:
            await self.state.record_analysis(pair, now)

    def _done(self, stream: CycleStream, decision: Decision, record, message: str, **data: Any) -> CycleOutcome:
        logger.info(f"✅ Cycle {stream.cycle_id} done: {message}")
        return CycleOutcome(
            cycle_id=stream.cycle_id,
            source=stream.source,
            state=CycleState.DONE,
            message=message,
            decision=decision,
            record=record,
            data=data,
        )

    def _error(self, stream: CycleStream, message: str) -> CycleOutcome:
        return CycleOutcome(
            cycle_id=stream.cycle_id,
            source=stream.source,
            state=CycleState.ERROR,
            message=message,
            error=message,
            data={"failed_in": stream.state.value},
        )
