"""
Execution Recorder - decision in, exactly one ledger record out.

    HOLD                       -> Logged, notional 0
    not sent (confidence gate,
    manual preview)            -> Logged, notional 0
    notional < minimum         -> OrderTooSmall, Failed
    acknowledged BUY           -> Open
    acknowledged SELL          -> Closed, pnl = (exit - entry) * quantity
    refused / no order id      -> Failed, position untouched

After every write the portfolio and the risk state are rederived from the
exchange and the ledger. Nothing is patched in place, except the realized
pnl fast path that the rederive then confirms. A failed post-write
refresh is logged and leaves the outcome without a view; the record stands.

All of it happens under one asyncio.Lock, so two cycles can never
interleave a submit with another cycle's write.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from ..advisory.schema import Action, Decision, OrderKind
from ..errors import ExchangeError, MultiplePositionsDetected, OrderTooSmall
from ..ledger.schema import TradeRecord, TradeStatus
from ..portfolio.schema import PortfolioView, Position
from ..risk.state import RiskState
from .base import Executor
from .schema import ExecutionResult, OrderRequest, OrderSide, OrderType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class RecordOutcome:
    """What happened to one decision."""
    record: TradeRecord
    execution: Optional[ExecutionResult] = None
    view: Optional[PortfolioView] = None
    error: Optional[Exception] = None

    @property
    def sent(self) -> bool:
        return self.execution is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.to_dict(),
            "execution": self.execution.to_dict() if self.execution else None,
            "view": self.view.to_dict() if self.view else None,
            "error": str(self.error) if self.error else None,
        }


class ExecutionRecorder:
    """
    Usage:
        recorder = ExecutionRecorder(executor, ledger, reconciler, state,
                                     min_order_notional=Decimal("5"))
        outcome = await recorder.record(decision, price, position, send=True)
        print(outcome.record.status.value)
    """

    def __init__(
        self,
        executor: Executor,
        ledger,
        reconciler,
        state: RiskState,
        min_order_notional: Decimal = Decimal("5"),
        notifier=None,
    ):
        self.executor = executor
        self.ledger = ledger
        self.reconciler = reconciler
        self.state = state
        self.min_order_notional = Decimal(str(min_order_notional))
        self.notifier = notifier
        self._lock = asyncio.Lock()

    async def record(
        self,
        decision: Decision,
        price: Decimal,
        position: Optional[Position] = None,
        send: bool = True,
        note: Optional[str] = None,
    ) -> RecordOutcome:
        """
        Turn a sized, gated decision into exactly one ledger record.

        Args:
            decision: the final decision (already sized by the RiskManager)
            price: the price the decision was made at
            position: the reconciled position, required for SELL
            send: False records the decision as Logged without submitting
            note: why it was not sent (appended to the rationale)

        Never raises for exchange refusals; OrderTooSmall is reported on the
        outcome's error field.
        """
        async with self._lock:
            if decision.is_hold or not send:
                outcome = await self._log(decision, price, note)
            else:
                outcome = await self._submit(decision, price, position)

            try:
                outcome.view = await self.refresh()
            except ExchangeError as e:
                logger.warning(
                    f"⚠️ Post-trade refresh failed for {decision.pair}: {e}. "
                    f"State will be rederived next cycle."
                )

        await self._notify(outcome)
        return outcome

    async def _log(self, decision: Decision, price: Decimal, note: Optional[str]) -> RecordOutcome:
        rationale = decision.rationale
        if not decision.is_hold:
            rationale = f"[NOT SENT] {note or 'not submitted'} | {rationale}"
        record = await self.ledger.append(TradeRecord(
            pair=decision.pair,
            action=decision.action,
            price=price,
            notional=Decimal("0"),
            status=TradeStatus.LOGGED,
            rationale=rationale,
            stop_pct=decision.stop_pct,
            take_pct=decision.take_pct,
            confidence=decision.confidence,
        ))
        logger.info(f"📝 Logged {decision.action.value} {decision.pair}: {rationale}")
        return RecordOutcome(record=record)

    async def _submit(
        self,
        decision: Decision,
        price: Decimal,
        position: Optional[Position],
    ) -> RecordOutcome:
        notional = decision.notional.quantize(CENT, rounding=ROUND_HALF_UP)
        if notional < self.min_order_notional:
            error = OrderTooSmall(notional, self.min_order_notional)
            logger.warning(f"⚠️ {error}. No order placed.")
            record = await self._fail(decision, price, notional, str(error))
            return RecordOutcome(record=record, error=error)

        if decision.action == Action.SELL and (position is None or position.pair != decision.pair):
            reason = f"No open position in {decision.pair} to close"
            logger.warning(f"⚠️ {reason}")
            record = await self._fail(decision, price, notional, reason)
            return RecordOutcome(record=record, error=ValueError(reason))

        order = self._order_request(decision, price, notional, position)
        result = await self.executor.execute(order)

        if not result.is_acknowledged:
            logger.error(f"❌ Order failed for {decision.pair}: {result.message}")
            record = await self._fail(decision, price, notional, result.message)
            return RecordOutcome(record=record, execution=result)

        fill_price = result.fill_price or price
        if decision.action == Action.BUY:
            record = await self.ledger.append(TradeRecord(
                pair=decision.pair,
                action=Action.BUY,
                price=fill_price,
                notional=notional,
                status=TradeStatus.OPEN,
                rationale=f"OPEN: {decision.rationale}",
                quantity=result.fill_quantity,
                stop_pct=decision.stop_pct,
                take_pct=decision.take_pct,
                confidence=decision.confidence,
                order_id=result.order_id,
            ))
            logger.info(f"✅ OPEN {decision.pair} ${notional} @ {fill_price} ({result.order_id})")
            return RecordOutcome(record=record, execution=result)

        quantity = result.fill_quantity or position.quantity
        pnl = (fill_price - position.entry_price) * quantity if position.entry_reliable else Decimal("0")
        record = await self.ledger.append(TradeRecord(
            pair=decision.pair,
            action=Action.SELL,
            price=fill_price,
            notional=notional,
            status=TradeStatus.CLOSED,
            rationale=f"CLOSE: {decision.rationale}",
            pnl=pnl,
            quantity=quantity,
            stop_pct=position.stop_pct,
            take_pct=position.take_pct,
            confidence=decision.confidence,
            order_id=result.order_id,
        ))
        await self.state.record_close(pnl)
        logger.info(
            f"✅ CLOSE {decision.pair} @ {fill_price} pnl={pnl:+.4f} ({result.order_id})"
            + ("" if position.entry_reliable else " [entry unknown, pnl not realized]")
        )
        return RecordOutcome(record=record, execution=result)

    def _order_request(
        self,
        decision: Decision,
        price: Decimal,
        notional: Decimal,
        position: Optional[Position],
    ) -> OrderRequest:
        order_type = OrderType.LIMIT if decision.order_kind == OrderKind.LIMIT else OrderType.MARKET
        if decision.action == Action.BUY:
            return OrderRequest(
                pair=decision.pair,
                side=OrderSide.BUY,
                expected_price=price,
                quote_quantity=notional,
                order_type=order_type,
                limit_price=decision.limit_price,
            )
        return OrderRequest(
            pair=decision.pair,
            side=OrderSide.SELL,
            expected_price=price,
            quantity=position.quantity,
            order_type=order_type,
            limit_price=decision.limit_price,
        )

    async def _fail(self, decision: Decision, price: Decimal, notional: Decimal, reason: str) -> TradeRecord:
        return await self.ledger.append(TradeRecord(
            pair=decision.pair,
            action=decision.action,
            price=price,
            notional=notional,
            status=TradeStatus.FAILED,
            rationale=f"FAILED: {reason} | {decision.rationale}",
            stop_pct=decision.stop_pct,
            take_pct=decision.take_pct,
            confidence=decision.confidence,
        ))

    async def refresh(self) -> Optional[PortfolioView]:
        """
        Rederive portfolio and risk state from the exchange and the ledger.

        MultiplePositionsDetected halts new entries and returns None.
        """
        try:
            view = await self.reconciler.reconcile()
        except MultiplePositionsDetected as e:
            logger.error(f"🚨 {e}")
            await self.state.halt(str(e))
            return None

        daily_pnl = await self.ledger.daily_realized_pnl(self.state.pnl_window_start())
        await self.state.rederive(
            total_capital=view.total_capital,
            available_capital=view.quote_balance,
            daily_pnl=daily_pnl,
        )
        return view

    async def _notify(self, outcome: RecordOutcome) -> None:
        """Send a Discord alert for Open / Closed / Failed records."""
        if self.notifier is None:
            return
        record = outcome.record
        try:
            if record.status == TradeStatus.OPEN:
                await asyncio.to_thread(self.notifier.send_trade_alert, record)
            elif record.status == TradeStatus.CLOSED:
                await asyncio.to_thread(self.notifier.send_exit_alert, record)
            elif record.status == TradeStatus.FAILED:
                await asyncio.to_thread(
                    self.notifier.send_risk_alert, f"{record.pair}: {record.rationale}", "warning"
                )
        except Exception as e:
            logger.error(f"Notification failed: {e}")
