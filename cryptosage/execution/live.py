"""
MEXC Live Executor - real spot orders.

CRITICAL: This places REAL orders with REAL money.

The executor never retries an order. A refusal or a transport failure is
returned as a FAILED ExecutionResult; the recorder writes it to the ledger
and the next reconciliation shows what actually happened on the exchange.
"""

from decimal import Decimal
from typing import Dict

from ..errors import ExchangeError, OrderRejected
from ..exchange.client import MexcClient
from .base import Executor
from .schema import (
    ExecutionMode,
    ExecutionResult,
    OrderRequest,
    OrderSide,
    OrderType,
)


class MexcExecutor(Executor):
    """
    Executes real orders via the MEXC spot API (Async).

    ⚠️ WARNING: This executor places REAL orders with REAL money.
    """

    def __init__(self, client: MexcClient):
        super().__init__(mode=ExecutionMode.LIVE)
        self.client = client
        self.logger.warning("🔴 MEXC LIVE EXECUTOR INITIALIZED - ALL ORDERS ARE REAL 🔴")

    async def execute(self, order: OrderRequest) -> ExecutionResult:
        quantity = order.quantity
        if order.side == OrderSide.BUY and order.order_type == OrderType.LIMIT and quantity is None:
            quantity = order.quote_quantity / order.limit_price

        try:
            ack = await self.client.create_order(
                pair=order.pair,
                side=order.side.value.upper(),
                order_type=order.order_type.value.upper(),
                quote_quantity=order.quote_quantity,
                quantity=quantity,
                price=order.limit_price,
            )
        except OrderRejected as e:
            self.logger.error(f"❌ Order rejected: {e}")
            result = ExecutionResult.failed(
                order, str(e), details={"status": e.status, "payload": e.payload}
            )
        except ExchangeError as e:
            self.logger.error(f"❌ Order state unknown after transport error: {e}")
            result = ExecutionResult.failed(
                order, f"Order submission failed: {e}", details={"status": e.status}
            )
        else:
            order_id = str(ack["orderId"])
            self.logger.info(
                f"✅ LIVE order acknowledged: {order_id} {order.side.value.upper()} "
                f"{order.pair} ${order.notional_value}"
            )
            result = ExecutionResult.acknowledged(order, order_id, details=ack)

        self.record_execution(result)
        return result

    async def get_balances(self) -> Dict[str, Decimal]:
        return await self.client.get_balances()
