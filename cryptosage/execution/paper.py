"""
Paper Executor - Spot Simulation with Slippage

Paper orders never fill at the expected price:
- Base spread: fixed component (%)
- Random noise: 0 to noise_slippage_pct (%)
- Size impact: per $10k notional (%)
- Fee: taken from the proceeds (0.1% default, MEXC spot taker)

Virtual wallet:
- BUY spends quote_quantity USDT and credits (quote - fee) / fill_price base
- SELL debits quantity base and credits quantity * fill_price - fee USDT

The executor is also the balance source for reconciliation in paper mode,
so the virtual wallet plays the role of the exchange account.
"""

import random
import uuid
from decimal import Decimal
from typing import Dict, Optional

from .base import Executor
from .schema import (
    ExecutionMode,
    ExecutionResult,
    OrderRequest,
    OrderSide,
    OrderType,
)


class PaperExecutor(Executor):
    """
    Simulates spot order execution.

    Usage:
        executor = PaperExecutor(starting_balance=Decimal("100"))

        order = OrderRequest(
            pair="XRP/USDT",
            side=OrderSide.BUY,
            expected_price=Decimal("0.5"),
            quote_quantity=Decimal("10.00"),
        )
        result = await executor.execute(order)
        print(f"Filled at {result.fill_price}, slippage: {result.slippage_pct}%")
    """

    def __init__(
        self,
        starting_balance: Decimal = Decimal("100"),
        quote_asset: str = "USDT",
        base_slippage_pct: Decimal = Decimal("0.02"),   # 0.02% base
        noise_slippage_pct: Decimal = Decimal("0.02"),  # 0-0.02% random
        size_impact_per_10k: Decimal = Decimal("0.01"), # 0.01% per $10k
        fee_rate: Decimal = Decimal("0.001"),           # 0.1% fee
        rng: Optional[random.Random] = None,
    ):
        super().__init__(mode=ExecutionMode.PAPER)

        self.quote_asset = quote_asset
        self.base_slippage_pct = Decimal(str(base_slippage_pct))
        self.noise_slippage_pct = Decimal(str(noise_slippage_pct))
        self.size_impact_per_10k = Decimal(str(size_impact_per_10k))
        self.fee_rate = Decimal(str(fee_rate))
        self._rng = rng or random.Random()

        self._starting_balance = Decimal(str(starting_balance))
        self._balances: Dict[str, Decimal] = {quote_asset: self._starting_balance}

        self.logger.info(
            f"Paper executor initialized: "
            f"balance=${self._starting_balance} {quote_asset}, "
            f"base_slippage={self.base_slippage_pct}%, "
            f"fee={self.fee_rate * 100}%"
        )

    async def execute(self, order: OrderRequest) -> ExecutionResult:
        self.logger.info(
            f"Paper order: {order.side.value.upper()} {order.pair} "
            f"${order.notional_value} @ expected {order.expected_price}"
        )
        if order.side == OrderSide.BUY:
            result = self._buy(order)
        else:
            result = self._sell(order)
        self.record_execution(result)
        return result

    def _buy(self, order: OrderRequest) -> ExecutionResult:
        base_asset = order.pair.split("/")[0]
        fill_price = self._calculate_fill_price(order)
        spend = order.quote_quantity if order.quote_quantity is not None else order.quantity * fill_price

        available = self._balances.get(self.quote_asset, Decimal("0"))
        if available < spend:
            return ExecutionResult.failed(
                order_request=order,
                reason=f"Insufficient balance: need ${spend:.2f}, have ${available:.2f}"
            )

        fee = spend * self.fee_rate
        quantity = (spend - fee) / fill_price
        order_id = f"paper_{uuid.uuid4().hex[:12]}"

        self._balances[self.quote_asset] = available - spend
        self._balances[base_asset] = self._balances.get(base_asset, Decimal("0")) + quantity

        result = ExecutionResult.filled(
            order_request=order,
            fill_price=fill_price,
            fill_quantity=quantity,
            fee=fee,
            order_id=order_id,
            details={"balance_after": self._balance_snapshot(base_asset)}
        )
        self.logger.info(
            f"Paper fill [BUY]: {order_id} {quantity:.6f} {base_asset} @ {fill_price} "
            f"(slippage: {result.slippage_pct:.4f}%, fee: ${fee:.4f})"
        )
        return result

    def _sell(self, order: OrderRequest) -> ExecutionResult:
        base_asset = order.pair.split("/")[0]
        held = self._balances.get(base_asset, Decimal("0"))
        if held < order.quantity:
            return ExecutionResult.failed(
                order_request=order,
                reason=f"Insufficient {base_asset}: need {order.quantity}, have {held}"
            )

        fill_price = self._calculate_fill_price(order)
        gross = order.quantity * fill_price
        fee = gross * self.fee_rate
        order_id = f"paper_{uuid.uuid4().hex[:12]}"

        remaining = held - order.quantity
        if remaining > 0:
            self._balances[base_asset] = remaining
        else:
            self._balances.pop(base_asset, None)
        self._balances[self.quote_asset] = self._balances.get(self.quote_asset, Decimal("0")) + gross - fee

        result = ExecutionResult.filled(
            order_request=order,
            fill_price=fill_price,
            fill_quantity=order.quantity,
            fee=fee,
            order_id=order_id,
            details={"balance_after": self._balance_snapshot(base_asset)}
        )
        self.logger.info(
            f"Paper fill [SELL]: {order_id} {order.quantity:.6f} {base_asset} @ {fill_price} "
            f"(slippage: {result.slippage_pct:.4f}%, fee: ${fee:.4f})"
        )
        return result

    def _calculate_fill_price(self, order: OrderRequest) -> Decimal:
        """
        Fill price with slippage. LIMIT orders fill at their limit.

        For BUYS: fill_price > expected (we pay more)
        For SELLS: fill_price < expected (we receive less)
        """
        if order.order_type == OrderType.LIMIT:
            return order.limit_price

        expected = order.expected_price
        notional = float(order.notional_value)

        base_pct = float(self.base_slippage_pct) / 100
        noise_pct = self._rng.uniform(0, float(self.noise_slippage_pct)) / 100
        size_impact_pct = (notional / 10000) * float(self.size_impact_per_10k) / 100

        total_slippage_pct = Decimal(str(base_pct + noise_pct + size_impact_pct))

        if order.side == OrderSide.BUY:
            return expected * (1 + total_slippage_pct)
        return expected * (1 - total_slippage_pct)

    def _balance_snapshot(self, base_asset: str) -> Dict[str, float]:
        return {
            self.quote_asset: float(self._balances.get(self.quote_asset, 0)),
            base_asset: float(self._balances.get(base_asset, 0)),
        }

    async def get_balances(self) -> Dict[str, Decimal]:
        return {asset: amount for asset, amount in self._balances.items() if amount > 0}

    async def set_balance(self, asset: str, amount: Decimal) -> None:
        """
        Set a virtual balance directly.

        State sync only; does NOT record an execution.
        """
        old_balance = self._balances.get(asset, Decimal("0"))
        self._balances[asset] = amount
        self.logger.debug(
            f"Balance sync: {asset} {float(old_balance):.6f} -> {float(amount):.6f}"
        )
