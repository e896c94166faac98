"""
Position Reconciler - exchange truth + trade history -> the one open position.

The exchange balance decides WHETHER a position exists; the trade history
decides WHAT it cost. Local state is never trusted over either.

Rules:
- An asset is a position when its market value exceeds the dust threshold.
- At most one asset may exceed it. Two or more raise
  MultiplePositionsDetected - surfaced, never silently resolved.
- Entry = the BUY fills since the last SELL for that pair:
      entry_price = sum(quote) / sum(qty),  size = sum(quote)
- No matching history -> entry_price 0, size = market value,
  entry_reliable False, and a warning.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..errors import MultiplePositionsDetected
from ..ledger.schema import TradeRecord, TradeStatus
from .schema import Fill, PortfolioView, Position

logger = logging.getLogger(__name__)

StopTake = Tuple[Optional[float], Optional[float]]


def values_above_dust(
    balances: Mapping[str, Decimal],
    prices: Mapping[str, Decimal],
    pairs: Iterable[str],
    dust_threshold: Decimal,
) -> Dict[str, Decimal]:
    """Market value per pair for every tradable asset worth more than dust."""
    values: Dict[str, Decimal] = {}
    for pair in pairs:
        asset = pair.split("/")[0]
        quantity = balances.get(asset, Decimal("0"))
        if quantity <= 0:
            continue
        price = prices.get(pair)
        if price is None:
            logger.warning(f"No price for {pair} - cannot value {quantity} {asset}")
            continue
        value = quantity * price
        if value > dust_threshold:
            values[pair] = value
    return values


def entry_fills(fills: Sequence[Fill]) -> List[Fill]:
    """BUY fills after the most recent SELL (fills ordered oldest first)."""
    run: List[Fill] = []
    for fill in fills:
        if fill.is_buy:
            run.append(fill)
        else:
            run = []
    return run


def ledger_fills(records: Iterable[TradeRecord], pair: str) -> List[Fill]:
    """Acknowledged entries/exits from the ledger as fills (oldest first)."""
    fills = []
    for record in records:
        if record.pair != pair or record.status not in (TradeStatus.OPEN, TradeStatus.CLOSED):
            continue
        if record.price <= 0:
            continue
        quantity = record.quantity if record.quantity else record.notional / record.price
        fills.append(Fill(
            pair=pair,
            is_buy=record.status == TradeStatus.OPEN,
            price=record.price,
            quantity=quantity,
            quote_quantity=record.notional,
            time_ms=int(record.timestamp.timestamp() * 1000) if record.timestamp else 0,
        ))
    return fills


def reconcile_position(
    balances: Mapping[str, Decimal],
    fills: Mapping[str, Sequence[Fill]],
    prices: Mapping[str, Decimal],
    pairs: Sequence[str],
    dust_threshold: Decimal,
    stop_take: Optional[Mapping[str, StopTake]] = None,
) -> Optional[Position]:
    """
    Derive the single open position. Pure: no I/O, no clock.

    Args:
        balances: free quantity per asset ("XRP" -> Decimal)
        fills: trade history per pair, oldest first
        prices: last price per pair
        pairs: tradable pairs ("XRP/USDT", ...)
        dust_threshold: minimum market value to count as a position
        stop_take: optional (stop_pct, take_pct) per pair, inherited from
            the opening decision

    Returns:
        Position, or None when no asset exceeds the dust threshold

    Raises:
        MultiplePositionsDetected: more than one asset exceeds the threshold
    """
    values = values_above_dust(balances, prices, pairs, dust_threshold)
    if not values:
        return None
    if len(values) > 1:
        raise MultiplePositionsDetected(values)

    pair, value = next(iter(values.items()))
    quantity = balances[pair.split("/")[0]]
    stop_pct, take_pct = (stop_take or {}).get(pair, (None, None))

    run = entry_fills(fills.get(pair, ()))
    total_quote = sum((f.quote_quantity for f in run), Decimal("0"))
    total_qty = sum((f.quantity for f in run), Decimal("0"))

    if not run or total_qty <= 0:
        logger.warning(
            f"Position in {pair} has no matching buy history - "
            f"entry price unknown, using market value ${value:.2f} as size"
        )
        return Position(
            pair=pair,
            entry_price=Decimal("0"),
            size=value,
            quantity=quantity,
            stop_pct=stop_pct,
            take_pct=take_pct,
            entry_reliable=False,
        )

    return Position(
        pair=pair,
        entry_price=total_quote / total_qty,
        size=total_quote,
        quantity=quantity,
        stop_pct=stop_pct,
        take_pct=take_pct,
        entry_reliable=True,
    )


class PositionReconciler:
    """
    Async wrapper that gathers the inputs and calls reconcile_position.

    Sources:
        balance_source: anything with `async get_balances()` (MexcClient or
            PaperExecutor)
        market: anything with `async get_prices(pairs)`
        history_source: optional `async get_my_trades(pair)`; when absent or
            empty the ledger's OPEN/CLOSED records are used
        ledger: TradeLedger (history fallback and stop/take inheritance)

    Usage:
        reconciler = PositionReconciler(client, client, ledger, pairs, "USDT",
                                        Decimal("4.5"), history_source=client)
        view = await reconciler.reconcile()
        if view.position:
            print(view.position.pair, view.position.entry_price)
    """

    def __init__(
        self,
        balance_source,
        market,
        ledger,
        pairs: Sequence[str],
        quote_asset: str,
        dust_threshold: Decimal,
        history_source=None,
    ):
        self.balance_source = balance_source
        self.market = market
        self.ledger = ledger
        self.pairs = list(pairs)
        self.quote_asset = quote_asset
        self.dust_threshold = Decimal(str(dust_threshold))
        self.history_source = history_source

    async def reconcile(self) -> PortfolioView:
        """
        Build the authoritative PortfolioView.

        Raises:
            MultiplePositionsDetected: propagated from reconcile_position
        """
        balances = await self.balance_source.get_balances()
        prices = await self.market.get_prices(self.pairs)

        values = values_above_dust(balances, prices, self.pairs, self.dust_threshold)
        fills: Dict[str, List[Fill]] = {}
        stop_take: Dict[str, StopTake] = {}

        # History only matters for the single candidate
        if len(values) == 1:
            pair = next(iter(values))
            fills[pair] = await self._history(pair)
            entry = await self.ledger.latest_entry(pair)
            if entry is not None:
                stop_take[pair] = (entry.stop_pct, entry.take_pct)

        position = reconcile_position(
            balances, fills, prices, self.pairs, self.dust_threshold, stop_take
        )

        quote_balance = balances.get(self.quote_asset, Decimal("0"))
        total_capital = quote_balance + sum(values.values(), Decimal("0"))

        return PortfolioView(
            position=position,
            quote_balance=quote_balance,
            total_capital=total_capital,
            prices=dict(prices),
        )

    async def _history(self, pair: str) -> List[Fill]:
        if self.history_source is not None:
            exchange_fills = await self.history_source.get_my_trades(pair)
            if exchange_fills:
                return list(exchange_fills)
        records = await self.ledger.records(pair)
        return ledger_fills(records, pair)
