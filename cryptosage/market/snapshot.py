"""
Market Snapshot Builder

For one pair, fetch the short-interval and long-interval candle series plus
the top of the order book, and freeze everything the advisors and the risk
gates need into a MarketSnapshot.

A snapshot is built fresh every cycle and never mutated.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import pandas as pd

from ..errors import InsufficientData
from .indicators import IndicatorSummary, Trend, recent_candles, summarize_indicators

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketSnapshot:
    """Immutable per-cycle view of one pair."""
    pair: str
    short_candles: pd.DataFrame = field(repr=False, compare=False)
    long_candles: pd.DataFrame = field(repr=False, compare=False)
    short_interval: str
    long_interval: str
    price: Decimal
    short_indicators: IndicatorSummary
    long_indicators: IndicatorSummary
    spread: float
    slippage: float
    built_at: datetime

    @property
    def atr(self) -> float:
        """ATR(14) on the short interval - the stop distance driver."""
        return self.short_indicators.atr_14

    @property
    def higher_timeframe_trend(self) -> Trend:
        return self.long_indicators.trend

    def to_dict(self) -> Dict[str, Any]:
        """Serializable summary (no full candle history)."""
        return {
            "pair": self.pair,
            "price": str(self.price),
            "spread": self.spread,
            "slippage": self.slippage,
            "higher_timeframe_trend": self.higher_timeframe_trend.value,
            "built_at": self.built_at.isoformat(),
            "timeframes": {
                self.short_interval: {
                    "indicators": self.short_indicators.to_dict(),
                    "recent": recent_candles(self.short_candles),
                },
                self.long_interval: {
                    "indicators": self.long_indicators.to_dict(),
                    "recent": recent_candles(self.long_candles),
                },
            },
        }


class SnapshotBuilder:
    """
    Builds MarketSnapshots from the exchange's public market-data endpoints.

    Usage:
        builder = SnapshotBuilder(client)
        snapshot = await builder.build("XRP/USDT")
        print(snapshot.atr, snapshot.spread)
    """

    def __init__(
        self,
        client,
        short_interval: str = "1m",
        short_limit: int = 200,
        long_interval: str = "15m",
        long_limit: int = 96,
        base_slippage: float = 0.0002,
        clock=None,
    ):
        self.client = client
        self.short_interval = short_interval
        self.short_limit = short_limit
        self.long_interval = long_interval
        self.long_limit = long_limit
        self.base_slippage = base_slippage
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, client, config, clock=None) -> "SnapshotBuilder":
        return cls(
            client,
            short_interval=config.short_interval,
            short_limit=config.short_limit,
            long_interval=config.long_interval,
            long_limit=config.long_limit,
            base_slippage=config.base_slippage,
            clock=clock,
        )

    async def build(self, pair: str) -> MarketSnapshot:
        """
        Fetch both timeframes and the book concurrently and derive indicators.

        Raises:
            InsufficientData: either series returned zero candles, or the
                book has no two-sided quote
        """
        short_df, long_df, book = await asyncio.gather(
            self.client.get_klines(pair, self.short_interval, self.short_limit),
            self.client.get_klines(pair, self.long_interval, self.long_limit),
            self.client.get_book_ticker(pair),
        )

        if short_df is None or short_df.empty:
            raise InsufficientData(pair, f"no {self.short_interval} candles returned")
        if long_df is None or long_df.empty:
            raise InsufficientData(pair, f"no {self.long_interval} candles returned")

        spread = self._spread(pair, book)
        short_indicators = summarize_indicators(short_df)
        long_indicators = summarize_indicators(long_df)

        snapshot = MarketSnapshot(
            pair=pair,
            short_candles=short_df,
            long_candles=long_df,
            short_interval=self.short_interval,
            long_interval=self.long_interval,
            price=Decimal(str(short_indicators.price)),
            short_indicators=short_indicators,
            long_indicators=long_indicators,
            spread=spread,
            slippage=spread / 2 + self.base_slippage,
            built_at=self._clock(),
        )

        logger.debug(
            f"Snapshot {pair}: price={snapshot.price} atr={snapshot.atr:.6f} "
            f"spread={spread:.5f} trend={snapshot.higher_timeframe_trend.value}"
        )
        return snapshot

    def _spread(self, pair: str, book: Optional[Dict[str, Decimal]]) -> float:
        """Relative spread (ask - bid) / mid."""
        if not book:
            raise InsufficientData(pair, "no order book quote")
        bid = book.get("bid") or Decimal("0")
        ask = book.get("ask") or Decimal("0")
        if bid <= 0 or ask <= 0 or ask < bid:
            raise InsufficientData(pair, f"invalid book quote bid={bid} ask={ask}")
        mid = (bid + ask) / 2
        return float((ask - bid) / mid)


def summarize(snapshot: MarketSnapshot) -> str:
    """Compact JSON text of a snapshot for the advisory prompt."""
    return json.dumps(snapshot.to_dict(), separators=(",", ":"), default=str)
