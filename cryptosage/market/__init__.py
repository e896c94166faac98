"""
Market Module - candle history to indicator snapshots.

Usage:
    from cryptosage.market import SnapshotBuilder

    builder = SnapshotBuilder(client, short_interval="1m", long_interval="15m")
    snapshot = await builder.build("DOGE/USDT")

    snapshot.atr                      # ATR(14) on the short interval
    snapshot.higher_timeframe_trend   # Trend.UP / DOWN / SIDEWAYS
    snapshot.spread, snapshot.slippage
"""

from .indicators import (
    IndicatorSummary,
    Trend,
    average_true_range,
    bollinger_bands,
    candles_to_frame,
    classify_trend,
    exponential_moving_average,
    simple_moving_average,
    summarize_indicators,
    zscore,
)
from .snapshot import MarketSnapshot, SnapshotBuilder, summarize

__all__ = [
    "IndicatorSummary",
    "MarketSnapshot",
    "SnapshotBuilder",
    "Trend",
    "average_true_range",
    "bollinger_bands",
    "candles_to_frame",
    "classify_trend",
    "exponential_moving_average",
    "simple_moving_average",
    "summarize",
    "summarize_indicators",
    "zscore",
]
