"""
Technical Indicators - pure functions over candle DataFrames.

Every function takes a DataFrame with columns
    timestamp, open, high, low, close, volume
sorted oldest -> newest, and returns plain floats. No hidden state:
same candles in, same numbers out.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Sequence

import numpy as np
import pandas as pd

CANDLE_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


class Trend(Enum):
    """Trend label derived from EMA ordering."""
    UP = "UP"
    DOWN = "DOWN"
    SIDEWAYS = "SIDEWAYS"


def candles_to_frame(rows: Sequence[Sequence[Any]]) -> pd.DataFrame:
    """
    Convert exchange kline rows to a DataFrame.

    Kline format: [open_time_ms, open, high, low, close, volume, ...]
    """
    if not rows:
        return pd.DataFrame(columns=CANDLE_COLUMNS)

    df = pd.DataFrame([list(row[:6]) for row in rows], columns=CANDLE_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"].astype("int64"), unit="ms", utc=True)

    for col in ["open", "high", "low", "close", "volume"]:
        df[col] = pd.to_numeric(df[col], errors="coerce")

    df = df.dropna(subset=["open", "high", "low", "close"])
    df = df.sort_values("timestamp").reset_index(drop=True)
    return df


def simple_moving_average(df: pd.DataFrame, window: int) -> float:
    """Mean of the last `window` closes (fewer if the frame is shorter)."""
    if df.empty:
        return 0.0
    return float(df["close"].iloc[-window:].mean())


def exponential_moving_average(df: pd.DataFrame, period: int) -> float:
    """EMA seeded with the first close; last close if the frame is shorter than `period`."""
    if df.empty:
        return 0.0
    if len(df) < period:
        return float(df["close"].iloc[-1])
    return float(df["close"].ewm(span=period, adjust=False).mean().iloc[-1])


def average_true_range(df: pd.DataFrame, period: int = 14) -> float:
    """
    Average True Range over the last `period` candles.

    TR = max(high - low, |high - prev_close|, |low - prev_close|).
    The first candle of the frame has no previous close, its own open is
    used instead. Returns 0 when fewer than `period` candles exist.
    """
    if period <= 0 or len(df) < period:
        return 0.0

    high = df["high"]
    low = df["low"]
    prev_close = df["close"].shift(1).fillna(df["open"])

    true_range = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()],
        axis=1,
    ).max(axis=1)

    return float(true_range.iloc[-period:].mean())


def _window_stats(df: pd.DataFrame, window: int):
    closes = df["close"].iloc[-window:].to_numpy(dtype=float)
    mean = float(closes.mean())
    std = float(np.sqrt(((closes - mean) ** 2).mean()))
    return mean, std


def zscore(df: pd.DataFrame, window: int = 20) -> float:
    """(last close - mean) / population std over the window; 0 when flat."""
    if df.empty:
        return 0.0
    mean, std = _window_stats(df, window)
    if std == 0:
        return 0.0
    return (float(df["close"].iloc[-1]) - mean) / std


def bollinger_bands(df: pd.DataFrame, window: int = 20, num_std: float = 2.0):
    """Returns (upper, middle, lower)."""
    if df.empty:
        return 0.0, 0.0, 0.0
    mean, std = _window_stats(df, window)
    return mean + num_std * std, mean, mean - num_std * std


def classify_trend(df: pd.DataFrame, fast: int = 12, mid: int = 26, slow: int = 50) -> Trend:
    """UP when EMA fast > mid > slow, DOWN when reversed, SIDEWAYS otherwise."""
    if df.empty:
        return Trend.SIDEWAYS

    ema_fast = exponential_moving_average(df, fast)
    ema_mid = exponential_moving_average(df, mid)
    ema_slow = exponential_moving_average(df, slow)

    if ema_fast > ema_mid > ema_slow:
        return Trend.UP
    if ema_fast < ema_mid < ema_slow:
        return Trend.DOWN
    return Trend.SIDEWAYS


@dataclass(frozen=True)
class IndicatorSummary:
    """Compact indicator set for one timeframe."""
    price: float
    sma_20: float
    sma_50: float
    ema_12: float
    ema_26: float
    ema_50: float
    atr_14: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    zscore_20: float
    volume: float
    trend: Trend

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["trend"] = self.trend.value
        return data


def summarize_indicators(df: pd.DataFrame) -> IndicatorSummary:
    """Compute the full indicator set for a non-empty frame."""
    upper, middle, lower = bollinger_bands(df, 20, 2.0)
    last = df.iloc[-1]
    return IndicatorSummary(
        price=float(last["close"]),
        sma_20=simple_moving_average(df, 20),
        sma_50=simple_moving_average(df, 50),
        ema_12=exponential_moving_average(df, 12),
        ema_26=exponential_moving_average(df, 26),
        ema_50=exponential_moving_average(df, 50),
        atr_14=average_true_range(df, 14),
        bb_upper=upper,
        bb_middle=middle,
        bb_lower=lower,
        zscore_20=zscore(df, 20),
        volume=float(last["volume"]),
        trend=classify_trend(df),
    )


def recent_candles(df: pd.DataFrame, count: int = 10) -> List[Dict[str, Any]]:
    """Last `count` candles as plain dicts (ISO timestamps)."""
    rows = []
    for _, row in df.iloc[-count:].iterrows():
        rows.append({
            "t": row["timestamp"].isoformat() if hasattr(row["timestamp"], "isoformat") else str(row["timestamp"]),
            "o": float(row["open"]),
            "h": float(row["high"]),
            "l": float(row["low"]),
            "c": float(row["close"]),
            "v": float(row["volume"]),
        })
    return rows
