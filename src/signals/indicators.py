from __future__ import annotations

from dataclasses import dataclass

import pandas as pd

from src.errors import InsufficientData
from src.features.core import last_valid, prepare_ohlcv, rsi, sma, trailing_high

MIN_FLAG_BARS = 50
HIGH_LOOKBACK_BARS = 250


@dataclass(frozen=True)
class IndicatorSnapshot:
    """
    Latest indicator values for one symbol. Values that need more history
    than the frame holds are None.
    """
    close: float
    close_20_ago: float | None
    high_250: float

    ma50: float | None
    ma200: float | None
    ma200_5_ago: float | None
    ma200_20_ago: float | None

    rsi14: float | None

    vol10: float | None
    vol20: float | None
    vol20_5_ago: float | None

    bars: int


def compute_indicators(frame: pd.DataFrame, min_bars: int = MIN_FLAG_BARS) -> IndicatorSnapshot:
    """
    One pass over an OHLCV frame shared by the stage classifier and the flag engine.
    Raises InsufficientData below `min_bars` closes.
    """
    x = prepare_ohlcv(frame)
    n = len(x)
    if n < min_bars:
        raise InsufficientData(f"need >= {min_bars} bars, got {n}")

    close = x["close"]
    volume = x["volume"]

    ma200 = sma(close, 200)
    vol20 = sma(volume, 20)

    return IndicatorSnapshot(
        close=float(close.iloc[-1]),
        close_20_ago=last_valid(close, 20),
        high_250=trailing_high(x["high"].fillna(close), HIGH_LOOKBACK_BARS),
        ma50=last_valid(sma(close, 50)),
        ma200=last_valid(ma200),
        ma200_5_ago=last_valid(ma200, 5),
        ma200_20_ago=last_valid(ma200, 20),
        rsi14=last_valid(rsi(close, 14)),
        vol10=last_valid(sma(volume, 10)),
        vol20=last_valid(vol20),
        vol20_5_ago=last_valid(vol20, 5),
        bars=n,
    )
