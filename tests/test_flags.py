from datetime import datetime

import numpy as np
import pandas as pd

from src.data.provider import InMemoryPriceProvider
from src.signals.flags import (
    BEARISH_TREND,
    BELOW_200DMA,
    BULLISH_TREND,
    LOW_VOLUME_RISE,
    NEAR_HIGH,
    OVERBOUGHT,
    STAGE2_CONFIRMED,
    STAGE4_CONFIRMED,
    STRONG_MOMENTUM,
    VOLUME_SURGE,
    analyze_flags,
    bearish_flags,
    bullish_flags,
    compute_flags,
    summarize,
)
from src.signals.indicators import IndicatorSnapshot


def make_bars(close, volume=None) -> pd.DataFrame:
    close = pd.Series(close, dtype="float64")
    n = len(close)
    return pd.DataFrame(
        {
            "ts": pd.date_range("2024-01-01", periods=n, freq="D"),
            "open": close,
            "high": close + 1.0,
            "low": close - 1.0,
            "close": close,
            "volume": np.full(n, 1000.0) if volume is None else volume,
        }
    )


def snapshot(**kw) -> IndicatorSnapshot:
    base = dict(
        close=100.0,
        close_20_ago=100.0,
        high_250=200.0,
        ma50=None,
        ma200=None,
        ma200_5_ago=None,
        ma200_20_ago=None,
        rsi14=None,
        vol10=None,
        vol20=None,
        vol20_5_ago=None,
        bars=260,
    )
    base.update(kw)
    return IndicatorSnapshot(**base)


def test_rising_series_is_bullish_and_never_bearish_trend():
    r = compute_flags("UP", make_bars(np.linspace(100, 200, 260)))

    assert r.bullish == [NEAR_HIGH, STAGE2_CONFIRMED, BULLISH_TREND]
    assert r.bearish == [OVERBOUGHT]
    assert BEARISH_TREND not in r.bearish
    assert r.summary == "Bullish"
    assert r.error is None


def test_falling_series_is_bearish():
    r = compute_flags("DOWN", make_bars(np.linspace(200, 100, 260)))

    assert r.bullish == []
    assert r.bearish == [BEARISH_TREND, BELOW_200DMA, STAGE4_CONFIRMED]
    assert BULLISH_TREND not in r.bullish
    assert r.summary == "Bearish"


def test_short_history_returns_failed_result():
    r = compute_flags("NEW", make_bars(np.linspace(100, 110, 30)))
    assert r.bullish == [] and r.bearish == []
    assert r.summary == "Neutral"
    assert r.error


def test_analyze_flags_unknown_symbol_returns_failed_result():
    r = analyze_flags("NOPE", InMemoryPriceProvider({}), as_of=datetime(2024, 9, 30))
    assert r.symbol == "NOPE"
    assert r.bullish == [] and r.bearish == []
    assert r.summary == "Neutral"
    assert "NOPE" in r.error


def test_analyze_flags_reads_the_lookback_window():
    provider = InMemoryPriceProvider({"UP": make_bars(np.linspace(100, 200, 260))})
    r = analyze_flags("UP", provider, as_of=datetime(2024, 9, 30))
    assert r.error is None
    assert r.summary == "Bullish"


def test_volume_surge_and_momentum():
    s = snapshot(close=190.0, vol10=1350.0, vol20=1000.0, rsi14=60.0)
    assert bullish_flags(s) == [NEAR_HIGH, VOLUME_SURGE, STRONG_MOMENTUM]

    s = snapshot(vol10=1299.0, vol20=1000.0, rsi14=70.01)
    assert bullish_flags(s) == []


def test_rising_on_fading_volume_boundary():
    s = snapshot(close=110.0, close_20_ago=100.0, vol20=95.0, vol20_5_ago=100.0)
    assert LOW_VOLUME_RISE in bearish_flags(s)

    s = snapshot(close=110.0, close_20_ago=100.0, vol20=96.0, vol20_5_ago=100.0)
    assert LOW_VOLUME_RISE not in bearish_flags(s)


def test_summary_rules():
    assert summarize(["a", "b", "c"], ["x"]) == "Bullish"
    assert summarize(["a"], ["x", "y", "z"]) == "Bearish"
    assert summarize(["a", "b"], ["x"]) == "Mixed"
    assert summarize(["a"], []) == "Neutral"
    assert summarize([], []) == "Neutral"
