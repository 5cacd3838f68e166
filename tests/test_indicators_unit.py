import numpy as np
import pandas as pd
import pytest

from src.errors import InsufficientData
from src.features.core import rsi
from src.signals.indicators import compute_indicators


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


def test_rsi_matches_wilder_ewm() -> None:
    x = pd.Series([10.0, 11.0, 10.5, 12.0, 11.0, 11.5, 13.0], dtype="float64")
    window = 3

    delta = x.diff()
    g = delta.clip(lower=0.0).ewm(alpha=1.0 / window, adjust=False, min_periods=window).mean()
    l = (-delta).clip(lower=0.0).ewm(alpha=1.0 / window, adjust=False, min_periods=window).mean()
    exp = 100.0 - 100.0 / (1.0 + g / l)

    pd.testing.assert_series_equal(rsi(x, window), exp)


def test_snapshot_below_min_bars_raises() -> None:
    with pytest.raises(InsufficientData):
        compute_indicators(make_bars(np.linspace(100, 110, 49)))


def test_snapshot_without_200_bars_leaves_long_averages_empty() -> None:
    snap = compute_indicators(make_bars(np.linspace(100, 110, 60)))

    assert snap.bars == 60
    assert snap.ma50 is not None
    assert snap.ma200 is None
    assert snap.ma200_5_ago is None
    assert snap.close == pytest.approx(110.0)


def test_snapshot_values_line_up_with_series() -> None:
    close = np.linspace(100, 200, 260)
    snap = compute_indicators(make_bars(close))

    assert snap.ma200 == pytest.approx(close[-200:].mean())
    assert snap.ma200_5_ago == pytest.approx(close[-204:-4].mean())
    assert snap.close_20_ago == pytest.approx(close[-20])
    assert snap.high_250 == pytest.approx(close[-1] + 1.0)
    assert snap.vol10 == pytest.approx(1000.0)
