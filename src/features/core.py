from __future__ import annotations

import math

import pandas as pd

OHLCV_COLS = ["ts", "open", "high", "low", "close", "volume"]


def _require_cols(df: pd.DataFrame, cols: list[str]) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def prepare_ohlcv(df: pd.DataFrame) -> pd.DataFrame:
    """
    Expected columns: ts, open, high, low, close, volume
    Returns a copy sorted by ts (naive UTC) with numeric columns coerced
    and rows without a close dropped.
    """
    _require_cols(df, OHLCV_COLS)

    out = df.copy()
    out["ts"] = pd.to_datetime(out["ts"], utc=True, errors="coerce").dt.tz_localize(None)
    out = out.sort_values("ts").reset_index(drop=True)

    for c in ["open", "high", "low", "close", "volume"]:
        out[c] = pd.to_numeric(out[c], errors="coerce")

    out = out.dropna(subset=["ts", "close"]).reset_index(drop=True)
    return out


def sma(x: pd.Series, window: int) -> pd.Series:
    # rolling mean
    return x.rolling(window=window, min_periods=window).mean()


def rsi(close: pd.Series, window: int = 14) -> pd.Series:
    """
    Wilder RSI (causal).
    """
    delta = close.diff()
    gain = delta.clip(lower=0.0)
    loss = (-delta).clip(lower=0.0)

    # Wilder smoothing (EMA with alpha=1/window)
    avg_gain = gain.ewm(alpha=1.0 / window, adjust=False, min_periods=window).mean()
    avg_loss = loss.ewm(alpha=1.0 / window, adjust=False, min_periods=window).mean()

    rs = avg_gain / avg_loss
    out = 100.0 - (100.0 / (1.0 + rs))

    # flat window: no gains and no losses
    out = out.where(~((avg_gain == 0.0) & (avg_loss == 0.0)), 50.0)
    return out


def trailing_high(high: pd.Series, window: int = 250) -> float:
    """Max of the last `window` highs (or all of them if fewer)."""
    tail = high.dropna().tail(window)
    if tail.empty:
        raise ValueError("high series is empty")
    return float(tail.max())


def last_valid(x: pd.Series, back: int = 1) -> float | None:
    """
    Value `back` positions from the end of the non-NaN part of `x`
    (back=1 is the latest). None if the series is too short.
    """
    valid = x.dropna()
    if len(valid) < back:
        return None
    v = float(valid.iloc[-back])
    return None if math.isnan(v) else v
