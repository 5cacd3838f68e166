"""
Price series contract consumed by the analytics core.

Frames returned by `get_daily_series` always carry the columns
ts, open, high, low, close, volume (naive UTC, sorted by ts), the same
shape `src.features.core.prepare_ohlcv` produces.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path

import pandas as pd

from src.errors import DataUnavailable
from src.features.core import OHLCV_COLS, prepare_ohlcv

DateLike = date | datetime | str


def utcnow() -> datetime:
    """Naive UTC now, matching the naive-UTC timestamps used across the ledger."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: float


class PriceSeriesProvider(ABC):
    @abstractmethod
    def get_daily_series(self, symbol: str, start: DateLike, end: DateLike) -> pd.DataFrame: ...

    @abstractmethod
    def get_live_quote(self, symbol: str) -> Quote: ...


def _ts(x: DateLike) -> pd.Timestamp:
    t = pd.Timestamp(x)
    return t.tz_convert("UTC").tz_localize(None) if t.tzinfo is not None else t


class InMemoryPriceProvider(PriceSeriesProvider):
    """
    Serves pre-loaded OHLCV frames. Used for replaying cached bars and in tests.
    Live quotes default to the latest close when no explicit quote is set.
    """

    def __init__(
        self,
        frames: dict[str, pd.DataFrame] | None = None,
        quotes: dict[str, float] | None = None,
    ) -> None:
        self._frames = {k.upper(): prepare_ohlcv(v) for k, v in (frames or {}).items()}
        self._quotes = {k.upper(): float(v) for k, v in (quotes or {}).items()}

    @classmethod
    def from_csv_dir(cls, path: str | Path) -> InMemoryPriceProvider:
        """Loads every <SYMBOL>.csv in `path` (columns: ts, open, high, low, close, volume)."""
        frames = {p.stem: pd.read_csv(p) for p in sorted(Path(path).glob("*.csv"))}
        return cls(frames=frames)

    def get_daily_series(self, symbol: str, start: DateLike, end: DateLike) -> pd.DataFrame:
        frame = self._frames.get(symbol.upper())
        if frame is None:
            raise DataUnavailable(f"No price data for symbol: {symbol!r}")

        lo, hi = _ts(start), _ts(end)
        out = frame[(frame["ts"] >= lo) & (frame["ts"] <= hi)]
        return out[OHLCV_COLS].reset_index(drop=True)

    def get_live_quote(self, symbol: str) -> Quote:
        key = symbol.upper()
        if key in self._quotes:
            return Quote(symbol=symbol, price=self._quotes[key])

        frame = self._frames.get(key)
        if frame is None or frame.empty:
            raise DataUnavailable(f"No quote for symbol: {symbol!r}")
        return Quote(symbol=symbol, price=float(frame["close"].iloc[-1]))
