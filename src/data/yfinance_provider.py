"""
yfinance adapter for PriceSeriesProvider.

All yfinance-specific details (Ticker.history, fast_info) stay in this module.
"""
from __future__ import annotations

import logging

import pandas as pd
import yfinance as yf

from src.data.provider import DateLike, PriceSeriesProvider, Quote
from src.errors import DataUnavailable
from src.features.core import OHLCV_COLS, prepare_ohlcv

logger = logging.getLogger(__name__)

_KNOWN_SUFFIXES = (".NS", ".BO")


def normalize_symbol(symbol: str, suffix: str = "") -> str:
    """Append the exchange suffix (e.g. '.NS') unless the symbol already has one."""
    s = symbol.strip().upper()
    if not suffix or s.endswith(_KNOWN_SUFFIXES) or "." in s:
        return s
    return f"{s}{suffix}"


class YFinancePriceProvider(PriceSeriesProvider):
    def __init__(self, suffix: str = "", timeout: float = 15.0) -> None:
        self.suffix = suffix
        self.timeout = float(timeout)

    def get_daily_series(self, symbol: str, start: DateLike, end: DateLike) -> pd.DataFrame:
        query = normalize_symbol(symbol, self.suffix)
        # yfinance treats `end` as exclusive
        end_excl = pd.Timestamp(end) + pd.Timedelta(days=1)
        try:
            history = yf.Ticker(query).history(
                start=pd.Timestamp(start).strftime("%Y-%m-%d"),
                end=end_excl.strftime("%Y-%m-%d"),
                interval="1d",
                auto_adjust=False,
                timeout=self.timeout,
            )
        except Exception as e:
            raise DataUnavailable(f"yfinance history failed for {query!r}: {e}") from e

        if history is None or history.empty:
            raise DataUnavailable(f"No historical data available for symbol: {query!r}")

        idx = pd.DatetimeIndex(history.index)
        if idx.tz is not None:
            # keep the exchange-local calendar date
            idx = idx.tz_localize(None)

        frame = pd.DataFrame(
            {
                "ts": idx,
                "open": history["Open"].to_numpy(),
                "high": history["High"].to_numpy(),
                "low": history["Low"].to_numpy(),
                "close": history["Close"].to_numpy(),
                "volume": history["Volume"].to_numpy(),
            }
        )
        return prepare_ohlcv(frame)[OHLCV_COLS]

    def get_live_quote(self, symbol: str) -> Quote:
        query = normalize_symbol(symbol, self.suffix)
        try:
            ticker = yf.Ticker(query)
            price = getattr(ticker.fast_info, "last_price", None)
            if price is None:
                hist = ticker.history(period="5d", interval="1d", timeout=self.timeout)
                price = None if hist.empty else hist["Close"].iloc[-1]
        except Exception as e:
            raise DataUnavailable(f"yfinance quote failed for {query!r}: {e}") from e

        if price is None or pd.isna(price):
            raise DataUnavailable(f"No price data available for symbol: {query!r}")

        logger.debug("quote %s=%.4f", query, float(price))
        return Quote(symbol=symbol, price=float(price))
