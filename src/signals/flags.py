from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pandas as pd

from src.data.provider import PriceSeriesProvider, utcnow
from src.errors import DataUnavailable
from src.signals.indicators import IndicatorSnapshot, compute_indicators

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 400

NEAR_HIGH_PCT = 20.0
VOLUME_SURGE_MULT = 1.3
RSI_MOMENTUM_LOW = 50.0
RSI_MOMENTUM_HIGH = 70.0
RSI_OVERBOUGHT = 75.0
VOLUME_FADE_PCT = -0.05

NEAR_HIGH = "Near 52-Week High (<20%)"
VOLUME_SURGE = "Volume Surge (Avg Vol increasing)"
STAGE2_CONFIRMED = "Stage 2 Confirmed (Price > Rising 200MA)"
BULLISH_TREND = "Bullish Trend (50MA > 200MA)"
STRONG_MOMENTUM = "Strong Momentum (RSI 50-70)"

BEARISH_TREND = "Bearish Trend (50MA < 200MA)"
OVERBOUGHT = "Overbought (RSI > 75)"
BELOW_200DMA = "Below 200 DMA"
LOW_VOLUME_RISE = "Price Rising on Low Volume (Weakness)"
STAGE4_CONFIRMED = "Stage 4 Confirmed (Price < Falling 200MA)"


@dataclass(frozen=True)
class FlagResult:
    symbol: str
    bullish: list[str] = field(default_factory=list)
    bearish: list[str] = field(default_factory=list)
    summary: str = "Neutral"
    error: str | None = None

    @property
    def bullish_count(self) -> int:
        return len(self.bullish)

    @property
    def bearish_count(self) -> int:
        return len(self.bearish)

    @classmethod
    def failed(cls, symbol: str, error: str) -> FlagResult:
        return cls(symbol=symbol, summary="Neutral", error=error)


def summarize(bullish: list[str], bearish: list[str]) -> str:
    g, r = len(bullish), len(bearish)
    if g > r + 1:
        return "Bullish"
    if r > g + 1:
        return "Bearish"
    if g > 0 and r > 0:
        return "Mixed"
    return "Neutral"


def bullish_flags(s: IndicatorSnapshot) -> list[str]:
    out: list[str] = []

    dist_from_high = (s.high_250 - s.close) / s.high_250 * 100.0
    if dist_from_high <= NEAR_HIGH_PCT:
        out.append(NEAR_HIGH)

    if s.vol10 is not None and s.vol20 is not None and s.vol10 >= VOLUME_SURGE_MULT * s.vol20:
        out.append(VOLUME_SURGE)

    if s.ma200 is not None and s.ma200_20_ago is not None:
        if s.close > s.ma200 and s.ma200 > s.ma200_20_ago:
            out.append(STAGE2_CONFIRMED)

    if s.ma50 is not None and s.ma200 is not None and s.ma50 > s.ma200:
        out.append(BULLISH_TREND)

    if s.rsi14 is not None and RSI_MOMENTUM_LOW < s.rsi14 <= RSI_MOMENTUM_HIGH:
        out.append(STRONG_MOMENTUM)

    return out


def bearish_flags(s: IndicatorSnapshot) -> list[str]:
    out: list[str] = []

    if s.ma50 is not None and s.ma200 is not None and s.ma50 < s.ma200:
        out.append(BEARISH_TREND)

    if s.rsi14 is not None and s.rsi14 > RSI_OVERBOUGHT:
        out.append(OVERBOUGHT)

    if s.ma200 is not None and s.close < s.ma200:
        out.append(BELOW_200DMA)

    if s.close_20_ago is not None and s.vol20 is not None and s.vol20_5_ago:
        vol_slope = (s.vol20 - s.vol20_5_ago) / s.vol20_5_ago
        if s.close > s.close_20_ago and vol_slope <= VOLUME_FADE_PCT:
            out.append(LOW_VOLUME_RISE)

    if s.ma200 is not None and s.ma200_20_ago is not None:
        if s.close < s.ma200 and s.ma200 < s.ma200_20_ago:
            out.append(STAGE4_CONFIRMED)

    return out


def flags_from_snapshot(symbol: str, snap: IndicatorSnapshot) -> FlagResult:
    green = bullish_flags(snap)
    red = bearish_flags(snap)
    return FlagResult(symbol=symbol, bullish=green, bearish=red, summary=summarize(green, red))


def compute_flags(symbol: str, frame: pd.DataFrame) -> FlagResult:
    """Never raises for bad data; failures come back as FlagResult.failed."""
    try:
        return flags_from_snapshot(symbol, compute_indicators(frame))
    except ValueError as e:  # InsufficientData included
        logger.warning("flag calculation failed for %s: %s", symbol, e)
        return FlagResult.failed(symbol, str(e))


def analyze_flags(
    symbol: str,
    provider: PriceSeriesProvider,
    as_of: datetime | None = None,
) -> FlagResult:
    end = as_of or utcnow()
    try:
        frame = provider.get_daily_series(symbol, end - timedelta(days=LOOKBACK_DAYS), end)
    except DataUnavailable as e:
        logger.warning("flag data fetch failed for %s: %s", symbol, e)
        return FlagResult.failed(symbol, str(e))
    return compute_flags(symbol, frame)
