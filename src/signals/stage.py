from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

import pandas as pd

from src.data.provider import PriceSeriesProvider, utcnow
from src.errors import DataUnavailable, InsufficientData
from src.signals.indicators import IndicatorSnapshot, compute_indicators

logger = logging.getLogger(__name__)

MIN_STAGE_BARS = 205
SLOPE_THRESHOLD = 0.001  # 0.1% over the 5-point window
LOOKBACK_DAYS = 400


class MaSlope(str, Enum):
    RISING = "RISING"
    FALLING = "FALLING"
    FLAT = "FLAT"


STAGE_INSIGHTS = {
    1: "Basing Phase. Price consolidating near moving average.",
    2: "Advancing Phase. Price above rising 200-day MA.",
    3: "Topping Phase. Increased volatility detected. Review your rules.",
    4: "Declining Phase. Price below falling 200-day MA. Review your position.",
}


@dataclass(frozen=True)
class StageResult:
    symbol: str
    stage: int | None
    ma200: float
    current_price: float
    ma_slope: MaSlope
    insight: str
    error: str | None = None

    @classmethod
    def unknown(cls, symbol: str, error: str) -> StageResult:
        """Neutral default used when a symbol cannot be classified."""
        return cls(
            symbol=symbol,
            stage=None,
            ma200=0.0,
            current_price=0.0,
            ma_slope=MaSlope.FLAT,
            insight="Insufficient data or error.",
            error=error,
        )


def classify_slope(ma_now: float, ma_before: float) -> MaSlope:
    change = (float(ma_now) - float(ma_before)) / float(ma_before)
    if change > SLOPE_THRESHOLD:
        return MaSlope.RISING
    if change < -SLOPE_THRESHOLD:
        return MaSlope.FALLING
    return MaSlope.FLAT


def assign_stage(price: float, ma: float, slope: MaSlope) -> int:
    """
    Weinstein stage. Stage 2/4 are checked before the FLAT fallback so a
    pullback under a rising MA is never read as basing.
    """
    if price > ma and slope == MaSlope.RISING:
        return 2
    if price < ma and slope == MaSlope.FALLING:
        return 4
    if slope == MaSlope.FLAT:
        return 1
    return 3


def stage_from_snapshot(symbol: str, snap: IndicatorSnapshot) -> StageResult:
    if snap.bars < MIN_STAGE_BARS or snap.ma200 is None or snap.ma200_5_ago is None:
        raise InsufficientData(f"{symbol}: need >= {MIN_STAGE_BARS} closes, got {snap.bars}")

    slope = classify_slope(snap.ma200, snap.ma200_5_ago)
    stage = assign_stage(snap.close, snap.ma200, slope)
    return StageResult(
        symbol=symbol,
        stage=stage,
        ma200=snap.ma200,
        current_price=snap.close,
        ma_slope=slope,
        insight=STAGE_INSIGHTS[stage],
    )


def classify_stage(symbol: str, frame: pd.DataFrame) -> StageResult:
    """Raises InsufficientData when the frame has fewer than 205 closes."""
    return stage_from_snapshot(symbol, compute_indicators(frame, min_bars=MIN_STAGE_BARS))


def analyze_stage(
    symbol: str,
    provider: PriceSeriesProvider,
    as_of: datetime | None = None,
) -> StageResult:
    """Fetch + classify; data problems come back as StageResult.unknown."""
    end = as_of or utcnow()
    try:
        frame = provider.get_daily_series(symbol, end - timedelta(days=LOOKBACK_DAYS), end)
        return classify_stage(symbol, frame)
    except (InsufficientData, DataUnavailable) as e:
        logger.warning("stage analysis failed for %s: %s", symbol, e)
        return StageResult.unknown(symbol, str(e))
