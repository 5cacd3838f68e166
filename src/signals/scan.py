from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from src.data.fanout import run_bounded
from src.data.provider import PriceSeriesProvider, utcnow
from src.errors import AnalyticsError
from src.signals.flags import FlagResult, flags_from_snapshot
from src.signals.indicators import compute_indicators
from src.signals.stage import LOOKBACK_DAYS, StageResult, stage_from_snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalSnapshot:
    symbol: str
    stage: StageResult
    flags: FlagResult


def scan_symbols(
    symbols: Iterable[str],
    provider: PriceSeriesProvider,
    as_of: datetime | None = None,
    max_workers: int = 4,
    timeout: float = 15.0,
) -> dict[str, SignalSnapshot]:
    """
    Stage + flags for many symbols: one provider call per symbol, fanned out,
    and one indicator pass per frame. A failing symbol gets the neutral
    stage/flag defaults; the rest of the batch is unaffected.
    """
    end = as_of or utcnow()
    start = end - timedelta(days=LOOKBACK_DAYS)
    uniq = list(dict.fromkeys(symbols))

    frames = run_bounded(
        {s: (lambda s=s: provider.get_daily_series(s, start, end)) for s in uniq},
        max_workers=max_workers,
        timeout=timeout,
    )

    out: dict[str, SignalSnapshot] = {}
    for sym in uniq:
        frame = frames[sym]
        if isinstance(frame, AnalyticsError):
            out[sym] = SignalSnapshot(
                symbol=sym,
                stage=StageResult.unknown(sym, str(frame)),
                flags=FlagResult.failed(sym, str(frame)),
            )
            continue

        try:
            snap = compute_indicators(frame)
        except ValueError as e:
            logger.warning("indicators failed for %s: %s", sym, e)
            out[sym] = SignalSnapshot(
                symbol=sym,
                stage=StageResult.unknown(sym, str(e)),
                flags=FlagResult.failed(sym, str(e)),
            )
            continue

        try:
            stage = stage_from_snapshot(sym, snap)
        except AnalyticsError as e:
            stage = StageResult.unknown(sym, str(e))

        out[sym] = SignalSnapshot(symbol=sym, stage=stage, flags=flags_from_snapshot(sym, snap))

    logger.info("scanned %d symbol(s)", len(out))
    return out
