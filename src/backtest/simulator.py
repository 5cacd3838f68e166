"""
What-if replay of the closed-trade ledger under alternate exit rules.

Two modes:
  - simulate_from_ledger: caps each trade's realized % P&L at the stop / target
    levels; no price lookups.
  - simulate_with_prices: walks the daily bars between buy and sell and exits on
    the first touched level (fixed stop, trailing stop, target). Trades whose
    price path cannot be fetched fall back to the ledger estimate.

Returns are percent of buy price per trade and totals are plain sums of those
percentages.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Sequence

import pandas as pd

from src.backtest.exits import ExitReason, PathExit, replay_long_path
from src.backtest.metrics import Metrics, compute_metrics
from src.data.fanout import run_bounded
from src.data.provider import PriceSeriesProvider
from src.errors import AnalyticsError
from src.ledger.types import Trade

logger = logging.getLogger(__name__)

MAX_DETAIL_ROWS = 20


@dataclass(frozen=True)
class SimulationDetail:
    symbol: str
    original_pct: float
    simulated_pct: float
    reason: str
    exit_date: datetime | None = None

    @property
    def changed(self) -> bool:
        return self.simulated_pct != self.original_pct


@dataclass(frozen=True)
class SimulationResult:
    original_pl: float
    simulated_pl: float
    difference: float
    difference_percent: float
    trades_affected: int
    total_trades: int
    details: list[SimulationDetail] = field(default_factory=list)
    original_metrics: Metrics | None = None
    simulated_metrics: Metrics | None = None
    fallbacks: int = 0


def _fmt(pct: float) -> str:
    return f"{pct:g}"


def _closed(trades: Iterable[Trade]) -> list[Trade]:
    return [t for t in trades if t.is_closed and float(t.buy_price) > 0]


def _summarize(details: list[SimulationDetail], fallbacks: int = 0) -> SimulationResult:
    original = [d.original_pct for d in details]
    simulated = [d.simulated_pct for d in details]

    orig_total = float(sum(original))
    sim_total = float(sum(simulated))
    diff = sim_total - orig_total

    return SimulationResult(
        original_pl=orig_total,
        simulated_pl=sim_total,
        difference=diff,
        difference_percent=(diff / abs(orig_total) * 100.0) if orig_total != 0 else 0.0,
        trades_affected=sum(1 for d in details if d.changed),
        total_trades=len(details),
        details=details[:MAX_DETAIL_ROWS],
        original_metrics=compute_metrics(original),
        simulated_metrics=compute_metrics(simulated),
        fallbacks=fallbacks,
    )


def ledger_estimate(
    trade: Trade,
    stop_loss_pct: float | None = None,
    target_pct: float | None = None,
) -> SimulationDetail:
    pct = trade.pnl_percent

    if stop_loss_pct is not None and pct < -float(stop_loss_pct):
        return SimulationDetail(
            symbol=trade.symbol,
            original_pct=pct,
            simulated_pct=-float(stop_loss_pct),
            reason=f"Stop loss would have limited loss to -{_fmt(stop_loss_pct)}%",
        )

    if target_pct is not None and pct > float(target_pct):
        return SimulationDetail(
            symbol=trade.symbol,
            original_pct=pct,
            simulated_pct=float(target_pct),
            reason=f"Would have exited at +{_fmt(target_pct)}% target",
        )

    return SimulationDetail(
        symbol=trade.symbol,
        original_pct=pct,
        simulated_pct=pct,
        reason="Profitable trade" if pct >= 0 else "Loss within stop limit",
    )


def simulate_from_ledger(
    trades: Iterable[Trade],
    stop_loss_pct: float | None = None,
    target_pct: float | None = None,
) -> SimulationResult:
    for name, v in (("stop_loss_pct", stop_loss_pct), ("target_pct", target_pct)):
        if v is not None and not float(v) > 0:
            raise ValueError(f"{name} must be > 0, got {v!r}")

    details = [ledger_estimate(t, stop_loss_pct, target_pct) for t in _closed(trades)]
    return _summarize(details)


def _path_reason(hit: PathExit, stop_loss_pct, target_pct, trailing_pct) -> str:
    if hit.reason == ExitReason.TRAILING_STOP:
        return f"Trailing stop (-{_fmt(trailing_pct)}% from peak {hit.peak:.2f})"
    if hit.reason == ExitReason.STOP:
        return f"Stop loss at -{_fmt(stop_loss_pct)}%"
    return f"Target hit at +{_fmt(target_pct)}%"


def _trade_bars(frame: pd.DataFrame, trade: Trade) -> pd.DataFrame:
    start = pd.Timestamp(trade.buy_date).normalize()
    end = pd.Timestamp(trade.sell_date)
    ts = frame["ts"]
    return frame[(ts >= start) & (ts <= end)]


def simulate_with_prices(
    trades: Iterable[Trade],
    provider: PriceSeriesProvider,
    stop_loss_pct: float | None = None,
    target_pct: float | None = None,
    trailing_pct: float | None = None,
    max_workers: int = 4,
    timeout: float = 15.0,
) -> SimulationResult:
    closed = _closed(trades)
    if stop_loss_pct is None and target_pct is None and trailing_pct is None:
        raise ValueError("at least one of stop_loss_pct, target_pct, trailing_pct is required")

    # one provider call per symbol covering all of its trades
    spans: dict[str, tuple[datetime, datetime]] = {}
    for t in closed:
        lo, hi = spans.get(t.symbol, (t.buy_date, t.sell_date))
        spans[t.symbol] = (min(lo, t.buy_date), max(hi, t.sell_date))

    frames = run_bounded(
        {
            sym: (lambda sym=sym, s=s, e=e: provider.get_daily_series(sym, s, e + timedelta(days=1)))
            for sym, (s, e) in spans.items()
        },
        max_workers=max_workers,
        timeout=timeout,
    )
    for sym, frame in frames.items():
        if isinstance(frame, AnalyticsError):
            logger.warning("price path unavailable for %s: %s", sym, frame)

    details: list[SimulationDetail] = []
    fallbacks = 0

    for t in closed:
        frame = frames.get(t.symbol)
        bars = None if isinstance(frame, AnalyticsError) or frame is None else _trade_bars(frame, t)

        if bars is None or bars.empty:
            est = ledger_estimate(t, stop_loss_pct, target_pct)
            details.append(
                SimulationDetail(
                    symbol=est.symbol,
                    original_pct=est.original_pct,
                    simulated_pct=est.simulated_pct,
                    reason=f"Data unavailable; ledger estimate: {est.reason}",
                )
            )
            fallbacks += 1
            continue

        original = t.pnl_percent
        hit = replay_long_path(t.buy_price, bars, stop_loss_pct, target_pct, trailing_pct)
        if hit is None:
            details.append(
                SimulationDetail(
                    symbol=t.symbol,
                    original_pct=original,
                    simulated_pct=original,
                    reason="No change (no exit level hit)",
                )
            )
            continue

        buy = float(t.buy_price)
        details.append(
            SimulationDetail(
                symbol=t.symbol,
                original_pct=original,
                simulated_pct=(hit.exit_px - buy) / buy * 100.0,
                reason=_path_reason(hit, stop_loss_pct, target_pct, trailing_pct),
                exit_date=hit.exit_ts,
            )
        )

    if fallbacks:
        logger.info("%d of %d trade(s) used the ledger estimate", fallbacks, len(closed))

    return _summarize(details, fallbacks=fallbacks)
