"""
Trading-psychology statistics over the closed-trade ledger.

Every analysis returns its numbers together with a short insight string
picked from fixed thresholds. Open trades are ignored throughout.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Sequence

import numpy as np

from src.data.fanout import run_bounded
from src.data.provider import PriceSeriesProvider, utcnow
from src.errors import AnalyticsError
from src.ledger.types import Trade

logger = logging.getLogger(__name__)

SLOW_LOSS_RATIO = 2.0
EARLY_WIN_RATIO = 0.5
RISKY_PL_RATIO = 1.0
STRONG_PL_RATIO = 2.0
CONCENTRATION_LIMIT_PCT = 40.0

EARLY_EXIT_WINDOW = 10
EARLY_EXIT_HORIZON_BARS = 30
EARLY_EXIT_RISE = 0.10
EARLY_EXIT_MAX_FETCH_DAYS = 60
EARLY_EXIT_HABIT_COUNT = 2

OTHER_SECTOR = "Other"


@dataclass(frozen=True)
class Holding:
    symbol: str
    quantity: float
    current_price: float


@dataclass(frozen=True)
class HoldingPeriodAnalysis:
    avg_win_days: float
    avg_loss_days: float
    ratio: float
    insight: str


@dataclass(frozen=True)
class ProfitPatternAnalysis:
    avg_profit: float
    avg_loss: float
    win_rate: float
    profit_to_loss_ratio: float
    insight: str


@dataclass(frozen=True)
class SectorAllocation:
    name: str
    value: float
    allocation: float


@dataclass(frozen=True)
class SectorAnalysis:
    sectors: list[SectorAllocation]
    top_sector: str
    concentration: float
    insight: str


@dataclass(frozen=True)
class MissedExit:
    symbol: str
    sell_date: datetime
    sell_price: float
    price_after: float
    missed_profit_percent: float


@dataclass(frozen=True)
class EarlyExitAnalysis:
    missed: list[MissedExit]
    total_missed_profit: float
    checked: int
    failed: int
    insight: str


@dataclass(frozen=True)
class AveragingDownInstance:
    symbol: str
    attempts: int
    outcome: str  # RECOVERED | FAILED
    pnl: float


@dataclass(frozen=True)
class AveragingDownAnalysis:
    instances: list[AveragingDownInstance]
    success_rate: float
    total_impact: float
    insight: str


@dataclass(frozen=True)
class BehaviorReport:
    holding_period: HoldingPeriodAnalysis
    profit_patterns: ProfitPatternAnalysis
    averaging_down: AveragingDownAnalysis
    sectors: SectorAnalysis | None = None
    early_exits: EarlyExitAnalysis | None = None
    closed_trades: int = 0


def closed_only(trades: Iterable[Trade]) -> list[Trade]:
    return [t for t in trades if t.is_closed]


def _split(trades: Sequence[Trade]) -> tuple[list[Trade], list[Trade]]:
    winners = [t for t in trades if float(t.profit_loss) > 0]
    losers = [t for t in trades if float(t.profit_loss) <= 0]
    return winners, losers


def _mean(values: list[float]) -> float:
    return float(np.mean(values)) if values else 0.0


# 1. Holding period


def analyze_holding_period(trades: Iterable[Trade]) -> HoldingPeriodAnalysis:
    winners, losers = _split(closed_only(trades))

    avg_win = _mean([float(t.holding_period_days) for t in winners])
    avg_loss = _mean([float(t.holding_period_days) for t in losers])
    ratio = 0.0 if avg_win == 0 else avg_loss / avg_win

    insight = "Your holding patterns are balanced."
    if ratio > SLOW_LOSS_RATIO:
        insight = (
            f"You hold losers {ratio:.1f}x longer than winners. Consider cutting losses earlier."
        )
    elif ratio < EARLY_WIN_RATIO:
        insight = (
            "You might be selling winners too early. "
            f"You hold winners only {avg_win:.0f} days on average."
        )

    return HoldingPeriodAnalysis(
        avg_win_days=avg_win, avg_loss_days=avg_loss, ratio=ratio, insight=insight
    )


# 2. Profit patterns


def analyze_profit_patterns(trades: Iterable[Trade]) -> ProfitPatternAnalysis:
    closed = closed_only(trades)
    winners, losers = _split(closed)

    avg_profit = _mean([float(t.profit_loss) for t in winners])
    avg_loss = _mean([float(t.profit_loss) for t in losers])
    win_rate = len(winners) / len(closed) if closed else 0.0
    ratio = 0.0 if avg_loss == 0 else abs(avg_profit / avg_loss)

    insight = "Balanced risk/reward ratio."
    if ratio < RISKY_PL_RATIO:
        insight = (
            f"Risk Warning: Your average loss ({abs(avg_loss):.0f}) is larger than "
            f"your average profit ({avg_profit:.0f})."
        )
    elif ratio > STRONG_PL_RATIO:
        insight = "Excellent! Your winners are significantly larger than your losers."

    return ProfitPatternAnalysis(
        avg_profit=avg_profit,
        avg_loss=avg_loss,
        win_rate=win_rate,
        profit_to_loss_ratio=ratio,
        insight=insight,
    )


# 3. Sector concentration


def analyze_sector_concentration(
    holdings: Iterable[Holding],
    sector_map: dict[str, str],
) -> SectorAnalysis:
    values: dict[str, float] = {}
    for h in holdings:
        sector = sector_map.get(h.symbol.upper(), OTHER_SECTOR)
        values[sector] = values.get(sector, 0.0) + float(h.quantity) * float(h.current_price)

    total = sum(values.values())
    sectors = sorted(
        (
            SectorAllocation(name=name, value=v, allocation=(v / total * 100.0) if total else 0.0)
            for name, v in values.items()
        ),
        key=lambda s: s.value,
        reverse=True,
    )

    top = sectors[0].name if sectors else "None"
    concentration = sectors[0].allocation if sectors else 0.0

    insight = "Good diversification."
    if concentration > CONCENTRATION_LIMIT_PCT:
        insight = (
            f"High concentration risk: {concentration:.0f}% of your portfolio is in {top}."
        )

    return SectorAnalysis(sectors=sectors, top_sector=top, concentration=concentration, insight=insight)


# 4. Early exits


def find_early_exits(
    trades: Iterable[Trade],
    provider: PriceSeriesProvider,
    as_of: datetime | None = None,
    max_workers: int = 4,
    timeout: float = 15.0,
) -> EarlyExitAnalysis:
    """
    Checks the most recent closed sells against the close 30 trading days
    later. A provider failure for one trade is counted and logged; the
    remaining trades are still checked.
    """
    now = as_of or utcnow()
    recent = sorted(closed_only(trades), key=lambda t: t.sell_date, reverse=True)
    # the 30-bar horizon cannot have elapsed within 30 calendar days
    recent = [
        t for t in recent[:EARLY_EXIT_WINDOW]
        if t.sell_date + timedelta(days=EARLY_EXIT_HORIZON_BARS) <= now
    ]

    def _fetch(t: Trade):
        start = t.sell_date + timedelta(days=1)
        end = min(now, t.sell_date + timedelta(days=EARLY_EXIT_MAX_FETCH_DAYS))
        return provider.get_daily_series(t.symbol, start, end)

    frames = run_bounded(
        {i: (lambda t=t: _fetch(t)) for i, t in enumerate(recent)},
        max_workers=max_workers,
        timeout=timeout,
    )

    missed: list[MissedExit] = []
    total_missed = 0.0
    checked = 0
    failed = 0

    for i, t in enumerate(recent):
        frame = frames[i]
        if isinstance(frame, AnalyticsError):
            logger.warning("early-exit check skipped for %s: %s", t.symbol, frame)
            failed += 1
            continue

        after = frame[frame["ts"] > t.sell_date]
        if len(after) < EARLY_EXIT_HORIZON_BARS:
            continue

        checked += 1
        sell = float(t.sell_price)
        price_after = float(after["close"].iloc[EARLY_EXIT_HORIZON_BARS - 1])

        if price_after >= sell * (1.0 + EARLY_EXIT_RISE):
            missed.append(
                MissedExit(
                    symbol=t.symbol,
                    sell_date=t.sell_date,
                    sell_price=sell,
                    price_after=price_after,
                    missed_profit_percent=(price_after - sell) / sell * 100.0,
                )
            )
            total_missed += (price_after - sell) * float(t.quantity)

    insight = "Your exit timing is generally good."
    if len(missed) > EARLY_EXIT_HABIT_COUNT:
        insight = (
            f"You tend to sell winners early. {len(missed)} recent trades went up "
            "significantly after you sold."
        )

    return EarlyExitAnalysis(
        missed=missed,
        total_missed_profit=total_missed,
        checked=checked,
        failed=failed,
        insight=insight,
    )


# 5. Averaging down


@dataclass
class _Lot:
    buy_date: datetime
    buy_price: float
    exit: datetime | None  # None while any part is still open
    pnl: float = 0.0
    open_parts: int = 0


@dataclass
class _Episode:
    lots: list[_Lot] = field(default_factory=list)
    attempts: int = 0


def _lots_by_symbol(trades: Iterable[Trade]) -> dict[str, list[_Lot]]:
    # rows split by partial sells share the BUY identity; fold them back into one lot
    grouped: dict[tuple, _Lot] = {}
    symbols: dict[tuple, str] = {}
    for t in trades:
        key = t.buy_identity
        lot = grouped.get(key)
        if lot is None:
            lot = grouped[key] = _Lot(buy_date=t.buy_date, buy_price=float(t.buy_price), exit=t.sell_date)
            symbols[key] = t.symbol
        if t.is_closed:
            lot.pnl += float(t.profit_loss)
            if lot.exit is not None and t.sell_date > lot.exit:
                lot.exit = t.sell_date
        else:
            lot.open_parts += 1
        if lot.open_parts:
            lot.exit = None

    out: dict[str, list[_Lot]] = {}
    for key, lot in grouped.items():
        out.setdefault(symbols[key], []).append(lot)
    for lots in out.values():
        lots.sort(key=lambda x: x.buy_date)
    return out


def _episodes(lots: list[_Lot]) -> list[_Episode]:
    """Groups lots into stretches where the position never went flat."""
    episodes: list[_Episode] = []
    current: _Episode | None = None
    open_until: datetime | None = None
    still_open = False

    for lot in lots:
        overlaps = current is not None and (still_open or (open_until is not None and lot.buy_date < open_until))
        if not overlaps:
            current = _Episode()
            episodes.append(current)
            open_until, still_open = None, False
        elif lot.buy_price < current.lots[-1].buy_price:
            current.attempts += 1

        current.lots.append(lot)
        if lot.exit is None:
            still_open = True
        elif open_until is None or lot.exit > open_until:
            open_until = lot.exit

    return episodes


def detect_averaging_down(trades: Iterable[Trade]) -> AveragingDownAnalysis:
    """
    An averaging-down attempt is a buy below the previous buy while the
    position is still held. Episodes with open lots are not scored yet.
    """
    instances: list[AveragingDownInstance] = []

    for symbol, lots in sorted(_lots_by_symbol(trades).items()):
        for ep in _episodes(lots):
            if ep.attempts == 0 or any(lot.exit is None for lot in ep.lots):
                continue
            pnl = sum(lot.pnl for lot in ep.lots)
            instances.append(
                AveragingDownInstance(
                    symbol=symbol,
                    attempts=ep.attempts,
                    outcome="RECOVERED" if pnl > 0 else "FAILED",
                    pnl=pnl,
                )
            )

    if not instances:
        return AveragingDownAnalysis(
            instances=[],
            success_rate=0.0,
            total_impact=0.0,
            insight="No significant averaging down patterns detected in recent trades.",
        )

    recovered = sum(1 for i in instances if i.outcome == "RECOVERED")
    success = recovered / len(instances)
    impact = sum(i.pnl for i in instances)

    if success < 0.5:
        insight = (
            f"Averaging down recovered in only {success * 100:.0f}% of {len(instances)} cases "
            f"(net {impact:.0f}). Adding to losers is hurting you."
        )
    else:
        insight = f"Averaging down recovered in {success * 100:.0f}% of {len(instances)} cases."

    return AveragingDownAnalysis(
        instances=instances, success_rate=success, total_impact=impact, insight=insight
    )


def analyze_behavior(
    trades: Sequence[Trade],
    holdings: Iterable[Holding] | None = None,
    sector_map: dict[str, str] | None = None,
    provider: PriceSeriesProvider | None = None,
    as_of: datetime | None = None,
) -> BehaviorReport:
    """All analyses in one report; sector and early-exit parts need their inputs."""
    closed = closed_only(trades)
    return BehaviorReport(
        holding_period=analyze_holding_period(closed),
        profit_patterns=analyze_profit_patterns(closed),
        averaging_down=detect_averaging_down(trades),
        sectors=(
            analyze_sector_concentration(holdings, sector_map or {})
            if holdings is not None
            else None
        ),
        early_exits=find_early_exits(closed, provider, as_of=as_of) if provider is not None else None,
        closed_trades=len(closed),
    )
