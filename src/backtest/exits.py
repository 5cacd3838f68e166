from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import pandas as pd


class ExitReason(str, Enum):
    STOP = "STOP"
    TRAILING_STOP = "TRAILING_STOP"
    TARGET = "TARGET"


@dataclass(frozen=True)
class Brackets:
    stop_px: float | None
    tp_px: float | None
    trailing: bool = False


@dataclass(frozen=True)
class PathExit:
    exit_px: float
    reason: ExitReason
    exit_ts: datetime
    peak: float


def _check_pct(name: str, value: float | None) -> float | None:
    if value is None:
        return None
    v = float(value)
    if not v > 0:
        raise ValueError(f"{name} must be > 0, got {value!r}")
    return v


def compute_long_brackets(
    entry_px: float,
    stop_loss_pct: float | None = None,
    target_pct: float | None = None,
) -> Brackets:
    entry = float(entry_px)
    if entry <= 0:
        raise ValueError("entry price must be > 0")

    stop = _check_pct("stop_loss_pct", stop_loss_pct)
    target = _check_pct("target_pct", target_pct)

    return Brackets(
        stop_px=None if stop is None else entry * (1.0 - stop / 100.0),
        tp_px=None if target is None else entry * (1.0 + target / 100.0),
    )


def trailing_stop_px(peak: float, trailing_pct: float) -> float:
    return float(peak) * (1.0 - float(trailing_pct) / 100.0)


def check_long_exit(
    low: float,
    high: float,
    brackets: Brackets,
) -> tuple[float | None, ExitReason | None]:
    """
    Returns (exit_px, reason) if stop/TP hit in this bar, else (None, None).

    Conservative ordering:
      If BOTH stop and TP are touched in the same bar, assume STOP is hit first.
      A gap through the stop still fills at the stop level.
    """
    lo = float(low)
    hi = float(high)

    if brackets.stop_px is not None and lo <= brackets.stop_px:
        reason = ExitReason.TRAILING_STOP if brackets.trailing else ExitReason.STOP
        return float(brackets.stop_px), reason

    if brackets.tp_px is not None and hi >= brackets.tp_px:
        return float(brackets.tp_px), ExitReason.TARGET

    return None, None


def replay_long_path(
    entry_px: float,
    bars: pd.DataFrame,
    stop_loss_pct: float | None = None,
    target_pct: float | None = None,
    trailing_pct: float | None = None,
) -> PathExit | None:
    """
    Walks daily bars (ts, low, high) in order and returns the first exit, or
    None if no level was touched.

    With trailing_pct the running peak is raised from each bar's high before
    that bar is checked; the effective stop is the tighter of the fixed and
    trailing levels.
    """
    trail = _check_pct("trailing_pct", trailing_pct)
    base = compute_long_brackets(entry_px, stop_loss_pct, target_pct)
    peak = float(entry_px)

    for ts, lo, hi in zip(bars["ts"], bars["low"], bars["high"]):
        if pd.isna(lo) or pd.isna(hi):
            continue

        brackets = base
        if trail is not None:
            peak = max(peak, float(hi))
            trail_px = trailing_stop_px(peak, trail)
            if base.stop_px is None or trail_px > base.stop_px:
                brackets = Brackets(stop_px=trail_px, tp_px=base.tp_px, trailing=True)

        px, reason = check_long_exit(lo, hi, brackets)
        if reason is not None:
            return PathExit(exit_px=px, reason=reason, exit_ts=pd.Timestamp(ts).to_pydatetime(), peak=peak)

    return None
