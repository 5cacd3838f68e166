from __future__ import annotations

from dataclasses import asdict, dataclass

import numpy as np


@dataclass(frozen=True)
class Metrics:
    """Summary of a sequence of per-trade returns (percent), in ledger order."""
    trades: int
    win_rate: float
    expectancy: float
    profit_factor: float
    mdd: float
    total_return: float
    best: float
    worst: float


def compute_metrics(returns_pct: list[float]) -> Metrics:
    arr = np.array([float(x) for x in returns_pct], dtype=float)

    n = int(arr.size)
    if n == 0:
        return Metrics(
            trades=0,
            win_rate=0.0,
            expectancy=0.0,
            profit_factor=0.0,
            mdd=0.0,
            total_return=0.0,
            best=0.0,
            worst=0.0,
        )

    wins = arr[arr > 0]
    losses = arr[arr < 0]

    win_sum = float(wins.sum()) if wins.size else 0.0
    loss_sum = float(losses.sum()) if losses.size else 0.0  # negative

    profit_factor = win_sum / abs(loss_sum) if loss_sum != 0.0 else float("inf")

    # additive equity in percent points, one step per trade
    equity = np.cumsum(arr)
    run_max = np.maximum.accumulate(np.concatenate(([0.0], equity)))[1:]
    mdd = float((equity - run_max).min())

    return Metrics(
        trades=n,
        win_rate=float(wins.size) / float(n),
        expectancy=float(arr.mean()),
        profit_factor=profit_factor,
        mdd=mdd,
        total_return=float(arr.sum()),
        best=float(arr.max()),
        worst=float(arr.min()),
    )


def metrics_to_dict(m: Metrics) -> dict:
    d = asdict(m)
    # Normalize inf for JSON
    if d["profit_factor"] == float("inf"):
        d["profit_factor"] = None
        d["profit_factor_note"] = "infinite (no losing trades)"
    return d
