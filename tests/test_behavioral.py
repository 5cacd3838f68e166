from dataclasses import replace
from datetime import datetime, timedelta

import numpy as np
import pandas as pd
import pytest

from src.behavior.analyzer import (
    Holding,
    analyze_behavior,
    analyze_holding_period,
    analyze_profit_patterns,
    analyze_sector_concentration,
    detect_averaging_down,
    find_early_exits,
)
from src.data.provider import InMemoryPriceProvider
from src.ledger.types import Trade

D0 = datetime(2024, 1, 1)


def closed_trade(symbol, buy_px, sell_px, hold_days, qty=10, start=D0):
    t = Trade(symbol=symbol, buy_date=start, buy_price=buy_px, quantity=qty)
    return t.closed_at(start + timedelta(days=hold_days), sell_px)


def test_losers_held_four_times_longer():
    trades = [
        closed_trade("A", 100, 110, 5),
        closed_trade("B", 100, 120, 5),
        closed_trade("C", 100, 90, 20),
        closed_trade("D", 100, 95, 20),
    ]
    r = analyze_holding_period(trades)

    assert r.avg_win_days == 5
    assert r.avg_loss_days == 20
    assert r.ratio == pytest.approx(4.0)
    assert "longer than winners" in r.insight


def test_winners_sold_early_and_no_winners():
    r = analyze_holding_period([closed_trade("A", 100, 110, 20), closed_trade("B", 100, 90, 5)])
    assert r.ratio == pytest.approx(0.25)
    assert "too early" in r.insight

    r = analyze_holding_period([closed_trade("B", 100, 90, 5)])
    assert r.ratio == 0.0


def test_open_trades_are_ignored():
    still_open = Trade(symbol="A", buy_date=D0, buy_price=100, quantity=1)
    r = analyze_profit_patterns([still_open])
    assert r.win_rate == 0.0
    assert r.profit_to_loss_ratio == 0.0


def test_profit_patterns():
    trades = [
        closed_trade("A", 100, 130, 5),  # +300
        closed_trade("B", 100, 110, 5),  # +100
        closed_trade("C", 100, 90, 5),  # -100
    ]
    r = analyze_profit_patterns(trades)

    assert r.win_rate == pytest.approx(2 / 3)
    assert r.avg_profit == pytest.approx(200.0)
    assert r.avg_loss == pytest.approx(-100.0)
    assert r.profit_to_loss_ratio == pytest.approx(2.0)
    assert r.insight == "Balanced risk/reward ratio."


def test_small_winners_big_losers_is_risk_warning():
    r = analyze_profit_patterns([closed_trade("A", 100, 101, 5), closed_trade("B", 100, 90, 5)])
    assert r.insight.startswith("Risk Warning")


def test_sector_concentration():
    holdings = [
        Holding("TCS", 10, 100.0),
        Holding("INFY", 10, 50.0),
        Holding("HDFCBANK", 5, 100.0),
        Holding("ZZZ", 1, 100.0),
    ]
    sector_map = {"TCS": "IT", "INFY": "IT", "HDFCBANK": "Finance"}
    r = analyze_sector_concentration(holdings, sector_map)

    assert r.top_sector == "IT"
    assert r.concentration == pytest.approx(1500 / 2100 * 100)
    assert [s.name for s in r.sectors] == ["IT", "Finance", "Other"]
    assert "High concentration risk" in r.insight


def test_empty_portfolio_is_diversified():
    r = analyze_sector_concentration([], {})
    assert r.top_sector == "None"
    assert r.concentration == 0.0


def bars_after(start, closes):
    n = len(closes)
    closes = np.asarray(closes, dtype=float)
    return pd.DataFrame(
        {
            "ts": pd.date_range(start, periods=n, freq="D"),
            "open": closes,
            "high": closes,
            "low": closes,
            "close": closes,
            "volume": np.full(n, 1000.0),
        }
    )


def test_early_exits_counts_failures_and_keeps_going():
    sold = closed_trade("RUNNER", 90, 100, 9)  # sold 2024-01-10
    provider = InMemoryPriceProvider(
        {"RUNNER": bars_after("2024-01-11", 100 + 0.5 * np.arange(50))}
    )
    trades = [sold, closed_trade("GONE", 100, 100, 9)]

    r = find_early_exits(trades, provider, as_of=datetime(2024, 6, 1))

    assert r.failed == 1
    assert r.checked == 1
    assert len(r.missed) == 1
    m = r.missed[0]
    assert m.price_after == pytest.approx(114.5)
    assert m.missed_profit_percent == pytest.approx(14.5)
    assert r.total_missed_profit == pytest.approx(145.0)


def test_early_exits_skip_recent_sells():
    provider = InMemoryPriceProvider({"A": bars_after("2024-01-11", np.full(50, 200.0))})
    r = find_early_exits([closed_trade("A", 90, 100, 9)], provider, as_of=datetime(2024, 1, 20))
    assert r.checked == 0 and r.failed == 0


def test_averaging_down_outcomes():
    a1 = Trade(symbol="A", buy_date=D0, buy_price=100, quantity=10)
    a2 = Trade(symbol="A", buy_date=D0 + timedelta(days=5), buy_price=90, quantity=10)
    b1 = Trade(symbol="B", buy_date=D0, buy_price=100, quantity=10)
    b2 = Trade(symbol="B", buy_date=D0 + timedelta(days=3), buy_price=80, quantity=10)
    sell_a = D0 + timedelta(days=20)
    sell_b = D0 + timedelta(days=10)

    trades = [
        a1.closed_at(sell_a, 97),  # -30
        a2.closed_at(sell_a, 97),  # +70
        b1.closed_at(sell_b, 70),  # -300
        b2.closed_at(sell_b, 70),  # -100
    ]
    r = detect_averaging_down(trades)

    assert [(i.symbol, i.outcome) for i in r.instances] == [("A", "RECOVERED"), ("B", "FAILED")]
    assert r.success_rate == pytest.approx(0.5)
    assert r.total_impact == pytest.approx(-360.0)


def test_split_rows_of_one_buy_fold_into_a_single_lot():
    a1 = Trade(symbol="A", buy_date=D0, buy_price=100, quantity=10)
    a2 = Trade(symbol="A", buy_date=D0 + timedelta(days=5), buy_price=90, quantity=10)
    sell = D0 + timedelta(days=20)

    trades = [
        a1.closed_at(D0 + timedelta(days=8), 95, quantity=4),  # -20
        replace(a1, quantity=6, origin_quantity=10).closed_at(sell, 97),  # -18
        a2.closed_at(sell, 97),  # +70
    ]
    r = detect_averaging_down(trades)

    assert [(i.symbol, i.attempts, i.outcome) for i in r.instances] == [("A", 1, "RECOVERED")]
    assert r.total_impact == pytest.approx(32.0)


def test_lower_rebuy_after_exit_is_not_averaging_down():
    first = Trade(symbol="A", buy_date=D0, buy_price=100, quantity=10).closed_at(D0 + timedelta(days=2), 95)
    second = Trade(symbol="A", buy_date=D0 + timedelta(days=5), buy_price=90, quantity=10).closed_at(
        D0 + timedelta(days=9), 99
    )
    r = detect_averaging_down([first, second])
    assert r.instances == []
    assert "No significant" in r.insight


def test_open_episode_is_not_scored():
    a1 = Trade(symbol="A", buy_date=D0, buy_price=100, quantity=10)
    a2 = Trade(symbol="A", buy_date=D0 + timedelta(days=5), buy_price=90, quantity=10)
    r = detect_averaging_down([a1, a2])
    assert r.instances == []


def test_analyze_behavior_without_optional_inputs():
    trades = [closed_trade("A", 100, 110, 5), closed_trade("C", 100, 90, 20)]
    r = analyze_behavior(trades)

    assert r.closed_trades == 2
    assert r.holding_period.ratio == pytest.approx(4.0)
    assert r.sectors is None
    assert r.early_exits is None
