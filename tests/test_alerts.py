import json
from datetime import datetime

import numpy as np
import pandas as pd
import pytest
from sqlalchemy import insert

from src.alerts.evaluator import evaluate_alerts
from src.alerts.notify import LogNotificationSender, NotificationSender
from src.alerts.rules import (
    AlertRule,
    Comparison,
    PriceRule,
    Priority,
    RsiRule,
    parse_rule_parameters,
)
from src.alerts.store import InMemoryRuleStore, SqlRuleStore
from src.data.provider import InMemoryPriceProvider
from src.db.engine import get_engine
from src.db.schema import alert_rules, create_all
from src.errors import InvalidRule

AS_OF = datetime(2024, 12, 31)


def rising_bars(n=300):
    close = np.linspace(100, 200, n)
    return pd.DataFrame(
        {
            "ts": pd.date_range("2024-03-01", periods=n, freq="D"),
            "open": close,
            "high": close + 1,
            "low": close - 1,
            "close": close,
            "volume": np.full(n, 1000.0),
        }
    )


def three_rules():
    return [
        AlertRule(None, "u1", "Above 100", "AAA", PriceRule(Comparison.GT, 100.0)),
        AlertRule(None, "u1", "Missing", "NOPE", PriceRule(Comparison.GT, 1.0)),
        AlertRule(None, "u1", "Hot RSI", "BBB", RsiRule(Comparison.GT, 70.0)),
    ]


def provider():
    return InMemoryPriceProvider({"BBB": rising_bars()}, quotes={"AAA": 120.0})


def test_second_rule_failing_does_not_stop_the_pass():
    store = InMemoryRuleStore(three_rules())
    sender = LogNotificationSender()

    s = evaluate_alerts(store, provider(), sender, as_of=AS_OF)

    assert s.processed == 3
    assert s.triggered == 2
    assert s.failed == 1
    assert s.notified == 2

    alerts = store.alerts("u1")
    assert [a.message for a in alerts] == [
        "Above 100 Triggered: Price is 120.00",
        "Hot RSI Triggered: RSI is 100.0",
    ]
    assert all(a.priority == Priority.HIGH for a in alerts)
    assert [a.rule_id for a in alerts] == [1, 3]
    assert sender.sent[0][1] == "Alert: AAA - Above 100"


def test_repeated_passes_are_not_deduplicated():
    store = InMemoryRuleStore(three_rules()[:1])
    for _ in range(2):
        evaluate_alerts(store, provider(), LogNotificationSender(), as_of=AS_OF)
    assert len(store.alerts("u1")) == 2


def test_inactive_and_untriggered_rules():
    rules = [
        AlertRule(None, "u1", "Below 100", "AAA", PriceRule(Comparison.LT, 100.0)),
        AlertRule(None, "u1", "Off", "AAA", PriceRule(Comparison.GT, 1.0), active=False),
    ]
    store = InMemoryRuleStore(rules)
    s = evaluate_alerts(store, provider(), LogNotificationSender(), as_of=AS_OF)

    assert s.processed == 1
    assert s.triggered == 0
    assert store.alerts("u1") == []


class FailingSender(NotificationSender):
    def send(self, user_id, subject, body):
        return False


def test_notification_failure_still_stores_alert():
    store = InMemoryRuleStore(three_rules()[:1])
    s = evaluate_alerts(store, provider(), FailingSender(), as_of=AS_OF)

    assert s.triggered == 1
    assert s.notified == 0
    assert len(store.alerts("u1")) == 1


class FlakyRuleStore(InMemoryRuleStore):
    """Refuses the first alert write, accepts the rest."""

    def __init__(self, rules):
        super().__init__(rules)
        self.attempts = 0

    def add_alert(self, alert):
        self.attempts += 1
        if self.attempts == 1:
            raise RuntimeError("database unavailable")
        super().add_alert(alert)


def test_alert_write_failure_is_isolated_to_its_rule():
    rules = [three_rules()[0], three_rules()[2]]
    store = FlakyRuleStore(rules)
    sender = LogNotificationSender()

    s = evaluate_alerts(store, provider(), sender, as_of=AS_OF)

    assert s.processed == 2
    assert s.triggered == 1
    assert s.failed == 1
    assert s.notified == 1
    assert [a.message for a in store.alerts("u1")] == ["Hot RSI Triggered: RSI is 100.0"]
    assert [m[1] for m in sender.sent] == ["Alert: BBB - Hot RSI"]


def test_rsi_rule_with_short_history_fails_cleanly():
    short = rising_bars(30)
    store = InMemoryRuleStore([AlertRule(None, "u1", "RSI", "BBB", RsiRule(Comparison.GT, 70.0))])
    s = evaluate_alerts(store, InMemoryPriceProvider({"BBB": short}), LogNotificationSender(), as_of=AS_OF)
    assert s.failed == 1


def test_parse_rule_parameters():
    symbol, cond = parse_rule_parameters(
        json.dumps({"symbol": "reliance", "indicator": "rsi", "condition": "lt", "value": 30})
    )
    assert symbol == "RELIANCE"
    assert cond == RsiRule(Comparison.LT, 30.0)


@pytest.mark.parametrize(
    "params",
    [
        {"symbol": "X", "indicator": "MA", "condition": "GT", "value": 1},
        {"symbol": "X", "indicator": "PRICE", "condition": "CROSSOVER", "value": 1},
        {"symbol": "X", "indicator": "PRICE", "condition": "GT", "value": -1},
        {"symbol": "X", "indicator": "PRICE", "condition": "GT", "value": "high"},
        {"symbol": "X", "indicator": "RSI", "condition": "GT", "value": 120},
        {"indicator": "PRICE", "condition": "GT", "value": 1},
        "not json",
        ["X"],
    ],
)
def test_parse_rule_parameters_rejects(params):
    with pytest.raises(InvalidRule):
        parse_rule_parameters(params)


def test_sql_rule_store_round_trip():
    engine = get_engine("sqlite://")
    create_all(engine)
    store = SqlRuleStore(engine)

    for r in three_rules():
        store.add_rule(r)
    store.add_rule(AlertRule(None, "u2", "Off", "AAA", PriceRule(Comparison.GT, 1.0), active=False))
    with engine.begin() as conn:
        conn.execute(
            insert(alert_rules).values(user_id="u3", rule_name="Broken", parameters="{}", is_active=True)
        )

    active = store.active_rules()
    assert [r.name for r in active] == ["Above 100", "Missing", "Hot RSI"]
    assert active[2].condition == RsiRule(Comparison.GT, 70.0)

    s = evaluate_alerts(store, provider(), LogNotificationSender(), as_of=AS_OF)
    assert s.processed == 3
    assert [a.symbol for a in store.alerts("u1")] == ["AAA", "BBB"]
    assert store.alerts("u2") == []
