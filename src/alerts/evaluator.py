from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.alerts.notify import NotificationSender
from src.alerts.rules import Alert, AlertRule, Indicator, Priority
from src.alerts.store import RuleStore
from src.data.fanout import run_bounded
from src.data.provider import PriceSeriesProvider, utcnow
from src.errors import AnalyticsError, InsufficientData
from src.features.core import last_valid, rsi

logger = logging.getLogger(__name__)

RSI_WINDOW = 14
RSI_LOOKBACK_DAYS = 300
RSI_MIN_BARS = 50


@dataclass(frozen=True)
class AlertPassSummary:
    processed: int
    triggered: int
    failed: int
    notified: int


def latest_rsi(provider: PriceSeriesProvider, symbol: str, as_of: datetime) -> float:
    frame = provider.get_daily_series(symbol, as_of - timedelta(days=RSI_LOOKBACK_DAYS), as_of)
    closes = frame["close"].dropna()
    if len(closes) < RSI_MIN_BARS:
        raise InsufficientData(f"{symbol}: {len(closes)} closes, need {RSI_MIN_BARS}")

    value = last_valid(rsi(closes.reset_index(drop=True), RSI_WINDOW))
    if value is None:
        raise InsufficientData(f"{symbol}: RSI undefined")
    return value


def _fetch_value(provider: PriceSeriesProvider, indicator: Indicator, symbol: str, as_of: datetime) -> float:
    if indicator == Indicator.PRICE:
        return float(provider.get_live_quote(symbol).price)
    return latest_rsi(provider, symbol, as_of)


def trigger_message(rule: AlertRule, value: float) -> str:
    if rule.condition.indicator == Indicator.PRICE:
        return f"Price is {value:.2f}"
    return f"RSI is {value:.1f}"


def evaluate_alerts(
    store: RuleStore,
    provider: PriceSeriesProvider,
    sender: NotificationSender,
    as_of: datetime | None = None,
    max_workers: int = 4,
    timeout: float = 15.0,
) -> AlertPassSummary:
    """
    One evaluation pass over every active rule.

    Indicator values are fetched once per (indicator, symbol) and fanned out
    across symbols. A rule whose value cannot be fetched is logged and counted
    as failed, as is a triggered rule whose alert cannot be stored; the other
    rules are still evaluated. Every stored alert is followed by one
    notification attempt, with no dedup against earlier passes.
    """
    now = as_of or utcnow()
    rules = store.active_rules()

    keys = list(dict.fromkeys((r.condition.indicator, r.symbol) for r in rules))
    values = run_bounded(
        {k: (lambda k=k: _fetch_value(provider, k[0], k[1], now)) for k in keys},
        max_workers=max_workers,
        timeout=timeout,
    )

    triggered = failed = notified = 0

    for rule in rules:
        value = values[(rule.condition.indicator, rule.symbol)]
        if isinstance(value, AnalyticsError):
            logger.error("failed to process rule %s (%s): %s", rule.id, rule.symbol, value)
            failed += 1
            continue

        cond = rule.condition
        if not cond.comparison.holds(value, cond.threshold):
            continue

        detail = trigger_message(rule, value)
        try:
            store.add_alert(
                Alert(
                    user_id=rule.user_id,
                    rule_id=rule.id,
                    symbol=rule.symbol,
                    message=f"{rule.name} Triggered: {detail}",
                    priority=Priority.HIGH,
                    created_at=now,
                )
            )
        except Exception:
            logger.exception("failed to store alert for rule %s (%s)", rule.id, rule.symbol)
            failed += 1
            continue
        triggered += 1
        logger.info("TRIGGERED: %s for user=%s", rule.name, rule.user_id)

        try:
            ok = sender.send(
                rule.user_id,
                f"Alert: {rule.symbol} - {rule.name}",
                f'Your alert rule "{rule.name}" was triggered.\n{detail}',
            )
        except Exception:
            logger.exception("notification for rule %s raised", rule.id)
            ok = False
        notified += int(bool(ok))

    summary = AlertPassSummary(
        processed=len(rules), triggered=triggered, failed=failed, notified=notified
    )
    logger.info(
        "alert pass: processed=%d triggered=%d failed=%d notified=%d",
        summary.processed,
        summary.triggered,
        summary.failed,
        summary.notified,
    )
    return summary
