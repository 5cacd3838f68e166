from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from src.errors import InvalidRule


class Comparison(str, Enum):
    GT = "GT"
    LT = "LT"

    def holds(self, value: float, threshold: float) -> bool:
        if self is Comparison.GT:
            return value > threshold
        return value < threshold


class Indicator(str, Enum):
    PRICE = "PRICE"
    RSI = "RSI"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class PriceRule:
    comparison: Comparison
    threshold: float
    indicator = Indicator.PRICE


@dataclass(frozen=True)
class RsiRule:
    comparison: Comparison
    threshold: float
    indicator = Indicator.RSI


RuleCondition = PriceRule | RsiRule


@dataclass(frozen=True)
class AlertRule:
    id: int | None
    user_id: str
    name: str
    symbol: str
    condition: RuleCondition
    active: bool = True


@dataclass(frozen=True)
class Alert:
    user_id: str
    rule_id: int | None
    symbol: str
    message: str
    priority: Priority
    created_at: datetime


def parse_rule_parameters(params: Mapping[str, Any] | str) -> tuple[str, RuleCondition]:
    """
    Validates stored rule parameters and returns (symbol, condition).

    Expected shape: {"symbol": "RELIANCE", "indicator": "PRICE"|"RSI",
    "condition": "GT"|"LT", "value": 2500}. A JSON string is accepted.
    """
    if isinstance(params, str):
        try:
            params = json.loads(params)
        except json.JSONDecodeError as e:
            raise InvalidRule(f"parameters are not valid JSON: {e}") from e

    if not isinstance(params, Mapping):
        raise InvalidRule(f"parameters must be a mapping, got {type(params).__name__}")

    symbol = str(params.get("symbol") or "").strip().upper()
    if not symbol:
        raise InvalidRule("symbol required")

    try:
        indicator = Indicator(str(params.get("indicator", "")).strip().upper())
    except ValueError as e:
        raise InvalidRule(f"unsupported indicator: {params.get('indicator')!r}") from e

    try:
        comparison = Comparison(str(params.get("condition", "")).strip().upper())
    except ValueError as e:
        raise InvalidRule(f"unsupported condition: {params.get('condition')!r}") from e

    raw = params.get("value")
    if isinstance(raw, bool):
        raise InvalidRule(f"value must be numeric, got {raw!r}")
    try:
        threshold = float(raw)
    except (TypeError, ValueError) as e:
        raise InvalidRule(f"value must be numeric, got {raw!r}") from e
    if threshold < 0:
        raise InvalidRule("value must be >= 0")
    if indicator == Indicator.RSI and threshold > 100:
        raise InvalidRule("RSI threshold must be within 0..100")

    cls = PriceRule if indicator == Indicator.PRICE else RsiRule
    return symbol, cls(comparison=comparison, threshold=threshold)


def rule_parameters(rule: AlertRule) -> dict[str, Any]:
    c = rule.condition
    return {
        "symbol": rule.symbol,
        "indicator": c.indicator.value,
        "condition": c.comparison.value,
        "value": c.threshold,
    }
