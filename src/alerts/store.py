from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace

from sqlalchemy import insert, select, true

from src.alerts.rules import Alert, AlertRule, Priority, parse_rule_parameters, rule_parameters
from src.db.schema import alert_rules as rules_table
from src.db.schema import alerts as alerts_table
from src.errors import InvalidRule

logger = logging.getLogger(__name__)


class RuleStore(ABC):
    @abstractmethod
    def active_rules(self) -> list[AlertRule]: ...

    @abstractmethod
    def add_alert(self, alert: Alert) -> None: ...

    @abstractmethod
    def alerts(self, user_id: str) -> list[Alert]: ...


class InMemoryRuleStore(RuleStore):
    def __init__(self, rules: list[AlertRule] | None = None) -> None:
        self._rules: list[AlertRule] = []
        self._alerts: list[Alert] = []
        self._lock = threading.Lock()
        for r in rules or []:
            self.add_rule(r)

    def add_rule(self, rule: AlertRule) -> AlertRule:
        with self._lock:
            if rule.id is None:
                rule = replace(rule, id=len(self._rules) + 1)
            self._rules.append(rule)
            return rule

    def active_rules(self) -> list[AlertRule]:
        with self._lock:
            return [r for r in self._rules if r.active]

    def add_alert(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.append(alert)

    def alerts(self, user_id: str) -> list[Alert]:
        with self._lock:
            return [a for a in self._alerts if a.user_id == user_id]


class SqlRuleStore(RuleStore):
    """
    Rules over `alert_rules` (parameters stored as JSON text) and alerts over
    `alerts`. Rows whose parameters fail validation are logged and left out.
    """

    def __init__(self, engine) -> None:
        self.engine = engine

    def add_rule(self, rule: AlertRule) -> AlertRule:
        with self.engine.begin() as conn:
            res = conn.execute(
                insert(rules_table).values(
                    user_id=rule.user_id,
                    rule_name=rule.name,
                    parameters=json.dumps(rule_parameters(rule)),
                    is_active=rule.active,
                )
            )
            return replace(rule, id=int(res.inserted_primary_key[0]))

    def active_rules(self) -> list[AlertRule]:
        t = rules_table
        stmt = select(t).where(t.c.is_active == true()).order_by(t.c.id)
        with self.engine.connect() as conn:
            rows = list(conn.execute(stmt).mappings())

        out: list[AlertRule] = []
        for r in rows:
            try:
                symbol, condition = parse_rule_parameters(r["parameters"])
            except InvalidRule as e:
                logger.error("alert rule %s has invalid parameters: %s", r["id"], e)
                continue
            out.append(
                AlertRule(
                    id=int(r["id"]),
                    user_id=r["user_id"],
                    name=r["rule_name"],
                    symbol=symbol,
                    condition=condition,
                    active=bool(r["is_active"]),
                )
            )
        return out

    def add_alert(self, alert: Alert) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(alerts_table).values(
                    user_id=alert.user_id,
                    alert_rule_id=alert.rule_id,
                    symbol=alert.symbol,
                    message=alert.message,
                    priority=alert.priority.value,
                    created_at=alert.created_at,
                )
            )

    def alerts(self, user_id: str) -> list[Alert]:
        t = alerts_table
        stmt = select(t).where(t.c.user_id == user_id).order_by(t.c.created_at, t.c.id)
        with self.engine.connect() as conn:
            return [
                Alert(
                    user_id=r["user_id"],
                    rule_id=r["alert_rule_id"],
                    symbol=r["symbol"],
                    message=r["message"],
                    priority=Priority(r["priority"]),
                    created_at=r["created_at"],
                )
                for r in conn.execute(stmt).mappings()
            ]
