from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

trades = Table(
    "trades",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("symbol", String(32), nullable=False),
    Column("buy_date", DateTime, nullable=False),
    Column("buy_price", Float, nullable=False),
    Column("quantity", Float, nullable=False),
    Column("origin_quantity", Float, nullable=True),
    Column("sell_date", DateTime, nullable=True),
    Column("sell_price", Float, nullable=True),
    Column("profit_loss", Float, nullable=True),
    Column("holding_period_days", Integer, nullable=True),
    Index("ix_trades_user_symbol", "user_id", "symbol"),
)

alert_rules = Table(
    "alert_rules",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("rule_name", String(128), nullable=False),
    # JSON text: {"symbol": ..., "indicator": ..., "condition": ..., "value": ...}
    Column("parameters", Text, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
)

alerts = Table(
    "alerts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("alert_rule_id", Integer, nullable=True),
    Column("symbol", String(32), nullable=False),
    Column("message", Text, nullable=False),
    Column("priority", String(16), nullable=False),
    Column("created_at", DateTime, nullable=False),
    Index("ix_alerts_user", "user_id"),
)


def create_all(engine) -> None:
    metadata.create_all(engine)
