from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

import pandas as pd

from src.errors import InvalidExecution


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


_SIDE_ALIASES = {"BUY": Side.BUY, "B": Side.BUY, "SELL": Side.SELL, "S": Side.SELL}


@dataclass(frozen=True)
class Execution:
    symbol: str
    side: Side
    quantity: float
    price: float
    timestamp: datetime
    trade_id: str | None = None
    segment: str | None = None


@dataclass(frozen=True)
class Trade:
    """
    One ledger row. OPEN until all four sell fields are set.
    `id` is the store key and stays None until the row is persisted.
    """
    symbol: str
    buy_date: datetime
    buy_price: float
    quantity: float

    sell_date: datetime | None = None
    sell_price: float | None = None
    profit_loss: float | None = None
    holding_period_days: int | None = None

    # quantity of the BUY that opened the lot; split rows keep it
    origin_quantity: float | None = None

    id: int | None = None

    @property
    def is_closed(self) -> bool:
        return (
            self.sell_date is not None
            and self.sell_price is not None
            and self.profit_loss is not None
            and self.holding_period_days is not None
        )

    @property
    def buy_identity(self) -> tuple:
        """(symbol, buy_price, original quantity, buy_date) of the BUY behind this row."""
        origin = self.quantity if self.origin_quantity is None else self.origin_quantity
        return (self.symbol, float(self.buy_price), float(origin), self.buy_date)

    @property
    def pnl_percent(self) -> float:
        if self.sell_price is None:
            raise ValueError("trade is open")
        return (float(self.sell_price) - float(self.buy_price)) / float(self.buy_price) * 100.0

    def closed_at(self, sell_date: datetime, sell_price: float, quantity: float | None = None) -> Trade:
        qty = self.quantity if quantity is None else float(quantity)
        close = close_fields(self.buy_date, self.buy_price, qty, sell_date, sell_price)
        origin = self.quantity if self.origin_quantity is None else self.origin_quantity
        return replace(self, quantity=qty, origin_quantity=origin, **close)


def holding_days(buy_date: datetime, sell_date: datetime) -> int:
    """Whole days between buy and sell."""
    return int((sell_date - buy_date).total_seconds() // 86400)


def close_fields(
    buy_date: datetime,
    buy_price: float,
    quantity: float,
    sell_date: datetime,
    sell_price: float,
) -> dict[str, Any]:
    if sell_date < buy_date:
        raise ValueError("sell_date must not precede buy_date")
    return {
        "sell_date": sell_date,
        "sell_price": float(sell_price),
        "profit_loss": (float(sell_price) - float(buy_price)) * float(quantity),
        "holding_period_days": holding_days(buy_date, sell_date),
    }


# -----------------
# Ledger mutations
# -----------------


@dataclass(frozen=True)
class CreateLot:
    trade: Trade


@dataclass(frozen=True)
class CloseLot:
    trade_id: int
    quantity: float
    sell_date: datetime
    sell_price: float
    profit_loss: float
    holding_period_days: int


@dataclass(frozen=True)
class SplitLot:
    """Reduce an open lot to `remaining_quantity` and insert the sold part as `closed`."""
    trade_id: int
    remaining_quantity: float
    closed: Trade


LedgerMutation = CreateLot | CloseLot | SplitLot


# -------------------------
# Boundary normalisation
# -------------------------


def _to_utc_naive(value: Any) -> datetime:
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        raise ValueError("NaT")
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts.to_pydatetime()


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        v = row.get(k)
        if v is not None and not (isinstance(v, float) and pd.isna(v)) and str(v).strip() != "":
            return v
    return None


def execution_from_mapping(row: Mapping[str, Any]) -> Execution:
    """
    Builds an Execution from a broker-style row.

    Accepted keys:
      tradingsymbol | symbol
      trade_type | transaction_type | side   (BUY/B, SELL/S)
      quantity (absolute value is used), price
      trade_date | order_execution_time | timestamp
      segment, trade_id (optional)
    """
    row = {str(k).strip().lower(): v for k, v in row.items()}

    symbol = _first(row, "tradingsymbol", "symbol")
    raw_side = _first(row, "trade_type", "transaction_type", "side")
    raw_qty = _first(row, "quantity")
    raw_px = _first(row, "price")
    raw_ts = _first(row, "trade_date", "order_execution_time", "timestamp")

    if symbol is None or raw_side is None or raw_qty is None or raw_px is None or raw_ts is None:
        raise InvalidExecution(f"missing field in row: {dict(row)}")

    side = _SIDE_ALIASES.get(str(raw_side).strip().upper())
    if side is None:
        raise InvalidExecution(f"unknown side: {raw_side!r}")

    try:
        quantity = abs(float(raw_qty))
        price = float(raw_px)
        timestamp = _to_utc_naive(raw_ts)
    except (TypeError, ValueError) as e:
        raise InvalidExecution(f"malformed row: {e}") from e

    segment = _first(row, "segment")
    trade_id = _first(row, "trade_id")

    ex = Execution(
        symbol=str(symbol).strip().upper(),
        side=side,
        quantity=quantity,
        price=price,
        timestamp=timestamp,
        trade_id=None if trade_id is None else str(trade_id),
        segment=None if segment is None else str(segment).strip().upper(),
    )
    validate_execution(ex)
    return ex


def validate_execution(ex: Execution) -> None:
    if not ex.symbol or not str(ex.symbol).strip():
        raise InvalidExecution("empty symbol")
    if not isinstance(ex.side, Side):
        raise InvalidExecution(f"unknown side: {ex.side!r}")
    if ex.timestamp is None:
        raise InvalidExecution("missing timestamp")
    try:
        qty = float(ex.quantity)
        px = float(ex.price)
    except (TypeError, ValueError) as e:
        raise InvalidExecution(f"non-numeric quantity/price: {e}") from e
    if not qty > 0:
        raise InvalidExecution(f"quantity must be > 0, got {ex.quantity!r}")
    if not px > 0:
        raise InvalidExecution(f"price must be > 0, got {ex.price!r}")
