from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, delete, insert, select, update

from src.db.schema import trades as trades_table
from src.ledger.types import CloseLot, CreateLot, LedgerMutation, SplitLot, Trade


class LedgerStore(ABC):
    """Per-user trade ledger. `apply` commits one batch of mutations atomically."""

    @abstractmethod
    def trades(self, user_id: str) -> list[Trade]: ...

    @abstractmethod
    def apply(self, user_id: str, mutations: Sequence[LedgerMutation]) -> None: ...

    @abstractmethod
    def reset(self, user_id: str) -> None: ...

    def open_lots(self, user_id: str) -> dict[str, list[Trade]]:
        out: dict[str, list[Trade]] = {}
        for t in self.trades(user_id):
            if not t.is_closed:
                out.setdefault(t.symbol, []).append(t)
        return out

    def closed_trades(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Trade]:
        out = [
            t
            for t in self.trades(user_id)
            if t.is_closed
            and (start is None or t.sell_date >= start)
            and (end is None or t.sell_date <= end)
        ]
        return sorted(out, key=lambda t: (t.sell_date, t.id or 0))


def _sort_key(t: Trade) -> tuple:
    return (t.buy_date, t.id or 0)


class InMemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        self._rows: dict[str, dict[int, Trade]] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def trades(self, user_id: str) -> list[Trade]:
        with self._lock:
            return sorted(self._rows.get(user_id, {}).values(), key=_sort_key)

    def apply(self, user_id: str, mutations: Sequence[LedgerMutation]) -> None:
        with self._lock:
            # work on a copy so a failing mutation leaves the ledger untouched
            rows = dict(self._rows.get(user_id, {}))
            next_id = self._next_id

            for m in mutations:
                if isinstance(m, CreateLot):
                    rows[next_id] = replace(m.trade, id=next_id)
                    next_id += 1
                elif isinstance(m, CloseLot):
                    lot = self._open_row(rows, m.trade_id)
                    rows[m.trade_id] = replace(
                        lot,
                        quantity=m.quantity,
                        sell_date=m.sell_date,
                        sell_price=m.sell_price,
                        profit_loss=m.profit_loss,
                        holding_period_days=m.holding_period_days,
                    )
                elif isinstance(m, SplitLot):
                    lot = self._open_row(rows, m.trade_id)
                    rows[m.trade_id] = replace(lot, quantity=m.remaining_quantity)
                    rows[next_id] = replace(m.closed, id=next_id)
                    next_id += 1
                else:
                    raise TypeError(f"unknown mutation: {m!r}")

            self._rows[user_id] = rows
            self._next_id = next_id

    def reset(self, user_id: str) -> None:
        with self._lock:
            self._rows.pop(user_id, None)

    @staticmethod
    def _open_row(rows: dict[int, Trade], trade_id: int) -> Trade:
        lot = rows.get(trade_id)
        if lot is None or lot.is_closed:
            raise ValueError(f"trade {trade_id} is not an open lot")
        return lot


class SqlLedgerStore(LedgerStore):
    """SQLAlchemy Core ledger over the `trades` table."""

    def __init__(self, engine) -> None:
        self.engine = engine

    def trades(self, user_id: str) -> list[Trade]:
        t = trades_table
        stmt = select(t).where(t.c.user_id == user_id).order_by(t.c.buy_date, t.c.id)
        with self.engine.connect() as conn:
            return [_row_to_trade(r) for r in conn.execute(stmt).mappings()]

    def closed_trades(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Trade]:
        t = trades_table
        cond = [t.c.user_id == user_id, t.c.sell_date.is_not(None)]
        if start is not None:
            cond.append(t.c.sell_date >= start)
        if end is not None:
            cond.append(t.c.sell_date <= end)
        stmt = select(t).where(and_(*cond)).order_by(t.c.sell_date, t.c.id)
        with self.engine.connect() as conn:
            return [_row_to_trade(r) for r in conn.execute(stmt).mappings()]

    def apply(self, user_id: str, mutations: Sequence[LedgerMutation]) -> None:
        t = trades_table
        with self.engine.begin() as conn:
            for m in mutations:
                if isinstance(m, CreateLot):
                    conn.execute(insert(t).values(**_trade_values(user_id, m.trade)))
                elif isinstance(m, CloseLot):
                    res = conn.execute(
                        update(t)
                        .where(_open_lot(user_id, m.trade_id))
                        .values(
                            quantity=m.quantity,
                            sell_date=m.sell_date,
                            sell_price=m.sell_price,
                            profit_loss=m.profit_loss,
                            holding_period_days=m.holding_period_days,
                        )
                    )
                    _expect_one(res, m.trade_id)
                elif isinstance(m, SplitLot):
                    res = conn.execute(
                        update(t)
                        .where(_open_lot(user_id, m.trade_id))
                        .values(quantity=m.remaining_quantity)
                    )
                    _expect_one(res, m.trade_id)
                    conn.execute(insert(t).values(**_trade_values(user_id, m.closed)))
                else:
                    raise TypeError(f"unknown mutation: {m!r}")

    def reset(self, user_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(trades_table).where(trades_table.c.user_id == user_id))


def _open_lot(user_id: str, trade_id: int):
    t = trades_table
    return and_(t.c.id == trade_id, t.c.user_id == user_id, t.c.sell_date.is_(None))


def _expect_one(res, trade_id: int) -> None:
    if res.rowcount != 1:
        # raising inside engine.begin() rolls the batch back
        raise ValueError(f"trade {trade_id} is not an open lot")


def _trade_values(user_id: str, trade: Trade) -> dict:
    return {
        "user_id": user_id,
        "symbol": trade.symbol,
        "buy_date": trade.buy_date,
        "buy_price": float(trade.buy_price),
        "quantity": float(trade.quantity),
        "origin_quantity": trade.origin_quantity,
        "sell_date": trade.sell_date,
        "sell_price": trade.sell_price,
        "profit_loss": trade.profit_loss,
        "holding_period_days": trade.holding_period_days,
    }


def _row_to_trade(r) -> Trade:
    return Trade(
        id=int(r["id"]),
        symbol=r["symbol"],
        buy_date=r["buy_date"],
        buy_price=float(r["buy_price"]),
        quantity=float(r["quantity"]),
        origin_quantity=None if r["origin_quantity"] is None else float(r["origin_quantity"]),
        sell_date=r["sell_date"],
        sell_price=None if r["sell_price"] is None else float(r["sell_price"]),
        profit_loss=None if r["profit_loss"] is None else float(r["profit_loss"]),
        holding_period_days=(
            None if r["holding_period_days"] is None else int(r["holding_period_days"])
        ),
    )
