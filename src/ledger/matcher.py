from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from src.errors import InsufficientHoldings, InvalidExecution, OrderingViolation
from src.ledger.types import (
    CloseLot,
    CreateLot,
    Execution,
    LedgerMutation,
    Side,
    SplitLot,
    Trade,
    close_fields,
    validate_execution,
)

logger = logging.getLogger(__name__)

EQUITY_SEGMENT_MARKERS = ("EQ", "NSE", "BSE")

_EPS = 1e-9


@dataclass
class ImportSummary:
    total: int = 0
    applied: int = 0
    skipped: int = 0
    invalid: int = 0
    partial: int = 0
    # sells that consumed lots created earlier in the same batch (left open in the ledger)
    deferred: int = 0
    settled: int = 0
    dropped_quantity: float = 0.0
    mutations: int = 0
    batches: int = 0


@dataclass
class OpenLot:
    symbol: str
    buy_date: datetime
    buy_price: float
    quantity: float
    origin_quantity: float
    # None while the lot only exists in this batch
    trade_id: int | None = None


@dataclass
class MatchResult:
    mutations: list[LedgerMutation] = field(default_factory=list)
    summary: ImportSummary = field(default_factory=ImportSummary)


class LotBook:
    """
    Open-lot arena for one user during one import call.

    Holds per-symbol FIFO queues (oldest buy first), the identities of BUYs
    already recorded (symbol, buy_price, original quantity, buy_date), and the
    SELL quantity already recorded per (symbol, sell_date, sell_price).
    Only the matcher mutates it.
    """

    def __init__(self, trades: Iterable[Trade] = ()) -> None:
        self.queues: dict[str, list[OpenLot]] = defaultdict(list)
        self.sell_pool: dict[tuple, float] = defaultdict(float)
        self.seen_buys: set[tuple] = set()

        for t in sorted(trades, key=lambda t: (t.buy_date, t.id or 0)):
            qty = float(t.quantity)
            self.seen_buys.add(t.buy_identity)

            if t.is_closed:
                self.sell_pool[(t.symbol, t.sell_date, float(t.sell_price))] += qty
                continue

            if t.id is None:
                raise ValueError("open ledger lots must be persisted (id is None)")
            self.queues[t.symbol].append(
                OpenLot(
                    symbol=t.symbol,
                    buy_date=t.buy_date,
                    buy_price=float(t.buy_price),
                    quantity=qty,
                    origin_quantity=t.buy_identity[2],
                    trade_id=t.id,
                )
            )

    def push(self, lot: OpenLot) -> None:
        bisect.insort(self.queues[lot.symbol], lot, key=lambda x: x.buy_date)


def check_ordering(executions: Sequence[Execution]) -> None:
    last: datetime | None = None
    for i, ex in enumerate(executions):
        ts = getattr(ex, "timestamp", None)
        if not isinstance(ts, datetime):
            continue
        if last is not None and ts < last:
            raise OrderingViolation(
                f"execution {i} ({ex.symbol} {ts.isoformat()}) precedes {last.isoformat()}"
            )
        last = ts


def is_equity(ex: Execution) -> bool:
    if not ex.segment:
        return True
    seg = ex.segment.upper()
    return any(m in seg for m in EQUITY_SEGMENT_MARKERS)


def match_executions(book: LotBook, executions: Sequence[Execution]) -> MatchResult:
    """
    FIFO lot matching of a chronologically sorted batch against `book`.

    Returns the ledger mutations to apply and the per-execution counts.
    Raises OrderingViolation (nothing matched) if timestamps go backwards.
    """
    check_ordering(executions)

    result = MatchResult()
    summary = result.summary

    for ex in executions:
        summary.total += 1

        try:
            validate_execution(ex)
        except InvalidExecution as e:
            logger.warning("skipping invalid execution: %s", e)
            summary.invalid += 1
            summary.skipped += 1
            continue

        if not is_equity(ex):
            logger.debug("skipping non-equity execution %s segment=%s", ex.symbol, ex.segment)
            summary.skipped += 1
            continue

        if ex.side == Side.BUY:
            _apply_buy(book, ex, result)
        else:
            _apply_sell(book, ex, result)

    summary.mutations = len(result.mutations)

    if summary.deferred:
        logger.warning(
            "%d sell match(es) consumed lots bought in the same batch; those lots stay open "
            "until the batch is re-imported",
            summary.deferred,
        )
    logger.info(
        "matched batch: total=%d applied=%d skipped=%d invalid=%d partial=%d mutations=%d",
        summary.total,
        summary.applied,
        summary.skipped,
        summary.invalid,
        summary.partial,
        summary.mutations,
    )
    return result


def _apply_buy(book: LotBook, ex: Execution, result: MatchResult) -> None:
    qty = float(ex.quantity)
    price = float(ex.price)
    identity = (ex.symbol, price, qty, ex.timestamp)

    if identity in book.seen_buys:
        result.summary.skipped += 1
        return

    book.seen_buys.add(identity)
    trade = Trade(
        symbol=ex.symbol, buy_date=ex.timestamp, buy_price=price, quantity=qty, origin_quantity=qty
    )
    result.mutations.append(CreateLot(trade=trade))
    book.push(
        OpenLot(
            symbol=ex.symbol,
            buy_date=ex.timestamp,
            buy_price=price,
            quantity=qty,
            origin_quantity=qty,
        )
    )
    result.summary.applied += 1


def _apply_sell(book: LotBook, ex: Execution, result: MatchResult) -> None:
    summary = result.summary
    price = float(ex.price)
    remaining = float(ex.quantity)

    # quantity this sell already closed in an earlier run
    sell_key = (ex.symbol, ex.timestamp, price)
    reflected = min(book.sell_pool.get(sell_key, 0.0), remaining)
    if reflected > 0:
        book.sell_pool[sell_key] -= reflected
        remaining -= reflected
    if remaining <= _EPS:
        summary.skipped += 1
        return

    queue = book.queues.get(ex.symbol, [])
    matched = 0.0

    while remaining > _EPS and queue and queue[0].buy_date <= ex.timestamp:
        lot = queue[0]

        if lot.quantity <= remaining + _EPS:
            consumed = lot.quantity
            if lot.trade_id is not None:
                close = close_fields(lot.buy_date, lot.buy_price, consumed, ex.timestamp, price)
                result.mutations.append(CloseLot(trade_id=lot.trade_id, quantity=consumed, **close))
            else:
                summary.deferred += 1
            queue.pop(0)
        else:
            consumed = remaining
            if lot.trade_id is not None:
                closed = Trade(
                    symbol=lot.symbol,
                    buy_date=lot.buy_date,
                    buy_price=lot.buy_price,
                    quantity=consumed,
                    origin_quantity=lot.origin_quantity,
                ).closed_at(ex.timestamp, price)
                result.mutations.append(
                    SplitLot(
                        trade_id=lot.trade_id,
                        remaining_quantity=lot.quantity - consumed,
                        closed=closed,
                    )
                )
            else:
                summary.deferred += 1
            lot.quantity -= consumed

        remaining -= consumed
        matched += consumed

    if remaining > _EPS:
        summary.dropped_quantity += remaining
        shortfall = InsufficientHoldings(
            f"sell {ex.symbol} {float(ex.quantity):.4f} @ {price:.4f} on {ex.timestamp.isoformat()} "
            f"exceeds open lots by {remaining:.4f}"
        )
        logger.warning("%s; excess dropped", shortfall)

    if matched <= _EPS:
        summary.skipped += 1
    elif remaining > _EPS:
        summary.applied += 1
        summary.partial += 1
    else:
        summary.applied += 1
