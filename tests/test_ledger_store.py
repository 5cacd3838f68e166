from datetime import datetime, timedelta

import pytest

from src.db.engine import get_engine
from src.db.schema import create_all
from src.ledger.importer import LedgerImporter
from src.ledger.store import InMemoryLedgerStore, SqlLedgerStore
from src.ledger.types import CloseLot, CreateLot, Execution, Side, Trade

D0 = datetime(2024, 1, 1, 10, 0)


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        return InMemoryLedgerStore()
    engine = get_engine("sqlite://")
    create_all(engine)
    return SqlLedgerStore(engine)


def ex(side, qty, px, day, symbol="INFY"):
    return Execution(symbol=symbol, side=side, quantity=qty, price=px, timestamp=D0 + timedelta(days=day))


def test_fifo_import_round_trips_through_store(store):
    batch = [
        ex(Side.BUY, 10, 100.0, 0),
        ex(Side.BUY, 10, 110.0, 1),
        ex(Side.SELL, 15, 120.0, 5),
    ]
    LedgerImporter(store).import_executions("u1", batch)

    closed = store.closed_trades("u1")
    assert [(t.buy_price, t.quantity) for t in sorted(closed, key=lambda t: t.buy_price)] == [
        (100.0, 10.0),
        (110.0, 5.0),
    ]
    assert all(t.sell_date == D0 + timedelta(days=5) for t in closed)

    lots = store.open_lots("u1")
    assert list(lots) == ["INFY"]
    assert lots["INFY"][0].quantity == 5.0


def test_split_rows_persist_origin_quantity_and_dedup_reimported_buy(store):
    imp = LedgerImporter(store)
    imp.import_executions("u1", [ex(Side.BUY, 10, 100.0, 0)])
    imp.import_executions("u1", [ex(Side.SELL, 4, 105.0, 1)])

    assert {t.origin_quantity for t in store.trades("u1")} == {10.0}

    s = imp.import_executions("u1", [ex(Side.BUY, 10, 100.0, 0), ex(Side.BUY, 3, 100.0, 0)])
    assert s.skipped == 1
    assert s.applied == 1
    assert sorted(t.quantity for t in store.open_lots("u1")["INFY"]) == [3.0, 6.0]


def test_users_are_separate_partitions(store):
    LedgerImporter(store).import_executions("u1", [ex(Side.BUY, 1, 10.0, 0)])
    assert store.trades("u2") == []

    store.reset("u1")
    assert store.trades("u1") == []


def test_closed_trades_date_filter(store):
    imp = LedgerImporter(store)
    imp.import_executions(
        "u1",
        [
            ex(Side.BUY, 1, 10.0, 0),
            ex(Side.BUY, 1, 11.0, 1),
        ],
    )
    imp.import_executions("u1", [ex(Side.SELL, 1, 12.0, 10)])
    imp.import_executions("u1", [ex(Side.SELL, 1, 13.0, 20)])

    assert len(store.closed_trades("u1")) == 2
    only_late = store.closed_trades("u1", start=D0 + timedelta(days=15))
    assert [t.sell_price for t in only_late] == [13.0]


def test_failed_batch_leaves_ledger_untouched(store):
    bad = [
        CreateLot(Trade(symbol="INFY", buy_date=D0, buy_price=10.0, quantity=1)),
        CloseLot(
            trade_id=999,
            quantity=1,
            sell_date=D0,
            sell_price=11.0,
            profit_loss=1.0,
            holding_period_days=0,
        ),
    ]
    with pytest.raises(ValueError):
        store.apply("u1", bad)
    assert store.trades("u1") == []
