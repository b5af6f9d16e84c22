import sqlite3
from pathlib import Path

import pytest

from conftest import build_app

from posledger.domain.errors import CommitError
from posledger.domain.models import CartItem, MutationType, PaymentMethod
from posledger.repositories.unit_of_work import SqliteUnitOfWork
from posledger.services.sales_service import TransactionEngine


class SecondSaleEntryFails(SqliteUnitOfWork):
    def __init__(self, store, autocommit=False):
        super().__init__(store, autocommit=autocommit)
        self.sale_entries = 0

    def append_mutation(self, mutation):
        if mutation.type is MutationType.SALE:
            self.sale_entries += 1
            if self.sale_entries == 2:
                raise sqlite3.OperationalError("disk I/O error")
        super().append_mutation(mutation)


class LedgerWriteFails(SqliteUnitOfWork):
    def append_mutation(self, mutation):
        if mutation.type in (MutationType.IN, MutationType.NEW, MutationType.DELETE):
            raise sqlite3.OperationalError("disk I/O error")
        super().append_mutation(mutation)


def test_sale_rolls_back_everything_when_a_write_fails(tmp_path: Path):
    app = build_app(tmp_path)
    a = app.catalog.add("Kopi", "SKU-K", 10000, 10)
    b = app.catalog.add("Teh", "SKU-T", 5000, 10)
    engine = TransactionEngine(
        app.store,
        app.identity,
        app.bus,
        app.settings,
        uow_factory=lambda: SecondSaleEntryFails(app.store),
    )
    seen = []
    sub = app.store.subscribe("transactions", seen.append)

    with pytest.raises(CommitError):
        engine.commit([CartItem(a, 2), CartItem(b, 1)], PaymentMethod.CASH, 10)

    sub.unsubscribe()
    assert app.sales.list_transactions() == []
    assert app.catalog.get_product(a.id).stock == 10
    assert app.catalog.get_product(b.id).stock == 10
    assert [m.type for m in app.ledger.history()] == [MutationType.NEW, MutationType.NEW]
    # Only the initial snapshot: the rolled-back write was never published.
    assert seen == [[]]
    assert all(n.title != "Transaction complete" for n in app.bus.notifications)


def test_adjust_without_atomic_writes_can_split_stock_and_ledger(tmp_path: Path, monkeypatch):
    app = build_app(tmp_path)
    p = app.catalog.add("Kopi", "SKU-K", 10000, 10)
    monkeypatch.setattr(app.store, "autocommit", lambda: LedgerWriteFails(app.store, autocommit=True))

    with pytest.raises(sqlite3.OperationalError):
        app.ledger.adjust(p.id, 5, "IN")

    # Known gap: the stock write committed on its own, the ledger entry did not.
    assert app.catalog.get_product(p.id).stock == 15
    assert app.ledger.balance(p.id) == 10
    assert app.ledger.discrepancies() == [(p.id, 15, 10)]


def test_adjust_with_atomic_writes_keeps_stock_and_ledger_together(tmp_path: Path, monkeypatch):
    app = build_app(tmp_path, atomic_writes=True)
    p = app.catalog.add("Kopi", "SKU-K", 10000, 10)
    monkeypatch.setattr(app.store, "unit_of_work", lambda: LedgerWriteFails(app.store))

    with pytest.raises(sqlite3.OperationalError):
        app.ledger.adjust(p.id, 5, "IN")

    assert app.catalog.get_product(p.id).stock == 10
    assert app.ledger.discrepancies() == []


def test_add_and_delete_with_atomic_writes_roll_back(tmp_path: Path, monkeypatch):
    app = build_app(tmp_path, atomic_writes=True)
    p = app.catalog.add("Kopi", "SKU-K", 10000, 10)
    monkeypatch.setattr(app.store, "unit_of_work", lambda: LedgerWriteFails(app.store))

    with pytest.raises(sqlite3.OperationalError):
        app.catalog.add("Teh", "SKU-T", 5000, 3)
    with pytest.raises(sqlite3.OperationalError):
        app.catalog.delete(p.id)

    assert [x.sku for x in app.catalog.list_products()] == ["SKU-K"]
    assert app.ledger.discrepancies() == []


def test_add_without_atomic_writes_can_leave_product_without_ledger(tmp_path: Path, monkeypatch):
    app = build_app(tmp_path)
    monkeypatch.setattr(app.store, "autocommit", lambda: LedgerWriteFails(app.store, autocommit=True))

    with pytest.raises(sqlite3.OperationalError):
        app.catalog.add("Teh", "SKU-T", 5000, 3)

    products = app.catalog.list_products()
    assert [x.sku for x in products] == ["SKU-T"]
    assert app.ledger.discrepancies() == [(products[0].id, 3, 0)]
