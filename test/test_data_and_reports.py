import json
import logging
import sqlite3
from dataclasses import replace
from pathlib import Path

import pytest
from openpyxl import load_workbook

from conftest import build_app, ledger_matches_stock

from posledger.domain.errors import ValidationError
from posledger.domain.models import DEFAULT_SETTINGS, CartItem, MutationType, PaymentMethod, Severity
from posledger.logging_config import JsonFormatter
from posledger.repositories.unit_of_work import SqliteUnitOfWork


def _shop(tmp_path: Path, name: str = "a"):
    app = build_app(tmp_path / name)
    app.settings.update(replace(DEFAULT_SETTINGS, store_name="Warung A", tax_rate=10))
    kopi = app.catalog.add("Kopi", "SKU-K", 10000, 10, "Minuman")
    teh = app.catalog.add("Teh", "SKU-T", 5000, 10, "Minuman")
    app.sales.commit([CartItem(kopi, 2), CartItem(teh, 1)], PaymentMethod.CASH)
    return app, kopi, teh


def test_export_document_shape(tmp_path: Path):
    app, kopi, teh = _shop(tmp_path)
    doc = app.data.export_data()

    assert set(doc) == {"settings", "products", "transactions", "stockMutations", "exportDate", "version"}
    assert doc["version"] == "1.0"
    assert doc["settings"]["storeName"] == "Warung A"
    assert doc["settings"]["taxRate"] == 10
    assert [p["sku"] for p in doc["products"]] == ["SKU-K", "SKU-T"]
    tx = doc["transactions"][0]
    assert tx["paymentMethod"] == "CASH"
    assert tx["taxAmount"] == 2500
    assert [(i["id"], i["quantity"]) for i in tx["items"]] == [(kopi.id, 2), (teh.id, 1)]
    assert {m["type"] for m in doc["stockMutations"]} == {"NEW", "SALE"}
    json.dumps(doc)


def test_import_merges_into_existing_data(tmp_path: Path):
    source, kopi, _ = _shop(tmp_path, "a")
    path = source.data.export_to_file(tmp_path / "out" / "backup.json")

    target = build_app(tmp_path / "b")
    local = target.catalog.add("Gula", "SKU-G", 2000, 4)

    assert target.data.import_file(path) is True
    skus = sorted(p.sku for p in target.catalog.list_products())
    assert skus == ["SKU-G", "SKU-K", "SKU-T"]
    assert target.catalog.get_product(local.id).stock == 4
    assert target.catalog.get_product(kopi.id).stock == 8
    assert target.settings.get().store_name == "Warung A"
    assert len(target.sales.list_transactions()) == 1
    assert ledger_matches_stock(target)

    latest = target.bus.notifications[0]
    assert latest.title == "Import complete"
    assert latest.severity is Severity.SUCCESS


def test_reimport_is_idempotent(tmp_path: Path):
    source, _, _ = _shop(tmp_path, "a")
    doc = source.data.export_data()
    target = build_app(tmp_path / "b")

    target.data.import_data(doc)
    target.data.import_data(doc)

    assert len(target.catalog.list_products()) == 2
    assert len(target.sales.list_transactions()) == 1
    assert len(target.ledger.history()) == len(doc["stockMutations"])
    assert target.sales.list_transactions()[0].items == source.sales.list_transactions()[0].items


def test_import_overwrites_records_with_same_id(tmp_path: Path):
    app, kopi, _ = _shop(tmp_path)
    doc = app.data.export_data()
    doc["products"][0]["price"] = 12000
    app.data.import_data(doc)
    assert app.catalog.get_product(kopi.id).price == 12000


@pytest.mark.parametrize(
    "document",
    [
        [],
        "backup",
        {"hello": "world"},
        {"version": "1.0", "products": "nope"},
        {"version": "1.0", "products": [{"id": "P1", "name": "X", "sku": "S", "price": "abc", "stock": 1}]},
        {"version": "1.0", "products": [{"id": "P1", "name": "X", "sku": "S", "price": 1, "stock": -1}]},
        {"version": "1.0", "settings": {"taxRate": 150}},
        {"version": "1.0", "stockMutations": [{"id": "L1", "date": "d", "productId": "P", "type": "LOST", "amount": 1}]},
        {"version": "1.0", "transactions": [{"id": "T", "date": "d", "subtotal": 1, "total": 1, "paymentMethod": "CARD"}]},
        {
            "version": "1.0",
            "products": [{"id": "P1", "name": "X", "sku": "S", "price": 1, "stock": 1}],
            "transactions": [{"id": "T", "date": "d", "subtotal": -5, "total": -5, "paymentMethod": "CASH"}],
        },
        {
            "version": "1.0",
            "products": [{"id": "P1", "name": "X", "sku": "S", "price": 1, "stock": 1}],
            "transactions": [
                {
                    "id": "T",
                    "date": "d",
                    "subtotal": 0,
                    "total": 0,
                    "paymentMethod": "CASH",
                    "items": [{"id": "P1", "name": "X", "sku": "S", "price": -1, "quantity": 1}],
                }
            ],
        },
    ],
)
def test_malformed_import_changes_nothing(tmp_path: Path, document):
    app, _, _ = _shop(tmp_path)
    before = app.data.export_data()

    with pytest.raises(ValidationError):
        app.data.import_data(document)

    after = app.data.export_data()
    for key in ("settings", "products", "transactions", "stockMutations"):
        assert after[key] == before[key]
    latest = app.bus.notifications[0]
    assert latest.title == "Import failed"
    assert latest.severity is Severity.ERROR


def test_import_file_rejects_invalid_json(tmp_path: Path):
    app = build_app(tmp_path)
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValidationError):
        app.data.import_file(bad)
    with pytest.raises(ValidationError):
        app.data.import_file(tmp_path / "missing.json")
    assert app.bus.notifications[0].title == "Import failed"


class TransactionWriteFails(SqliteUnitOfWork):
    def put_transaction(self, transaction):
        raise sqlite3.OperationalError("disk I/O error")


def test_import_keeps_collections_written_before_a_store_failure(tmp_path: Path, monkeypatch):
    app = build_app(tmp_path)
    document = {
        "version": "1.0",
        "products": [{"id": "P1", "name": "Kopi", "sku": "SKU-K", "price": 1000, "stock": 2}],
        "transactions": [{"id": "T1", "date": "2024-01-01", "subtotal": 1, "total": 1, "paymentMethod": "CASH"}],
    }
    monkeypatch.setattr(app.store, "unit_of_work", lambda: TransactionWriteFails(app.store))

    with pytest.raises(sqlite3.OperationalError):
        app.data.import_data(document)

    assert [p.id for p in app.catalog.list_products()] == ["P1"]
    assert app.sales.list_transactions() == []
    assert app.bus.notifications[0].title == "Import failed"


def test_delete_products_closes_ledger(tmp_path: Path):
    app, kopi, teh = _shop(tmp_path)
    assert app.data.delete_products([kopi.id, "missing"]) == 1

    assert [p.id for p in app.catalog.list_products()] == [teh.id]
    history = app.ledger.history(kopi.id)
    assert history[0].type is MutationType.DELETE
    assert history[0].amount == -8
    assert app.ledger.balance(kopi.id) == 0
    # Sales history keeps its frozen copy of the product.
    assert app.sales.list_transactions()[0].items[0].product.name == "Kopi"


def test_clear_products(tmp_path: Path):
    app, _, _ = _shop(tmp_path)
    assert app.data.clear_products() == 2
    assert app.catalog.list_products() == []
    assert len(app.sales.list_transactions()) == 1


def test_delete_and_clear_transactions(tmp_path: Path):
    app, kopi, _ = _shop(tmp_path)
    second = app.sales.commit([CartItem(app.catalog.get_product(kopi.id), 1)], PaymentMethod.QRIS)
    first = app.sales.list_transactions()[-1]

    assert app.data.delete_transactions([first.id]) == 1
    assert [t.id for t in app.sales.list_transactions()] == [second.id]
    # Stock and ledger are untouched by transaction housekeeping.
    assert app.catalog.get_product(kopi.id).stock == 7
    assert ledger_matches_stock(app)

    assert app.data.clear_transactions() == 1
    assert app.sales.list_transactions() == []


def test_bulk_deletes_notify(tmp_path: Path):
    app, kopi, _ = _shop(tmp_path)
    tx = app.sales.list_transactions()[0]

    app.data.delete_products([kopi.id])
    assert (app.bus.notifications[0].title, app.bus.notifications[0].message) == ("Products deleted", "1 product(s) removed.")

    app.data.clear_products()
    assert app.bus.notifications[0].message == "1 product(s) removed."

    app.data.delete_transactions([tx.id, "missing"])
    assert (app.bus.notifications[0].title, app.bus.notifications[0].message) == ("Transactions deleted", "1 transaction(s) removed.")

    app.data.clear_transactions()
    latest = app.bus.notifications[0]
    assert latest.message == "0 transaction(s) removed."
    assert latest.severity is Severity.INFO


def test_reset_factory(tmp_path: Path):
    app, _, _ = _shop(tmp_path)
    assert app.data.reset_factory() is True

    assert app.catalog.list_products() == []
    assert app.sales.list_transactions() == []
    assert app.ledger.history() == []
    assert app.store.get_settings() == DEFAULT_SETTINGS
    assert app.bus.notifications[0].title == "Reset complete"


def test_sales_summary(tmp_path: Path):
    app, kopi, _ = _shop(tmp_path)
    app.sales.commit([CartItem(app.catalog.get_product(kopi.id), 1)], PaymentMethod.TRANSFER)

    s = app.reporting.sales_summary()
    assert s.transactions == 2
    assert s.revenue == 27500 + 11000
    assert s.tax_collected == 2500 + 1000
    assert s.units_sold == 4


def test_excel_report(tmp_path: Path):
    app, _, _ = _shop(tmp_path)
    out = app.reporting.export_report_excel(tmp_path / "report.xlsx")
    assert out.exists()

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Transactions", "Stock Ledger"]

    summary = wb["Summary"]
    assert summary["A1"].value == "Warung A"
    assert summary["B3"].value == 1
    assert summary["B4"].value == 27500

    tx_rows = list(wb["Transactions"].iter_rows(min_row=2, values_only=True))
    assert [(r[3], r[5], r[7]) for r in tx_rows] == [("SKU-K", 2, 20000), ("SKU-T", 1, 5000)]

    ledger_rows = list(wb["Stock Ledger"].iter_rows(min_row=2, values_only=True))
    assert sorted(r[4] for r in ledger_rows) == ["NEW", "NEW", "SALE", "SALE"]


def test_excel_report_on_empty_store(tmp_path: Path):
    app = build_app(tmp_path)
    out = app.reporting.export_report_excel(tmp_path / "empty.xlsx")
    wb = load_workbook(out)
    assert wb["Transactions"].max_row == 1
    assert wb["Summary"]["B3"].value == 0


def test_json_formatter_emits_one_object_per_record():
    record = logging.LogRecord("posledger.sales", logging.INFO, __file__, 1, "sale_committed id=%s", ("TRX-1",), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["logger"] == "posledger.sales"
    assert payload["level"] == "INFO"
    assert payload["message"] == "sale_committed id=TRX-1"
