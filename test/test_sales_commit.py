from dataclasses import replace
from pathlib import Path

import pytest

from conftest import build_app, ledger_matches_stock

from posledger.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from posledger.domain.models import CartItem, MutationType, PaymentMethod, Product
from posledger.services.sales_service import compute_totals


def _setup(tmp_path: Path, **config):
    app = build_app(tmp_path, **config)
    kopi = app.catalog.add("Kopi", "SKU-K", 10000, 10)
    teh = app.catalog.add("Teh", "SKU-T", 5000, 10)
    return app, kopi, teh


def test_sale_totals_stock_and_ledger(tmp_path: Path):
    app, kopi, teh = _setup(tmp_path)

    tx = app.sales.commit([CartItem(kopi, 2), CartItem(teh, 1)], PaymentMethod.QRIS, 10)

    assert tx.subtotal == 25000
    assert tx.tax_amount == 2500
    assert tx.total == 27500
    assert tx.payment_method is PaymentMethod.QRIS
    assert tx.id.startswith("TRX-")

    assert app.catalog.get_product(kopi.id).stock == 8
    assert app.catalog.get_product(teh.id).stock == 9

    sales = [m for m in app.ledger.history() if m.type is MutationType.SALE]
    assert len(sales) == 2
    assert sorted(m.amount for m in sales) == [-2, -1]
    assert all(m.note == f"Transaction: {tx.id}" for m in sales)
    assert ledger_matches_stock(app)


def test_committed_transaction_keeps_frozen_prices_and_order(tmp_path: Path):
    app, kopi, teh = _setup(tmp_path)
    tx = app.sales.commit([CartItem(teh, 3), CartItem(kopi, 1)], "CASH", 0)

    app.catalog.update(replace(kopi, price=99999))

    stored = app.sales.get_transaction(tx.id)
    assert [it.product.sku for it in stored.items] == ["SKU-T", "SKU-K"]
    assert [it.quantity for it in stored.items] == [3, 1]
    assert stored.items[1].product.price == 10000
    assert stored.total == 25000
    assert app.sales.list_transactions()[0].id == tx.id


def test_tax_rounds_half_away_from_zero():
    def item(price, qty=1):
        return CartItem(Product(id="P", name="x", sku="x", price=price, stock=100, category=""), qty)

    assert compute_totals([item(25)], 10) == (25.0, 3.0, 28.0)
    assert compute_totals([item(15)], 10) == (15.0, 2.0, 17.0)
    assert compute_totals([item(14)], 10) == (14.0, 1.0, 15.0)
    assert compute_totals([item(10000, 2), item(5000)], 11) == (25000.0, 2750.0, 27750.0)


def test_tax_rate_defaults_to_store_settings(tmp_path: Path):
    app, kopi, _ = _setup(tmp_path)
    app.settings.update(replace(app.settings.get(), tax_rate=11))

    tx = app.sales.commit([CartItem(kopi, 1)], PaymentMethod.TRANSFER)

    assert tx.tax_amount == 1100
    assert tx.total == 11100


def test_sale_rejects_empty_cart_and_bad_quantities(tmp_path: Path):
    app, kopi, _ = _setup(tmp_path)

    with pytest.raises(ValidationError, match="Cart is empty"):
        app.sales.commit([], PaymentMethod.CASH, 0)
    with pytest.raises(ValidationError, match="Qty must be >= 1"):
        app.sales.commit([CartItem(kopi, 0)], PaymentMethod.CASH, 0)
    with pytest.raises(ValidationError, match="Unknown payment method"):
        app.sales.commit([CartItem(kopi, 1)], "CARD", 0)
    with pytest.raises(ValidationError, match="Tax rate"):
        app.sales.commit([CartItem(kopi, 1)], PaymentMethod.CASH, 150)

    assert app.sales.list_transactions() == []


@pytest.mark.parametrize("price", [-1, "abc", None])
def test_sale_rejects_bad_line_price(tmp_path: Path, price):
    app, kopi, _ = _setup(tmp_path)
    bad = replace(kopi, price=price)

    with pytest.raises(ValidationError):
        app.sales.commit([CartItem(bad, 1)], PaymentMethod.CASH, 0)

    assert app.sales.list_transactions() == []
    assert app.catalog.get_product(kopi.id).stock == 10
    assert ledger_matches_stock(app)


def test_sale_revalidates_stock_at_commit_time(tmp_path: Path):
    app, kopi, teh = _setup(tmp_path)
    # Cart built while stock was 10; someone else took 8 in the meantime.
    app.ledger.adjust(kopi.id, -8, "OUT")

    with pytest.raises(InsufficientStockError, match="SKU-K"):
        app.sales.commit([CartItem(teh, 1), CartItem(kopi, 3)], PaymentMethod.CASH, 0)

    assert app.catalog.get_product(kopi.id).stock == 2
    assert app.catalog.get_product(teh.id).stock == 10
    assert app.sales.list_transactions() == []
    assert not [m for m in app.ledger.history() if m.type is MutationType.SALE]


def test_sale_aggregates_repeated_lines_to_prevent_oversell(tmp_path: Path):
    app, kopi, _ = _setup(tmp_path)

    with pytest.raises(InsufficientStockError):
        app.sales.commit([CartItem(kopi, 6), CartItem(kopi, 6)], PaymentMethod.CASH, 0)

    assert app.catalog.get_product(kopi.id).stock == 10


def test_sale_of_deleted_product_is_rejected(tmp_path: Path):
    app, kopi, teh = _setup(tmp_path)
    app.catalog.delete(kopi.id)

    with pytest.raises(NotFoundError):
        app.sales.commit([CartItem(teh, 1), CartItem(kopi, 1)], PaymentMethod.CASH, 0)

    assert app.catalog.get_product(teh.id).stock == 10


def test_sale_notifications_success_and_low_stock(tmp_path: Path):
    app, kopi, teh = _setup(tmp_path)
    app.bus.clear_all()

    app.sales.commit([CartItem(kopi, 6), CartItem(teh, 1)], PaymentMethod.CASH, 10)

    notes = app.bus.notifications
    assert notes[0].title == "Transaction complete"
    assert notes[0].message == "Total: 71,500"
    low = [n for n in notes if n.title == "Low stock"]
    assert len(low) == 1
    assert "Kopi" in low[0].message
    assert app.bus.toast.id == notes[0].id


def test_sale_leaves_no_trace_when_identity_missing(tmp_path: Path):
    app, kopi, _ = _setup(tmp_path)
    app.identity.sign_out()

    assert app.sales.commit([CartItem(kopi, 1)], PaymentMethod.CASH, 0) is None
    assert app.sales.list_transactions() == []
    assert app.catalog.get_product(kopi.id).stock == 10
