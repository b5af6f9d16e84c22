from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from posledger.domain.errors import ValidationError
from posledger.domain.models import (
    DEFAULT_SETTINGS,
    CartItem,
    MutationType,
    PaymentMethod,
    Product,
    StockMutation,
    StoreSettings,
    Transaction,
)
from posledger.domain.validation import as_int, as_number, required_text
from posledger.repositories.sqlite_repo import MUTATIONS, PRODUCTS, TRANSACTIONS, SqliteStore
from posledger.services.identity_service import IdentityProvider
from posledger.services.ledger_service import make_mutation
from posledger.services.notification_service import NotificationBus
from posledger.services.quota_service import UsageQuotaGuard
from posledger.services.settings_service import validate_settings

log = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"


# ---------- Interchange codec ----------
def product_to_doc(p: Product) -> dict[str, Any]:
    doc = {"id": p.id, "name": p.name, "sku": p.sku, "price": p.price, "stock": p.stock, "category": p.category}
    if p.image is not None:
        doc["image"] = p.image
    return doc


def product_from_doc(doc: dict) -> Product:
    stock = as_int(doc.get("stock", 0), "stock")
    price = as_number(doc.get("price"), "price")
    if stock < 0 or price < 0:
        raise ValidationError("Product price and stock must be >= 0.")
    return Product(
        id=required_text(doc.get("id"), "product id"),
        name=required_text(doc.get("name"), "product name"),
        sku=required_text(doc.get("sku"), "product sku"),
        price=price,
        stock=stock,
        category=str(doc.get("category") or ""),
        image=doc.get("image"),
    )


def transaction_to_doc(t: Transaction) -> dict[str, Any]:
    return {
        "id": t.id,
        "date": t.date,
        "subtotal": t.subtotal,
        "taxAmount": t.tax_amount,
        "total": t.total,
        "paymentMethod": t.payment_method.value,
        "items": [{**product_to_doc(it.product), "quantity": it.quantity} for it in t.items],
    }


def _non_negative(value: object, label: str) -> float:
    number = as_number(value, label)
    if number < 0:
        raise ValidationError(f"{label} must be >= 0.")
    return number


def transaction_from_doc(doc: dict) -> Transaction:
    raw_items = doc.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationError("Transaction items must be a list.")
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Transaction item must be an object.")
        quantity = as_int(raw.get("quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError("Transaction item quantity must be > 0.")
        product = Product(
            id=required_text(raw.get("id"), "item id"),
            name=required_text(raw.get("name"), "item name"),
            sku=str(raw.get("sku") or ""),
            price=_non_negative(raw.get("price"), "item price"),
            stock=as_int(raw.get("stock", 0), "item stock"),
            category=str(raw.get("category") or ""),
            image=raw.get("image"),
        )
        items.append(CartItem(product=product, quantity=quantity))
    try:
        method = PaymentMethod(doc.get("paymentMethod"))
    except ValueError as e:
        raise ValidationError(f"Unknown payment method: {doc.get('paymentMethod')}") from e
    return Transaction(
        id=required_text(doc.get("id"), "transaction id"),
        date=required_text(doc.get("date"), "transaction date"),
        subtotal=_non_negative(doc.get("subtotal"), "subtotal"),
        tax_amount=_non_negative(doc.get("taxAmount", 0), "taxAmount"),
        total=_non_negative(doc.get("total"), "total"),
        payment_method=method,
        items=tuple(items),
    )


def mutation_to_doc(m: StockMutation) -> dict[str, Any]:
    return {
        "id": m.id,
        "date": m.date,
        "productId": m.product_id,
        "productName": m.product_name,
        "sku": m.sku,
        "type": m.type.value,
        "amount": m.amount,
        "note": m.note,
    }


def mutation_from_doc(doc: dict) -> StockMutation:
    try:
        mutation_type = MutationType(doc.get("type"))
    except ValueError as e:
        raise ValidationError(f"Unknown mutation type: {doc.get('type')}") from e
    return StockMutation(
        id=required_text(doc.get("id"), "mutation id"),
        date=required_text(doc.get("date"), "mutation date"),
        product_id=required_text(doc.get("productId"), "productId"),
        product_name=str(doc.get("productName") or ""),
        sku=str(doc.get("sku") or ""),
        type=mutation_type,
        amount=as_int(doc.get("amount"), "amount"),
        note=doc.get("note"),
    )


def settings_to_doc(s: StoreSettings) -> dict[str, Any]:
    return {
        "storeName": s.store_name,
        "whatsappNumber": s.whatsapp_number,
        "address": s.address,
        "cashierName": s.cashier_name,
        "taxRate": s.tax_rate,
    }


def settings_from_doc(doc: dict) -> StoreSettings:
    return validate_settings(
        StoreSettings(
            store_name=str(doc.get("storeName", "")),
            whatsapp_number=str(doc.get("whatsappNumber", "")),
            address=str(doc.get("address", "")),
            cashier_name=str(doc.get("cashierName", "")),
            tax_rate=as_number(doc.get("taxRate", 0), "taxRate"),
        )
    )


def _records(document: dict, key: str, parse) -> list:
    raw = document.get(key)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"'{key}' must be a list.")
    out = []
    for i, doc in enumerate(raw):
        if not isinstance(doc, dict):
            raise ValidationError(f"'{key}[{i}]' must be an object.")
        try:
            out.append(parse(doc))
        except ValidationError as e:
            raise ValidationError(f"'{key}[{i}]': {e}") from e
    return out


class DataMaintenance:
    """Bulk operations: interchange export/import, bulk deletes and factory reset."""

    def __init__(self, store: SqliteStore, identity: IdentityProvider, bus: NotificationBus, quota: UsageQuotaGuard):
        self.store = store
        self.identity = identity
        self.bus = bus
        self.quota = quota

    def _denied(self, action_label: str) -> bool:
        if self.identity.current() is None:
            return True
        return self.quota.block_destructive(action_label)

    # ---------- Export ----------
    def export_data(self) -> dict[str, Any]:
        return {
            "settings": settings_to_doc(self.store.get_settings() or DEFAULT_SETTINGS),
            "products": [product_to_doc(p) for p in self.store.list_products()],
            "transactions": [transaction_to_doc(t) for t in self.store.list_transactions()],
            "stockMutations": [mutation_to_doc(m) for m in self.store.list_mutations()],
            "exportDate": datetime.now().isoformat(timespec="seconds"),
            "version": EXPORT_VERSION,
        }

    def export_to_file(self, path: Path | str) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.export_data(), ensure_ascii=False, indent=2), encoding="utf-8")
        log.info("data_exported path=%s", target)
        return target

    # ---------- Import ----------
    def parse_document(self, document: Any) -> tuple[Optional[StoreSettings], list, list, list]:
        if not isinstance(document, dict) or ("version" not in document and "products" not in document):
            raise ValidationError("Not a valid backup file.")
        settings = None
        if document.get("settings") is not None:
            if not isinstance(document["settings"], dict):
                raise ValidationError("'settings' must be an object.")
            settings = settings_from_doc(document["settings"])
        products = _records(document, "products", product_from_doc)
        transactions = _records(document, "transactions", transaction_from_doc)
        mutations = _records(document, "stockMutations", mutation_from_doc)
        return settings, products, transactions, mutations

    def import_data(self, document: Any) -> bool:
        """Upsert every record by id; existing records not in the file are kept.

        Each collection is written in its own unit of work, so a failure on a
        later collection leaves the earlier ones imported.
        """
        if self._denied("Import data"):
            return False
        try:
            settings, products, transactions, mutations = self.parse_document(document)
        except ValidationError as e:
            log.warning("import_rejected error=%s", e)
            self.bus.error("Import failed", str(e))
            raise

        try:
            if products:
                with self.store.unit_of_work() as uow:
                    for p in products:
                        uow.put_product(p)
            if transactions:
                with self.store.unit_of_work() as uow:
                    for t in transactions:
                        uow.put_transaction(t)
            if mutations:
                with self.store.unit_of_work() as uow:
                    for m in mutations:
                        uow.put_mutation(m)
            if settings is not None:
                with self.store.unit_of_work() as uow:
                    uow.put_settings(settings)
        except Exception as e:
            log.exception("import_failed")
            self.bus.error("Import failed", str(e))
            raise

        log.info(
            "data_imported products=%s transactions=%s mutations=%s settings=%s",
            len(products),
            len(transactions),
            len(mutations),
            settings is not None,
        )
        self.bus.success("Import complete", "Data synchronized to the database.")
        return True

    def import_file(self, path: Path | str) -> bool:
        if self._denied("Import data"):
            return False
        try:
            document = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            log.warning("import_unreadable path=%s error=%s", path, e)
            self.bus.error("Import failed", f"Could not read file: {e}")
            raise ValidationError(f"Could not read file: {e}") from e
        return self.import_data(document)

    # ---------- Bulk deletes ----------
    def delete_products(self, ids: Iterable[str]) -> int:
        if self._denied("Delete products"):
            return 0
        removed = 0
        with self.store.unit_of_work() as uow:
            for product_id in ids:
                product = uow.get_product(product_id)
                if product is None:
                    continue
                uow.append_mutation(make_mutation(product, MutationType.DELETE, -int(product.stock), "product deleted"))
                uow.delete_product(product.id)
                removed += 1
        log.info("products_bulk_deleted count=%s", removed)
        self.bus.info("Products deleted", f"{removed} product(s) removed.")
        return removed

    def clear_products(self) -> int:
        return self.delete_products([p.id for p in self.store.list_products()])

    def delete_transactions(self, ids: Iterable[str]) -> int:
        if self._denied("Delete transactions"):
            return 0
        removed = 0
        with self.store.unit_of_work() as uow:
            for transaction_id in ids:
                if uow.delete_transaction(transaction_id):
                    removed += 1
        log.info("transactions_bulk_deleted count=%s", removed)
        self.bus.info("Transactions deleted", f"{removed} transaction(s) removed.")
        return removed

    def clear_transactions(self) -> int:
        if self._denied("Delete transactions"):
            return 0
        with self.store.unit_of_work() as uow:
            removed = uow.clear(TRANSACTIONS)
        log.info("transactions_cleared count=%s", removed)
        self.bus.info("Transactions deleted", f"{removed} transaction(s) removed.")
        return removed

    def reset_factory(self) -> bool:
        if self._denied("Factory reset"):
            return False
        with self.store.unit_of_work() as uow:
            uow.clear(PRODUCTS)
            uow.clear(TRANSACTIONS)
            uow.clear(MUTATIONS)
            uow.put_settings(DEFAULT_SETTINGS)
        log.warning("factory_reset")
        self.bus.info("Reset complete", "All data has been cleared.")
        return True
