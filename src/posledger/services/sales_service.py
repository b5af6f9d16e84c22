from __future__ import annotations

from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Optional

import logging
from posledger.domain.errors import (
    AppError,
    CommitError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from posledger.domain.ids import new_id, now_iso
from posledger.domain.models import CartItem, MutationType, PaymentMethod, Transaction
from posledger.domain.validation import as_int, as_number
from posledger.repositories.sqlite_repo import SqliteStore
from posledger.repositories.unit_of_work import UnitOfWork
from posledger.services.identity_service import IdentityProvider
from posledger.services.ledger_service import make_mutation
from posledger.services.notification_service import NotificationBus
from posledger.services.quota_service import UsageQuotaGuard
from posledger.services.settings_service import SettingsStore

log = logging.getLogger("posledger.sales")


def compute_totals(items: Iterable[CartItem], tax_rate: float) -> tuple[float, float, float]:
    """Return (subtotal, tax_amount, total); tax is rounded half away from zero."""
    subtotal = sum(
        (Decimal(str(it.product.price)) * int(it.quantity) for it in items),
        Decimal("0"),
    )
    tax = (subtotal * Decimal(str(tax_rate)) / Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return float(subtotal), float(tax), float(subtotal + tax)


class TransactionEngine:
    def __init__(
        self,
        store: SqliteStore,
        identity: IdentityProvider,
        bus: NotificationBus,
        settings: SettingsStore,
        quota: UsageQuotaGuard | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        low_stock_threshold: int = 5,
        count_toward_quota: bool = False,
    ):
        self.store = store
        self.identity = identity
        self.bus = bus
        self.settings = settings
        self.quota = quota
        self.uow_factory = uow_factory or store.unit_of_work
        self.low_stock_threshold = int(low_stock_threshold)
        self.count_toward_quota = count_toward_quota

    def commit(
        self,
        cart: Iterable[CartItem],
        payment_method: PaymentMethod | str,
        tax_rate: float | None = None,
    ) -> Optional[Transaction]:
        if self.identity.current() is None:
            return None

        items = tuple(cart)
        if not items:
            raise ValidationError("Cart is empty.")
        for it in items:
            qty = as_int(it.quantity, "Quantity")
            if qty <= 0:
                raise ValidationError("Qty must be >= 1.")
            if as_number(it.product.price, "Price") < 0:
                raise ValidationError("Price must be >= 0.")
        try:
            payment_method = PaymentMethod(payment_method)
        except ValueError as e:
            raise ValidationError(f"Unknown payment method: {payment_method}") from e

        if tax_rate is None:
            tax_rate = self.settings.get().tax_rate
        tax_rate = as_number(tax_rate, "Tax rate")
        if tax_rate < 0 or tax_rate > 100:
            raise ValidationError("Tax rate must be between 0 and 100.")

        if self.count_toward_quota and self.quota is not None and not self.quota.check_limit():
            return None

        subtotal, tax_amount, total = compute_totals(items, tax_rate)
        transaction = Transaction(
            id=new_id("TRX", upper=True),
            date=now_iso(),
            subtotal=subtotal,
            tax_amount=tax_amount,
            total=total,
            payment_method=payment_method,
            items=items,
        )

        # Aggregate by product so repeated lines cannot oversell.
        qty_by_product: Counter[str] = Counter()
        for it in items:
            qty_by_product[it.product.id] += int(it.quantity)

        stock_after: dict[str, tuple[str, int]] = {}
        try:
            with self.uow_factory() as uow:
                for product_id, qty in qty_by_product.items():
                    prod = uow.get_product(product_id)
                    if prod is None:
                        raise NotFoundError("Product not found.")
                    if qty > int(prod.stock):
                        raise InsufficientStockError(f"Not enough stock for {prod.sku}. Available: {prod.stock}")

                uow.insert_transaction(transaction)
                for it in items:
                    prod = uow.get_product(it.product.id)
                    new_stock = max(0, int(prod.stock) - int(it.quantity))
                    uow.set_stock(prod.id, new_stock)
                    uow.append_mutation(
                        make_mutation(it.product, MutationType.SALE, -int(it.quantity), f"Transaction: {transaction.id}")
                    )
                    stock_after[prod.id] = (prod.name, new_stock)
        except AppError:
            raise
        except Exception as e:
            log.exception("sale_commit_failed transaction=%s", transaction.id)
            raise CommitError("Could not save the transaction. Nothing was changed.") from e

        if self.count_toward_quota and self.quota is not None:
            self.quota.increment()

        log.info(
            "sale_committed transaction=%s items=%s subtotal=%.2f tax=%.2f total=%.2f method=%s",
            transaction.id,
            len(items),
            subtotal,
            tax_amount,
            total,
            payment_method.value,
        )
        for name, new_stock in stock_after.values():
            if new_stock <= self.low_stock_threshold:
                self.bus.warning("Low stock", f"{name} has {new_stock} left.")
        self.bus.success("Transaction complete", f"Total: {total:,.0f}")
        return transaction

    def list_transactions(self) -> list[Transaction]:
        return self.store.list_transactions()

    def get_transaction(self, transaction_id: str) -> Transaction:
        t = self.store.get_transaction(transaction_id)
        if not t:
            raise NotFoundError("Transaction not found.")
        return t
