from __future__ import annotations

import logging
from typing import Optional

from posledger.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from posledger.domain.ids import new_id, now_iso
from posledger.domain.models import MANUAL_MUTATION_TYPES, MutationType, Product, StockMutation
from posledger.domain.validation import as_int
from posledger.repositories.sqlite_repo import SqliteStore
from posledger.services.identity_service import IdentityProvider
from posledger.services.notification_service import NotificationBus
from posledger.services.quota_service import UsageQuotaGuard

log = logging.getLogger("posledger.ledger")


def make_mutation(product: Product, mutation_type: MutationType, amount: int, note: Optional[str]) -> StockMutation:
    return StockMutation(
        id=new_id("LOG"),
        date=now_iso(),
        product_id=product.id,
        product_name=product.name,
        sku=product.sku,
        type=MutationType(mutation_type),
        amount=int(amount),
        note=note,
    )


class StockLedger:
    def __init__(
        self,
        store: SqliteStore,
        identity: IdentityProvider,
        bus: NotificationBus,
        quota: UsageQuotaGuard,
        low_stock_threshold: int = 5,
        atomic_writes: bool = False,
    ):
        self.store = store
        self.identity = identity
        self.bus = bus
        self.quota = quota
        self.low_stock_threshold = int(low_stock_threshold)
        self.atomic_writes = atomic_writes

    def adjust(
        self,
        product_id: str,
        amount: int,
        mutation_type: MutationType | str,
        note: Optional[str] = None,
    ) -> Optional[StockMutation]:
        """Apply a manual stock movement.

        The stored stock is clamped at zero but the ledger entry keeps the
        requested amount, so an oversized OUT leaves the product at 0 while the
        mutation records the full request. Callers that must refuse such
        requests validate first (see ``stock_out``).
        """
        if self.identity.current() is None:
            return None

        amount = as_int(amount, "Amount")
        try:
            mutation_type = MutationType(mutation_type)
        except ValueError as e:
            raise ValidationError(f"Unknown mutation type: {mutation_type}") from e
        if mutation_type not in MANUAL_MUTATION_TYPES:
            raise ValidationError(f"Mutation type {mutation_type.value} cannot be applied manually.")

        if self.store.get_product(product_id) is None:
            raise NotFoundError("Product not found.")
        if not self.quota.check_limit():
            return None

        with self.store.write_scope(self.atomic_writes) as uow:
            product = uow.get_product(product_id)
            if product is None:
                raise NotFoundError("Product not found.")
            new_stock = max(0, int(product.stock) + amount)
            uow.set_stock(product.id, new_stock)
            mutation = make_mutation(product, mutation_type, amount, note or "-")
            uow.append_mutation(mutation)

        self.quota.increment()
        log.info(
            "stock_adjusted product=%s type=%s amount=%s stock_before=%s stock_after=%s",
            product.id,
            mutation_type.value,
            amount,
            product.stock,
            new_stock,
        )

        if mutation_type is MutationType.IN:
            self.bus.info("Stock in", f"{product.name} stock increased by {amount}.")
        if mutation_type is MutationType.OUT:
            self.bus.warning("Stock out", f"{product.name} stock decreased by {abs(amount)}.")
        if new_stock <= self.low_stock_threshold:
            self.bus.warning("Low stock", f"{product.name} is running low ({new_stock} left).")
        return mutation

    def stock_out(self, product_id: str, quantity: int, note: Optional[str] = None) -> Optional[StockMutation]:
        quantity = as_int(quantity, "Quantity")
        if quantity <= 0:
            raise ValidationError("Quantity to remove must be > 0.")
        product = self.store.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found.")
        if int(product.stock) - quantity < 0:
            raise InsufficientStockError(f"Not enough stock. Available: {product.stock}")
        return self.adjust(product_id, -quantity, MutationType.OUT, note)

    def history(self, product_id: Optional[str] = None) -> list[StockMutation]:
        return self.store.list_mutations(product_id)

    def balance(self, product_id: str) -> int:
        return self.store.ledger_balance(product_id)

    def verify(self, product_id: str) -> bool:
        product = self.store.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found.")
        return int(product.stock) == self.store.ledger_balance(product_id)

    def discrepancies(self) -> list[tuple[str, int, int]]:
        return self.store.ledger_discrepancies()
