from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from posledger.domain.errors import NotFoundError, ValidationError
from posledger.domain.ids import new_id
from posledger.domain.models import MutationType, Product
from posledger.domain.validation import as_int, as_number, required_text
from posledger.repositories.sqlite_repo import SqliteStore
from posledger.services.identity_service import IdentityProvider
from posledger.services.ledger_service import make_mutation
from posledger.services.notification_service import NotificationBus
from posledger.services.quota_service import UsageQuotaGuard

log = logging.getLogger(__name__)


def _clean_price(price: object) -> float:
    value = as_number(price, "Price")
    if value < 0:
        raise ValidationError("Price must be >= 0.")
    return value


class ProductCatalog:
    def __init__(
        self,
        store: SqliteStore,
        identity: IdentityProvider,
        bus: NotificationBus,
        quota: UsageQuotaGuard,
        atomic_writes: bool = False,
    ):
        self.store = store
        self.identity = identity
        self.bus = bus
        self.quota = quota
        self.atomic_writes = atomic_writes

    def list_products(self) -> list[Product]:
        return self.store.list_products()

    def get_product(self, product_id: str) -> Product:
        p = self.store.get_product(product_id)
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def low_stock(self, threshold: int = 5) -> list[Product]:
        return sorted(
            (p for p in self.store.list_products() if p.stock <= threshold),
            key=lambda p: (p.stock, p.name),
        )

    def add(
        self,
        name: str,
        sku: str,
        price: float,
        stock: int,
        category: str = "",
        image: Optional[str] = None,
    ) -> Optional[Product]:
        if self.identity.current() is None:
            return None

        name = required_text(name, "Name")
        sku = required_text(sku, "SKU")
        price = _clean_price(price)
        stock = as_int(stock, "Stock")
        if stock < 0:
            raise ValidationError("Stock must be >= 0.")

        if not self.quota.check_limit():
            return None

        product = Product(
            id=new_id("PROD", upper=True),
            name=name,
            sku=sku,
            price=price,
            stock=stock,
            category=(category or "").strip(),
            image=image,
        )
        with self.store.write_scope(self.atomic_writes) as uow:
            uow.put_product(product)
            uow.append_mutation(make_mutation(product, MutationType.NEW, product.stock, "new product"))

        self.quota.increment()
        log.info("product_added id=%s sku=%s stock=%s", product.id, product.sku, product.stock)
        self.bus.success("New product", f"Product {product.name} added.")
        return product

    def update(self, product: Product) -> Optional[Product]:
        """Overwrite everything but stock, which only moves through the ledger."""
        if self.identity.current() is None:
            return None

        current = self.store.get_product(product.id)
        if current is None:
            raise NotFoundError("Product not found.")
        updated = replace(
            product,
            name=required_text(product.name, "Name"),
            sku=required_text(product.sku, "SKU"),
            price=_clean_price(product.price),
            category=(product.category or "").strip(),
            stock=current.stock,
        )
        with self.store.autocommit() as uow:
            if not uow.update_product_details(updated):
                raise NotFoundError("Product not found.")

        log.info("product_updated id=%s sku=%s", updated.id, updated.sku)
        self.bus.info("Product updated", f"Product {updated.name} updated.")
        return updated

    def delete(self, product_id: str) -> bool:
        if self.identity.current() is None:
            return False
        if self.quota.block_destructive("Delete product"):
            return False

        if self.store.get_product(product_id) is None:
            raise NotFoundError("Product not found.")

        with self.store.write_scope(self.atomic_writes) as uow:
            product = uow.get_product(product_id)
            if product is None:
                raise NotFoundError("Product not found.")
            uow.append_mutation(make_mutation(product, MutationType.DELETE, -int(product.stock), "product deleted"))
            uow.delete_product(product.id)

        log.info("product_deleted id=%s sku=%s stock=%s", product.id, product.sku, product.stock)
        self.bus.error("Product deleted", f"Product {product.name} was deleted.")
        return True
