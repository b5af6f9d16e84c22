from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PaymentMethod(str, Enum):
    CASH = "CASH"
    QRIS = "QRIS"
    TRANSFER = "TRANSFER"


class MutationType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    RETURN = "RETURN"
    NEW = "NEW"
    DELETE = "DELETE"
    SALE = "SALE"


# Types a caller may pass to StockLedger.adjust; the rest are written by the system.
MANUAL_MUTATION_TYPES = frozenset({MutationType.IN, MutationType.OUT, MutationType.RETURN})


class Severity(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    sku: str
    price: float
    stock: int
    category: str
    image: Optional[str] = None


@dataclass(frozen=True)
class CartItem:
    product: Product
    quantity: int

    @property
    def line_total(self) -> float:
        return float(self.product.price) * int(self.quantity)


@dataclass(frozen=True)
class Transaction:
    id: str
    date: str
    subtotal: float
    tax_amount: float
    total: float
    payment_method: PaymentMethod
    items: tuple[CartItem, ...]


@dataclass(frozen=True)
class StockMutation:
    id: str
    date: str
    product_id: str
    product_name: str
    sku: str
    type: MutationType
    amount: int
    note: Optional[str] = None


@dataclass(frozen=True)
class AppNotification:
    id: str
    title: str
    message: str
    severity: Severity
    timestamp: str
    is_read: bool = False


@dataclass(frozen=True)
class StoreSettings:
    store_name: str
    whatsapp_number: str
    address: str
    cashier_name: str
    tax_rate: float


DEFAULT_SETTINGS = StoreSettings(
    store_name="MyBoard Lite",
    whatsapp_number="6281234567890",
    address="Jl. Contoh Bisnis No. 123, Jakarta",
    cashier_name="Kasir",
    tax_rate=0,
)


@dataclass(frozen=True)
class Identity:
    uid: str
    is_restricted: bool = False
