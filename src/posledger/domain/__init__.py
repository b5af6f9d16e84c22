from .models import (
    AppNotification,
    CartItem,
    Identity,
    MutationType,
    PaymentMethod,
    Product,
    Severity,
    StockMutation,
    StoreSettings,
    Transaction,
)
from .errors import (
    AppError,
    CommitError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "AppNotification",
    "CartItem",
    "Identity",
    "MutationType",
    "PaymentMethod",
    "Product",
    "Severity",
    "StockMutation",
    "StoreSettings",
    "Transaction",
    "AppError",
    "CommitError",
    "InsufficientStockError",
    "NotFoundError",
    "ValidationError",
]
