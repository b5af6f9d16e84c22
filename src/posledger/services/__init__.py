from .notification_service import NotificationBus
from .identity_service import LocalIdentityProvider
from .quota_service import UsageQuotaGuard
from .settings_service import SettingsStore
from .ledger_service import StockLedger
from .inventory_service import ProductCatalog
from .sales_service import TransactionEngine
from .data_service import DataMaintenance
from .reporting_service import ReportingService

__all__ = [
    "NotificationBus",
    "LocalIdentityProvider",
    "UsageQuotaGuard",
    "SettingsStore",
    "StockLedger",
    "ProductCatalog",
    "TransactionEngine",
    "DataMaintenance",
    "ReportingService",
]
