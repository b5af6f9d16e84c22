from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from posledger.config import AppConfig
from posledger.repositories.sqlite_repo import SqliteStore
from posledger.services.data_service import DataMaintenance
from posledger.services.identity_service import LocalIdentityProvider
from posledger.services.inventory_service import ProductCatalog
from posledger.services.ledger_service import StockLedger
from posledger.services.notification_service import NotificationBus, Scheduler
from posledger.services.quota_service import UsageQuotaGuard
from posledger.services.reporting_service import ReportingService
from posledger.services.sales_service import TransactionEngine
from posledger.services.settings_service import SettingsStore


@dataclass(frozen=True)
class AppContainer:
    config: AppConfig
    store: SqliteStore
    identity: LocalIdentityProvider
    bus: NotificationBus
    quota: UsageQuotaGuard
    settings: SettingsStore
    catalog: ProductCatalog
    ledger: StockLedger
    sales: TransactionEngine
    data: DataMaintenance
    reporting: ReportingService


def build_container(
    db_path: Path | str,
    config: AppConfig | None = None,
    identity: LocalIdentityProvider | None = None,
    scheduler: Scheduler | None = None,
) -> AppContainer:
    config = config or AppConfig()
    store = SqliteStore(db_path)
    store.init_db()

    identity = identity or LocalIdentityProvider()
    bus = NotificationBus(scheduler, toast_ms=config.toast_ms)
    quota = UsageQuotaGuard(store, identity, bus, limit=config.quota_limit)
    settings = SettingsStore(store, identity, bus)
    catalog = ProductCatalog(store, identity, bus, quota, atomic_writes=config.atomic_writes)
    ledger = StockLedger(
        store,
        identity,
        bus,
        quota,
        low_stock_threshold=config.low_stock_threshold,
        atomic_writes=config.atomic_writes,
    )
    sales = TransactionEngine(
        store,
        identity,
        bus,
        settings,
        quota=quota,
        low_stock_threshold=config.low_stock_threshold,
        count_toward_quota=config.count_sales_toward_quota,
    )
    data = DataMaintenance(store, identity, bus, quota)
    reporting = ReportingService(store)

    return AppContainer(
        config=config,
        store=store,
        identity=identity,
        bus=bus,
        quota=quota,
        settings=settings,
        catalog=catalog,
        ledger=ledger,
        sales=sales,
        data=data,
        reporting=reporting,
    )
