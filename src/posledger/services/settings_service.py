from __future__ import annotations

import logging
from numbers import Real

from posledger.domain.errors import ValidationError
from posledger.domain.models import DEFAULT_SETTINGS, StoreSettings
from posledger.repositories.sqlite_repo import SqliteStore
from posledger.services.identity_service import IdentityProvider
from posledger.services.notification_service import NotificationBus

log = logging.getLogger(__name__)


def validate_settings(settings: StoreSettings) -> StoreSettings:
    for field in ("store_name", "whatsapp_number", "address", "cashier_name"):
        if not isinstance(getattr(settings, field), str):
            raise ValidationError(f"{field} must be text.")
    rate = settings.tax_rate
    if isinstance(rate, bool) or not isinstance(rate, Real):
        raise ValidationError("Tax rate must be a number.")
    if rate < 0 or rate > 100:
        raise ValidationError("Tax rate must be between 0 and 100.")
    return settings


class SettingsStore:
    def __init__(self, store: SqliteStore, identity: IdentityProvider, bus: NotificationBus):
        self.store = store
        self.identity = identity
        self.bus = bus

    def get(self) -> StoreSettings:
        return self.store.get_settings() or DEFAULT_SETTINGS

    def ensure_initialized(self) -> None:
        ident = self.identity.current()
        if ident is None or ident.is_restricted:
            return
        if self.store.get_settings() is None:
            with self.store.autocommit() as uow:
                uow.put_settings(DEFAULT_SETTINGS)
            log.info("settings_initialized uid=%s", ident.uid)

    def update(self, settings: StoreSettings) -> StoreSettings | None:
        if self.identity.current() is None:
            return None
        validate_settings(settings)
        with self.store.autocommit() as uow:
            uow.put_settings(settings)
        log.info("settings_updated store=%s tax_rate=%s", settings.store_name, settings.tax_rate)
        self.bus.success("Settings saved", "Store configuration updated.")
        return settings

    def reset(self) -> StoreSettings | None:
        if self.identity.current() is None:
            return None
        with self.store.autocommit() as uow:
            uow.put_settings(DEFAULT_SETTINGS)
        log.info("settings_reset")
        self.bus.info("Settings reset", "Store configuration restored to defaults.")
        return DEFAULT_SETTINGS
