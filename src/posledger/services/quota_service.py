from __future__ import annotations

import logging

from posledger.repositories.sqlite_repo import SqliteStore
from posledger.services.identity_service import IdentityProvider
from posledger.services.notification_service import NotificationBus

log = logging.getLogger(__name__)


class UsageQuotaGuard:
    """Action cap and destructive-operation gate for restricted identities."""

    def __init__(self, store: SqliteStore, identity: IdentityProvider, bus: NotificationBus, limit: int = 5):
        self.store = store
        self.identity = identity
        self.bus = bus
        self.limit = int(limit)

    def _restricted_uid(self) -> str | None:
        ident = self.identity.current()
        if ident is None or not ident.is_restricted:
            return None
        return ident.uid

    def usage_count(self) -> int:
        uid = self._restricted_uid()
        return self.store.get_usage_count(uid) if uid else 0

    def check_limit(self) -> bool:
        uid = self._restricted_uid()
        if uid is None:
            return True
        count = self.store.get_usage_count(uid)
        if count >= self.limit:
            log.warning("quota_denied uid=%s count=%s limit=%s", uid, count, self.limit)
            self.bus.error("Demo limit reached", f"Demo accounts are limited to {self.limit} actions.")
            return False
        return True

    def increment(self) -> int | None:
        uid = self._restricted_uid()
        if uid is None:
            return None
        with self.store.autocommit() as uow:
            count = uow.increment_usage(uid)
        log.info("quota_incremented uid=%s count=%s", uid, count)
        return count

    def block_destructive(self, action_label: str) -> bool:
        """True when the action must not run for the current identity."""
        uid = self._restricted_uid()
        if uid is None:
            return False
        log.warning("destructive_blocked uid=%s action=%s", uid, action_label)
        self.bus.error("Not allowed", f"{action_label} is not allowed for demo accounts.")
        return True
