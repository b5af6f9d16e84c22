from __future__ import annotations

import logging
import threading
from typing import Optional

from posledger.application.container import AppContainer
from posledger.domain.models import (
    DEFAULT_SETTINGS,
    Identity,
    Product,
    StockMutation,
    StoreSettings,
    Transaction,
)
from posledger.repositories.sqlite_repo import (
    MUTATIONS,
    PRODUCTS,
    SETTINGS,
    TRANSACTIONS,
    USAGE,
    SqliteStore,
    Subscription,
)

log = logging.getLogger(__name__)


class LiveViews:
    """Read-only views kept current by store subscriptions.

    ``open()`` subscribes, ``close()`` releases every subscription; both are
    idempotent and the object works as a context manager.
    """

    def __init__(self, store: SqliteStore, identity: Identity):
        self.store = store
        self.identity = identity
        self._lock = threading.Lock()
        self._subs: list[Subscription] = []
        self._products: list[Product] = []
        self._transactions: list[Transaction] = []
        self._mutations: list[StockMutation] = []
        self._settings: StoreSettings = DEFAULT_SETTINGS
        self._usage = 0

    @property
    def is_open(self) -> bool:
        return bool(self._subs)

    def open(self) -> "LiveViews":
        if self._subs:
            return self
        self._subs = [
            self.store.subscribe(PRODUCTS, self._set("_products")),
            self.store.subscribe(TRANSACTIONS, self._set("_transactions")),
            self.store.subscribe(MUTATIONS, self._set("_mutations")),
            self.store.subscribe(SETTINGS, self._on_settings),
            self.store.subscribe(USAGE, self._set("_usage"), key=self.identity.uid),
        ]
        log.info("live_views_opened uid=%s", self.identity.uid)
        return self

    def close(self) -> None:
        subs, self._subs = self._subs, []
        for sub in subs:
            sub.unsubscribe()
        with self._lock:
            self._products = []
            self._transactions = []
            self._mutations = []
            self._usage = 0
        if subs:
            log.info("live_views_closed uid=%s", self.identity.uid)

    def __enter__(self) -> "LiveViews":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _set(self, attr: str):
        def _listener(snapshot) -> None:
            with self._lock:
                setattr(self, attr, snapshot)

        return _listener

    def _on_settings(self, snapshot: Optional[StoreSettings]) -> None:
        with self._lock:
            self._settings = snapshot or DEFAULT_SETTINGS

    @property
    def products(self) -> list[Product]:
        with self._lock:
            return list(self._products)

    @property
    def transactions(self) -> list[Transaction]:
        with self._lock:
            return list(self._transactions)

    @property
    def stock_mutations(self) -> list[StockMutation]:
        with self._lock:
            return list(self._mutations)

    @property
    def settings(self) -> StoreSettings:
        with self._lock:
            return self._settings

    @property
    def usage_count(self) -> int:
        with self._lock:
            return self._usage


class PosSession:
    """Ties sign-in/sign-out to the lifetime of the live views."""

    def __init__(self, app: AppContainer):
        self.app = app
        self.views: Optional[LiveViews] = None

    def login(self, uid: str, restricted: bool = False) -> LiveViews:
        self.logout()
        identity = self.app.identity.sign_in(uid, restricted=restricted)
        return self._start(identity)

    def login_anonymous(self) -> LiveViews:
        self.logout()
        return self._start(self.app.identity.sign_in_anonymous())

    def _start(self, identity: Identity) -> LiveViews:
        self.app.settings.ensure_initialized()
        self.views = LiveViews(self.app.store, identity).open()
        return self.views

    def logout(self) -> None:
        views, self.views = self.views, None
        if views is not None:
            views.close()
        if self.app.identity.current() is not None:
            self.app.identity.sign_out()
