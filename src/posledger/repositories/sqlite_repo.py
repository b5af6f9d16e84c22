from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from posledger.domain.models import (
    CartItem,
    MutationType,
    PaymentMethod,
    Product,
    StockMutation,
    StoreSettings,
    Transaction,
)

log = logging.getLogger(__name__)

PRODUCTS = "products"
TRANSACTIONS = "transactions"
MUTATIONS = "mutations"
SETTINGS = "settings"
USAGE = "usage"

COLLECTIONS = (PRODUCTS, TRANSACTIONS, MUTATIONS, SETTINGS, USAGE)

Listener = Callable[[Any], None]


class Subscription:
    """Handle returned by SqliteStore.subscribe; release it with unsubscribe()."""

    def __init__(self, store: "SqliteStore", collection: str, listener: Listener, key: Optional[str] = None):
        self.store = store
        self.collection = collection
        self.listener = listener
        self.key = key
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.store._remove_subscription(self)

    def _deliver(self, snapshot: Any) -> None:
        if self.active:
            self.listener(snapshot)


class SqliteStore:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)
        self._subscriptions: list[Subscription] = []
        self._subs_lock = threading.Lock()

    def _conn(self, autocommit: bool = False) -> sqlite3.Connection:
        if autocommit:
            conn = sqlite3.connect(self.db_path, isolation_level=None)
        else:
            conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            raise RuntimeError("Database migration failed.") from exc
        finally:
            conn.close()

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS products (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            sku TEXT NOT NULL,
            price REAL NOT NULL CHECK(price >= 0),
            stock INTEGER NOT NULL DEFAULT 0 CHECK(stock >= 0),
            category TEXT NOT NULL DEFAULT '',
            image TEXT
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            date TEXT NOT NULL,
            subtotal REAL NOT NULL CHECK(subtotal >= 0),
            tax_amount REAL NOT NULL CHECK(tax_amount >= 0),
            total REAL NOT NULL CHECK(total >= 0),
            payment_method TEXT NOT NULL CHECK(payment_method IN ('CASH','QRIS','TRANSFER'))
        )
        """
        )

        # Product columns are a frozen snapshot; no FK to products so deletes keep history.
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS transaction_items (
            transaction_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            product_id TEXT NOT NULL,
            name TEXT NOT NULL,
            sku TEXT NOT NULL,
            price REAL NOT NULL CHECK(price >= 0),
            stock INTEGER NOT NULL,
            category TEXT NOT NULL DEFAULT '',
            image TEXT,
            quantity INTEGER NOT NULL CHECK(quantity > 0),
            PRIMARY KEY (transaction_id, position),
            FOREIGN KEY(transaction_id) REFERENCES transactions(id) ON DELETE CASCADE
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS stock_mutations (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            date TEXT NOT NULL,
            product_id TEXT NOT NULL,
            product_name TEXT NOT NULL,
            sku TEXT NOT NULL,
            type TEXT NOT NULL CHECK(type IN ('IN','OUT','RETURN','NEW','DELETE','SALE')),
            amount INTEGER NOT NULL,
            note TEXT
        )
        """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_stock_mutations_product ON stock_mutations(product_id)")

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS settings (
            id INTEGER PRIMARY KEY CHECK(id = 1),
            store_name TEXT NOT NULL,
            whatsapp_number TEXT NOT NULL,
            address TEXT NOT NULL,
            cashier_name TEXT NOT NULL,
            tax_rate REAL NOT NULL CHECK(tax_rate >= 0 AND tax_rate <= 100)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS usage_counters (
            uid TEXT PRIMARY KEY,
            count INTEGER NOT NULL DEFAULT 0 CHECK(count >= 0)
        )
        """
        )

    # ---------- Units of work ----------
    def unit_of_work(self):
        from posledger.repositories.unit_of_work import SqliteUnitOfWork

        return SqliteUnitOfWork(self)

    def autocommit(self):
        from posledger.repositories.unit_of_work import SqliteUnitOfWork

        return SqliteUnitOfWork(self, autocommit=True)

    def write_scope(self, atomic: bool):
        return self.unit_of_work() if atomic else self.autocommit()

    # ---------- Subscriptions ----------
    def subscribe(self, collection: str, listener: Listener, key: Optional[str] = None) -> Subscription:
        """Register a listener; it receives the current snapshot now and after every commit."""
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        sub = Subscription(self, collection, listener, key)
        with self._subs_lock:
            self._subscriptions.append(sub)
        sub._deliver(self.snapshot(collection, key))
        return sub

    def _remove_subscription(self, sub: Subscription) -> None:
        with self._subs_lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def active_subscriptions(self) -> int:
        with self._subs_lock:
            return len(self._subscriptions)

    def snapshot(self, collection: str, key: Optional[str] = None) -> Any:
        if collection == PRODUCTS:
            return self.list_products()
        if collection == TRANSACTIONS:
            return self.list_transactions()
        if collection == MUTATIONS:
            return self.list_mutations()
        if collection == SETTINGS:
            return self.get_settings()
        if collection == USAGE:
            return self.get_usage_count(key or "")
        raise ValueError(f"Unknown collection: {collection}")

    def publish(self, collections: set[str]) -> None:
        with self._subs_lock:
            targets = [s for s in self._subscriptions if s.collection in collections]
        for sub in targets:
            try:
                sub._deliver(self.snapshot(sub.collection, sub.key))
            except Exception:
                log.exception("snapshot_listener_failed collection=%s", sub.collection)

    # ---------- Products ----------
    @staticmethod
    def _row_to_product(r) -> Product:
        return Product(
            id=str(r[0]),
            name=str(r[1]),
            sku=str(r[2]),
            price=float(r[3]),
            stock=int(r[4]),
            category=str(r[5] or ""),
            image=(str(r[6]) if r[6] is not None else None),
        )

    def list_products(self) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, name, sku, price, stock, category, image
            FROM products
            ORDER BY name, id
        """
        )
        rows = cur.fetchall()
        conn.close()
        return [self._row_to_product(r) for r in rows]

    def get_product(self, product_id: str) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, sku, price, stock, category, image FROM products WHERE id = ?",
            (str(product_id),),
        )
        row = cur.fetchone()
        conn.close()
        return self._row_to_product(row) if row else None

    # ---------- Transactions ----------
    def list_transactions(self) -> list[Transaction]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, date, subtotal, tax_amount, total, payment_method
            FROM transactions
            ORDER BY date DESC, rowid DESC
            """
        )
        headers = cur.fetchall()
        items = self._items_by_transaction(cur)
        conn.close()
        return [self._row_to_transaction(h, items.get(str(h[0]), ())) for h in headers]

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, date, subtotal, tax_amount, total, payment_method FROM transactions WHERE id = ?",
            (str(transaction_id),),
        )
        header = cur.fetchone()
        if not header:
            conn.close()
            return None
        items = self._items_by_transaction(cur, str(transaction_id))
        conn.close()
        return self._row_to_transaction(header, items.get(str(transaction_id), ()))

    def _items_by_transaction(self, cur: sqlite3.Cursor, transaction_id: Optional[str] = None) -> dict[str, tuple[CartItem, ...]]:
        sql = """
            SELECT transaction_id, product_id, name, sku, price, stock, category, image, quantity
            FROM transaction_items
        """
        params: tuple = ()
        if transaction_id is not None:
            sql += " WHERE transaction_id = ?"
            params = (transaction_id,)
        cur.execute(sql + " ORDER BY transaction_id, position", params)

        grouped: dict[str, list[CartItem]] = {}
        for r in cur.fetchall():
            product = Product(
                id=str(r[1]),
                name=str(r[2]),
                sku=str(r[3]),
                price=float(r[4]),
                stock=int(r[5]),
                category=str(r[6] or ""),
                image=(str(r[7]) if r[7] is not None else None),
            )
            grouped.setdefault(str(r[0]), []).append(CartItem(product=product, quantity=int(r[8])))
        return {k: tuple(v) for k, v in grouped.items()}

    @staticmethod
    def _row_to_transaction(h, items: tuple[CartItem, ...]) -> Transaction:
        return Transaction(
            id=str(h[0]),
            date=str(h[1]),
            subtotal=float(h[2]),
            tax_amount=float(h[3]),
            total=float(h[4]),
            payment_method=PaymentMethod(str(h[5])),
            items=items,
        )

    # ---------- Stock ledger ----------
    def list_mutations(self, product_id: Optional[str] = None) -> list[StockMutation]:
        conn = self._conn()
        cur = conn.cursor()
        sql = """
            SELECT id, date, product_id, product_name, sku, type, amount, note
            FROM stock_mutations
        """
        params: tuple = ()
        if product_id is not None:
            sql += " WHERE product_id = ?"
            params = (str(product_id),)
        cur.execute(sql + " ORDER BY date DESC, seq DESC", params)
        rows = cur.fetchall()
        conn.close()
        return [
            StockMutation(
                id=str(r[0]),
                date=str(r[1]),
                product_id=str(r[2]),
                product_name=str(r[3]),
                sku=str(r[4]),
                type=MutationType(str(r[5])),
                amount=int(r[6]),
                note=r[7],
            )
            for r in rows
        ]

    def ledger_balance(self, product_id: str) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COALESCE(SUM(amount), 0) FROM stock_mutations WHERE product_id = ?", (str(product_id),))
        total = int(cur.fetchone()[0])
        conn.close()
        return total

    def ledger_discrepancies(self) -> list[tuple[str, int, int]]:
        """(product_id, stock, ledger balance) for every product where the two differ."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT p.id, p.stock, COALESCE(SUM(m.amount), 0) AS balance
            FROM products p
            LEFT JOIN stock_mutations m ON m.product_id = p.id
            GROUP BY p.id, p.stock
            HAVING p.stock != balance
            ORDER BY p.name, p.id
            """
        )
        rows = cur.fetchall()
        conn.close()
        return [(str(r[0]), int(r[1]), int(r[2])) for r in rows]

    # ---------- Settings ----------
    def get_settings(self) -> Optional[StoreSettings]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT store_name, whatsapp_number, address, cashier_name, tax_rate FROM settings WHERE id = 1")
        row = cur.fetchone()
        conn.close()
        if not row:
            return None
        return StoreSettings(
            store_name=str(row[0]),
            whatsapp_number=str(row[1]),
            address=str(row[2]),
            cashier_name=str(row[3]),
            tax_rate=float(row[4]),
        )

    # ---------- Usage ----------
    def get_usage_count(self, uid: str) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT count FROM usage_counters WHERE uid = ?", (str(uid),))
        row = cur.fetchone()
        conn.close()
        return int(row[0]) if row else 0
