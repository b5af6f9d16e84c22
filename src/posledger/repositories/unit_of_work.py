from __future__ import annotations

import sqlite3
from typing import Optional, Protocol

from posledger.domain.models import Product, StockMutation, StoreSettings, Transaction
from posledger.repositories.sqlite_repo import (
    MUTATIONS,
    PRODUCTS,
    SETTINGS,
    TRANSACTIONS,
    USAGE,
    SqliteStore,
)


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def get_product(self, product_id: str) -> Optional[Product]: ...
    def put_product(self, product: Product) -> None: ...
    def update_product_details(self, product: Product) -> bool: ...
    def set_stock(self, product_id: str, stock: int) -> bool: ...
    def delete_product(self, product_id: str) -> bool: ...
    def insert_transaction(self, transaction: Transaction) -> None: ...
    def put_transaction(self, transaction: Transaction) -> None: ...
    def delete_transaction(self, transaction_id: str) -> bool: ...
    def append_mutation(self, mutation: StockMutation) -> None: ...
    def put_mutation(self, mutation: StockMutation) -> None: ...
    def put_settings(self, settings: StoreSettings) -> None: ...
    def increment_usage(self, uid: str) -> int: ...
    def clear(self, collection: str) -> int: ...


class SqliteUnitOfWork:
    """Write scope over one SQLite connection.

    Atomic mode opens ``BEGIN IMMEDIATE`` on enter and commits on a clean exit,
    rolling back everything on an exception. Autocommit mode exposes the same
    writes but commits each statement as it runs, so a failure halfway leaves
    the earlier writes in place.

    Subscribers of every touched collection are notified once the data is
    committed.
    """

    def __init__(self, store: SqliteStore, autocommit: bool = False):
        self.store = store
        self.autocommit = autocommit
        self.conn: sqlite3.Connection | None = None
        self.touched: set[str] = set()

    def __enter__(self) -> "SqliteUnitOfWork":
        self.conn = self.store._conn(autocommit=True)
        if not self.autocommit:
            self.conn.execute("BEGIN IMMEDIATE")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self.conn
        self.conn = None
        committed = False
        try:
            if self.autocommit:
                return None
            if exc_type is None:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    conn.execute("ROLLBACK")
                    raise
                committed = True
            else:
                conn.execute("ROLLBACK")
        finally:
            conn.close()
        if committed:
            self.store.publish(self.touched)
        return None

    def _cur(self) -> sqlite3.Cursor:
        if self.conn is None:
            raise RuntimeError("Unit of work is not open.")
        return self.conn.cursor()

    def _wrote(self, collection: str) -> None:
        if self.autocommit:
            self.store.publish({collection})
        self.touched.add(collection)

    # ---------- Products ----------
    def get_product(self, product_id: str) -> Optional[Product]:
        cur = self._cur()
        cur.execute(
            "SELECT id, name, sku, price, stock, category, image FROM products WHERE id = ?",
            (str(product_id),),
        )
        row = cur.fetchone()
        return SqliteStore._row_to_product(row) if row else None

    def put_product(self, product: Product) -> None:
        cur = self._cur()
        cur.execute(
            """
            INSERT INTO products (id, name, sku, price, stock, category, image)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name, sku=excluded.sku, price=excluded.price,
                stock=excluded.stock, category=excluded.category, image=excluded.image
            """,
            (
                product.id,
                product.name,
                product.sku,
                float(product.price),
                int(product.stock),
                product.category,
                product.image,
            ),
        )
        self._wrote(PRODUCTS)

    def update_product_details(self, product: Product) -> bool:
        cur = self._cur()
        cur.execute(
            """
            UPDATE products
            SET name=?, sku=?, price=?, category=?, image=?
            WHERE id=?
            """,
            (product.name, product.sku, float(product.price), product.category, product.image, product.id),
        )
        if cur.rowcount <= 0:
            return False
        self._wrote(PRODUCTS)
        return True

    def set_stock(self, product_id: str, stock: int) -> bool:
        cur = self._cur()
        cur.execute("UPDATE products SET stock=? WHERE id=?", (int(stock), str(product_id)))
        if cur.rowcount <= 0:
            return False
        self._wrote(PRODUCTS)
        return True

    def delete_product(self, product_id: str) -> bool:
        cur = self._cur()
        cur.execute("DELETE FROM products WHERE id=?", (str(product_id),))
        if cur.rowcount <= 0:
            return False
        self._wrote(PRODUCTS)
        return True

    # ---------- Transactions ----------
    def _insert_items(self, cur: sqlite3.Cursor, transaction: Transaction) -> None:
        for position, item in enumerate(transaction.items):
            p = item.product
            cur.execute(
                """
                INSERT INTO transaction_items (
                    transaction_id, position, product_id, name, sku, price, stock, category, image, quantity
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (transaction.id, position, p.id, p.name, p.sku, float(p.price), int(p.stock), p.category, p.image, int(item.quantity)),
            )

    def insert_transaction(self, transaction: Transaction) -> None:
        cur = self._cur()
        cur.execute(
            """
            INSERT INTO transactions (id, date, subtotal, tax_amount, total, payment_method)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                transaction.id,
                transaction.date,
                float(transaction.subtotal),
                float(transaction.tax_amount),
                float(transaction.total),
                transaction.payment_method.value,
            ),
        )
        self._insert_items(cur, transaction)
        self._wrote(TRANSACTIONS)

    def put_transaction(self, transaction: Transaction) -> None:
        cur = self._cur()
        cur.execute("DELETE FROM transaction_items WHERE transaction_id=?", (transaction.id,))
        cur.execute(
            """
            INSERT INTO transactions (id, date, subtotal, tax_amount, total, payment_method)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                date=excluded.date, subtotal=excluded.subtotal, tax_amount=excluded.tax_amount,
                total=excluded.total, payment_method=excluded.payment_method
            """,
            (
                transaction.id,
                transaction.date,
                float(transaction.subtotal),
                float(transaction.tax_amount),
                float(transaction.total),
                transaction.payment_method.value,
            ),
        )
        self._insert_items(cur, transaction)
        self._wrote(TRANSACTIONS)

    def delete_transaction(self, transaction_id: str) -> bool:
        cur = self._cur()
        cur.execute("DELETE FROM transactions WHERE id=?", (str(transaction_id),))
        if cur.rowcount <= 0:
            return False
        self._wrote(TRANSACTIONS)
        return True

    # ---------- Stock ledger ----------
    def append_mutation(self, mutation: StockMutation) -> None:
        cur = self._cur()
        cur.execute(
            """
            INSERT INTO stock_mutations (id, date, product_id, product_name, sku, type, amount, note)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                mutation.id,
                mutation.date,
                mutation.product_id,
                mutation.product_name,
                mutation.sku,
                mutation.type.value,
                int(mutation.amount),
                mutation.note,
            ),
        )
        self._wrote(MUTATIONS)

    def put_mutation(self, mutation: StockMutation) -> None:
        cur = self._cur()
        cur.execute(
            """
            INSERT INTO stock_mutations (id, date, product_id, product_name, sku, type, amount, note)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                date=excluded.date, product_id=excluded.product_id, product_name=excluded.product_name,
                sku=excluded.sku, type=excluded.type, amount=excluded.amount, note=excluded.note
            """,
            (
                mutation.id,
                mutation.date,
                mutation.product_id,
                mutation.product_name,
                mutation.sku,
                mutation.type.value,
                int(mutation.amount),
                mutation.note,
            ),
        )
        self._wrote(MUTATIONS)

    # ---------- Settings / usage ----------
    def put_settings(self, settings: StoreSettings) -> None:
        cur = self._cur()
        cur.execute(
            """
            INSERT INTO settings (id, store_name, whatsapp_number, address, cashier_name, tax_rate)
            VALUES (1, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                store_name=excluded.store_name, whatsapp_number=excluded.whatsapp_number,
                address=excluded.address, cashier_name=excluded.cashier_name, tax_rate=excluded.tax_rate
            """,
            (
                settings.store_name,
                settings.whatsapp_number,
                settings.address,
                settings.cashier_name,
                float(settings.tax_rate),
            ),
        )
        self._wrote(SETTINGS)

    def increment_usage(self, uid: str) -> int:
        cur = self._cur()
        cur.execute(
            """
            INSERT INTO usage_counters (uid, count) VALUES (?, 1)
            ON CONFLICT(uid) DO UPDATE SET count = count + 1
            """,
            (str(uid),),
        )
        cur.execute("SELECT count FROM usage_counters WHERE uid=?", (str(uid),))
        count = int(cur.fetchone()[0])
        self._wrote(USAGE)
        return count

    def clear(self, collection: str) -> int:
        tables = {
            PRODUCTS: "products",
            TRANSACTIONS: "transactions",
            MUTATIONS: "stock_mutations",
        }
        if collection not in tables:
            raise ValueError(f"Collection cannot be cleared: {collection}")
        cur = self._cur()
        cur.execute(f"DELETE FROM {tables[collection]}")
        removed = int(cur.rowcount)
        self._wrote(collection)
        return removed
