from __future__ import annotations

import shutil
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from ciel_pos.domain.models import (
    BucketTotals,
    Expense,
    Product,
    ReturnGroup,
    SaleGroupRow,
    SaleLine,
    SaleLineRow,
    TransferRecord,
)

PRODUCT_COLUMNS = """
    barcode, product_code, name, category, color, size, buy_price, sell_price,
    stock, store_stock, warehouse_stock, store_opening, warehouse_opening, is_active
"""

# A sale line counts towards revenue while it is active, or when an exchange
# absorbed it (the exchange only layers its price difference on top).
REVENUE_SALE_CONDITION = """(
    COALESCE(s.voided, 0) = 0
    OR EXISTS (
        SELECT 1
        FROM return_items ri
        JOIN returns r ON r.return_group_id = ri.return_group_id
        WHERE r.mode = 'EXCHANGE' AND ri.ref_sale_id = s.id
    )
)"""


def product_from_row(r) -> Product:
    return Product(
        barcode=str(r[0]),
        product_code=r[1],
        name=str(r[2]),
        category=r[3],
        color=r[4],
        size=r[5],
        buy_price=float(r[6] or 0),
        sell_price=float(r[7] or 0),
        stock=int(r[8] or 0),
        store_stock=int(r[9] or 0),
        warehouse_stock=int(r[10] or 0),
        store_opening=int(r[11] or 0),
        warehouse_opening=int(r[12] or 0),
        is_active=int(r[13] if r[13] is not None else 1),
    )


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def connect(self) -> sqlite3.Connection:
        """Connection for a write transaction, managed explicitly by the caller."""
        conn = self._conn()
        conn.isolation_level = None
        return conn

    def init_db(self) -> None:
        self.run_migrations()
        conn = self._conn()
        try:
            conn.execute("PRAGMA journal_mode = WAL;")
        finally:
            conn.close()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_returns_cleanup),
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
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def schema_version(self) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
        version = int(cur.fetchone()[0])
        conn.close()
        return version

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS products (
            barcode TEXT PRIMARY KEY,
            product_code TEXT,
            name TEXT NOT NULL,
            category TEXT,
            color TEXT,
            size TEXT,
            buy_price REAL NOT NULL DEFAULT 0,
            sell_price REAL NOT NULL DEFAULT 0,
            stock INTEGER NOT NULL DEFAULT 0,
            store_opening INTEGER NOT NULL DEFAULT 0,
            warehouse_opening INTEGER NOT NULL DEFAULT 0,
            store_stock INTEGER NOT NULL DEFAULT 0 CHECK(store_stock >= 0),
            warehouse_stock INTEGER NOT NULL DEFAULT 0 CHECK(warehouse_stock >= 0),
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sales (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sale_group_id TEXT NOT NULL,
            product_barcode TEXT NOT NULL,
            qty INTEGER NOT NULL CHECK(qty > 0),
            list_price REAL NOT NULL DEFAULT 0,
            discount_amount REAL NOT NULL DEFAULT 0,
            unit_price REAL NOT NULL,
            total REAL NOT NULL,
            sold_from TEXT NOT NULL CHECK(sold_from IN ('STORE','WAREHOUSE')),
            payment_method TEXT NOT NULL DEFAULT 'CARD' CHECK(payment_method IN ('CARD','CASH','TRANSFER')),
            voided INTEGER NOT NULL DEFAULT 0,
            sold_at TEXT NOT NULL,
            note TEXT,
            FOREIGN KEY(product_barcode) REFERENCES products(barcode) ON DELETE RESTRICT
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS expenses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            amount REAL NOT NULL CHECK(amount > 0),
            spent_at TEXT NOT NULL,
            period TEXT,
            category TEXT,
            note TEXT
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS transfers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            transfer_group_id TEXT NOT NULL,
            product_barcode TEXT NOT NULL,
            qty INTEGER NOT NULL CHECK(qty > 0),
            from_loc TEXT NOT NULL CHECK(from_loc IN ('STORE','WAREHOUSE')),
            to_loc TEXT NOT NULL CHECK(to_loc IN ('STORE','WAREHOUSE')),
            note TEXT,
            transferred_at TEXT NOT NULL,
            voided INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(product_barcode) REFERENCES products(barcode) ON DELETE RESTRICT
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS returns (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            return_group_id TEXT NOT NULL UNIQUE,
            mode TEXT NOT NULL CHECK(mode IN ('REFUND','EXCHANGE')),
            returned_total REAL NOT NULL DEFAULT 0,
            given_total REAL NOT NULL DEFAULT 0,
            diff REAL NOT NULL DEFAULT 0,
            diff_payment_method TEXT CHECK(diff_payment_method IS NULL OR diff_payment_method IN ('CARD','CASH')),
            created_at TEXT NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS return_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            return_group_id TEXT NOT NULL,
            product_barcode TEXT NOT NULL,
            qty INTEGER NOT NULL CHECK(qty > 0),
            unit_price REAL NOT NULL,
            total REAL NOT NULL,
            return_to TEXT NOT NULL CHECK(return_to IN ('STORE','WAREHOUSE')),
            ref_sale_id INTEGER,
            ref_sold_at TEXT,
            ref_sold_from TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(product_barcode) REFERENCES products(barcode) ON DELETE RESTRICT
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS exchange_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            exchange_group_id TEXT NOT NULL,
            product_barcode TEXT NOT NULL,
            qty INTEGER NOT NULL CHECK(qty > 0),
            unit_price REAL NOT NULL,
            total REAL NOT NULL,
            sold_from TEXT NOT NULL CHECK(sold_from IN ('STORE','WAREHOUSE')),
            created_at TEXT NOT NULL,
            FOREIGN KEY(product_barcode) REFERENCES products(barcode) ON DELETE RESTRICT
        )
        """
        )

        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_group ON sales(sale_group_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_barcode_sold_at ON sales(product_barcode, sold_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_return_items_ref ON return_items(ref_sale_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_return_items_group ON return_items(return_group_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_exchange_items_group ON exchange_items(exchange_group_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_transfers_group ON transfers(transfer_group_id)")

    def _migration_v2_returns_cleanup(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_returns_delete_items
            AFTER DELETE ON returns
            BEGIN
                DELETE FROM return_items WHERE return_group_id = OLD.return_group_id;
                DELETE FROM exchange_items WHERE exchange_group_id = OLD.return_group_id;
            END
            """
        )

    # ---------- Products ----------
    def get_product(self, barcode: str) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE barcode = ?", (str(barcode).strip(),))
        row = cur.fetchone()
        conn.close()
        return product_from_row(row) if row else None

    def list_products(self) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {PRODUCT_COLUMNS}
            FROM products
            WHERE is_active = 1
            ORDER BY CAST(barcode AS INTEGER), barcode
            """
        )
        rows = cur.fetchall()
        conn.close()
        return [product_from_row(r) for r in rows]

    def update_product(
        self,
        barcode: str,
        name: str,
        product_code: Optional[str],
        category: Optional[str],
        color: Optional[str],
        size: Optional[str],
        buy_price: float,
        sell_price: float,
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE products
            SET name=?, product_code=COALESCE(?, product_code), category=?, color=?, size=?,
                buy_price=?, sell_price=?, updated_at=datetime('now','localtime')
            WHERE barcode=?
            """,
            (name, product_code, category, color, size, float(buy_price), float(sell_price), barcode),
        )
        changed = int(cur.rowcount)
        conn.commit()
        conn.close()
        return changed

    def delete_product(self, barcode: str) -> str:
        """Hard delete, or deactivate and zero the counters when history references it.

        Returns "deleted", "deactivated" or "missing".
        """
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("DELETE FROM products WHERE barcode=?", (barcode,))
            outcome = "deleted" if cur.rowcount else "missing"
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            cur.execute(
                """
                UPDATE products
                SET is_active=0, stock=0, store_stock=0, warehouse_stock=0,
                    updated_at=datetime('now','localtime')
                WHERE barcode=?
                """,
                (barcode,),
            )
            outcome = "deactivated" if cur.rowcount else "missing"
            conn.commit()
        finally:
            conn.close()
        return outcome

    # ---------- Sales ----------
    def list_sales_by_barcode(self, barcode: str, since_iso: str) -> list[SaleLine]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT s.id, s.sold_at, s.qty, s.unit_price, s.total, s.sold_from,
                   COALESCE((SELECT SUM(ri.qty) FROM return_items ri WHERE ri.ref_sale_id = s.id), 0)
            FROM sales s
            WHERE TRIM(s.product_barcode) = ?
              AND COALESCE(s.voided, 0) = 0
              AND s.sold_at >= ?
            ORDER BY s.sold_at DESC, s.id DESC
            """,
            (str(barcode).strip(), since_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            SaleLine(
                sale_id=int(r[0]),
                sold_at=str(r[1]),
                qty=int(r[2]),
                unit_price=float(r[3]),
                total=float(r[4]),
                sold_from=str(r[5]),
                refunded_qty=int(r[6]),
            )
            for r in rows
        ]

    def list_sale_groups(self, since_iso: str, search: Optional[str] = None) -> list[SaleGroupRow]:
        like = f"%{search.strip()}%" if search and search.strip() else None
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT s.sale_group_id, MAX(s.sold_at), SUM(s.qty), SUM(s.total), MAX(s.payment_method)
            FROM sales s
            WHERE COALESCE(s.voided, 0) = 0
              AND s.sold_at >= ?
              AND (? IS NULL OR EXISTS (
                  SELECT 1 FROM sales s2
                  LEFT JOIN products p2 ON p2.barcode = s2.product_barcode
                  WHERE s2.sale_group_id = s.sale_group_id
                    AND (s2.product_barcode LIKE ? OR p2.name LIKE ?)
              ))
            GROUP BY s.sale_group_id
            """,
            (since_iso, like, like, like),
        )
        sale_rows = cur.fetchall()
        cur.execute(
            """
            SELECT ei.exchange_group_id, MAX(ei.created_at), SUM(ei.qty), SUM(ei.total),
                   COALESCE(MAX(r.diff_payment_method), 'CARD')
            FROM exchange_items ei
            JOIN returns r ON r.return_group_id = ei.exchange_group_id
            WHERE ei.created_at >= ?
              AND (? IS NULL OR EXISTS (
                  SELECT 1 FROM exchange_items ei2
                  LEFT JOIN products p2 ON p2.barcode = ei2.product_barcode
                  WHERE ei2.exchange_group_id = r.return_group_id
                    AND (ei2.product_barcode LIKE ? OR p2.name LIKE ?)
              ))
            GROUP BY ei.exchange_group_id
            """,
            (since_iso, like, like, like),
        )
        exchange_rows = cur.fetchall()
        conn.close()

        out = [
            SaleGroupRow(str(r[0]), str(r[1]), int(r[2]), float(r[3]), str(r[4]), "SALE")
            for r in sale_rows
        ]
        out.extend(
            SaleGroupRow(str(r[0]), str(r[1]), int(r[2]), float(r[3]), str(r[4]), "EXCHANGE")
            for r in exchange_rows
        )
        out.sort(key=lambda g: (g.sold_at, g.group_id), reverse=True)
        return out

    def list_sale_lines_for_group(self, group_id: str) -> list[SaleLineRow]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT s.id, s.sale_group_id, s.product_barcode, p.name, s.qty, s.unit_price, s.total,
                   s.sold_from, s.sold_at,
                   COALESCE((SELECT SUM(ri.qty) FROM return_items ri WHERE ri.ref_sale_id = s.id), 0),
                   EXISTS (
                       SELECT 1 FROM return_items ri
                       WHERE ri.ref_sale_id = s.id AND ri.return_group_id LIKE 'E%'
                   ),
                   s.list_price, s.discount_amount, COALESCE(s.payment_method, 'CARD')
            FROM sales s
            LEFT JOIN products p ON p.barcode = s.product_barcode
            WHERE s.sale_group_id = ?
            ORDER BY s.id
            """,
            (group_id,),
        )
        rows = cur.fetchall()
        conn.close()
        out = []
        for r in rows:
            refunded = int(r[9])
            if int(r[10]):
                kind = "EXCHANGE"
            elif refunded > 0:
                kind = "REFUND"
            else:
                kind = None
            out.append(
                SaleLineRow(
                    line_id=int(r[0]),
                    group_id=str(r[1]),
                    barcode=str(r[2]),
                    name=r[3],
                    qty=int(r[4]),
                    unit_price=float(r[5]),
                    total=float(r[6]),
                    sold_from=str(r[7]),
                    sold_at=str(r[8]),
                    refunded_qty=refunded,
                    refund_kind=kind,
                    list_price=float(r[11] or 0),
                    discount_amount=float(r[12] or 0),
                    payment_method=str(r[13]),
                )
            )
        return out

    def list_exchange_lines_for_group(self, group_id: str) -> list[SaleLineRow]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT ei.id, ei.exchange_group_id, ei.product_barcode, p.name, ei.qty, ei.unit_price,
                   ei.total, ei.sold_from, ei.created_at, COALESCE(r.diff_payment_method, 'CARD')
            FROM exchange_items ei
            JOIN returns r ON r.return_group_id = ei.exchange_group_id
            LEFT JOIN products p ON p.barcode = ei.product_barcode
            WHERE ei.exchange_group_id = ?
            ORDER BY ei.id
            """,
            (group_id,),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            SaleLineRow(
                line_id=int(r[0]),
                group_id=str(r[1]),
                barcode=str(r[2]),
                name=r[3],
                qty=int(r[4]),
                unit_price=float(r[5]),
                total=float(r[6]),
                sold_from=str(r[7]),
                sold_at=str(r[8]),
                refund_kind="EXCHANGE",
                list_price=float(r[5]),
                payment_method=str(r[9]),
            )
            for r in rows
        ]

    # ---------- Returns / transfers ----------
    def list_return_groups(self, since_iso: str) -> list[ReturnGroup]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT return_group_id, mode, returned_total, given_total, diff, diff_payment_method, created_at
            FROM returns
            WHERE created_at >= ?
            ORDER BY created_at DESC, id DESC
            """,
            (since_iso,),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            ReturnGroup(str(r[0]), str(r[1]), float(r[2]), float(r[3]), float(r[4]), r[5], str(r[6]))
            for r in rows
        ]

    def count_return_lines(self, group_id: str) -> tuple[int, int]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM return_items WHERE return_group_id=?", (group_id,))
        returned = int(cur.fetchone()[0])
        cur.execute("SELECT COUNT(*) FROM exchange_items WHERE exchange_group_id=?", (group_id,))
        given = int(cur.fetchone()[0])
        conn.close()
        return returned, given

    def list_transfers(self, since_iso: str) -> list[TransferRecord]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, transfer_group_id, product_barcode, qty, from_loc, to_loc, note, transferred_at, voided
            FROM transfers
            WHERE transferred_at >= ?
            ORDER BY id DESC
            """,
            (since_iso,),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            TransferRecord(
                id=int(r[0]),
                transfer_group_id=str(r[1]),
                barcode=str(r[2]),
                qty=int(r[3]),
                from_loc=str(r[4]),
                to_loc=str(r[5]),
                note=r[6],
                transferred_at=str(r[7]),
                voided=int(r[8]),
            )
            for r in rows
        ]

    # ---------- Expenses ----------
    def add_expense(
        self,
        title: str,
        amount: float,
        spent_at: str,
        period: Optional[str],
        category: Optional[str],
        note: Optional[str],
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO expenses (title, amount, spent_at, period, category, note)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (title, float(amount), spent_at, period, category, note),
        )
        expense_id = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return expense_id

    def list_expenses(self) -> list[Expense]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, title, amount, spent_at, period, category, note
            FROM expenses
            ORDER BY spent_at DESC, id DESC
            """
        )
        rows = cur.fetchall()
        conn.close()
        return [Expense(int(r[0]), str(r[1]), float(r[2]), str(r[3]), r[4], r[5], r[6]) for r in rows]

    def delete_expense(self, expense_id: int) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM expenses WHERE id=?", (int(expense_id),))
        changed = int(cur.rowcount)
        conn.commit()
        conn.close()
        return changed

    # ---------- Reporting ----------
    def dashboard_buckets(self, fmt: str, since_iso: str) -> dict[str, BucketTotals]:
        """Sum every dashboard input per strftime(fmt) bucket, from since_iso on."""
        buckets: dict[str, BucketTotals] = {}

        def bucket(key) -> BucketTotals:
            return buckets.setdefault(str(key), BucketTotals())

        conn = self._conn()
        cur = conn.cursor()

        cur.execute(
            """
            SELECT strftime(?, s.sold_at) AS k,
                   COALESCE(SUM(s.qty), 0),
                   COALESCE(SUM((s.unit_price - COALESCE(p.buy_price, 0)) * s.qty), 0)
            FROM sales s
            LEFT JOIN products p ON p.barcode = s.product_barcode
            WHERE COALESCE(s.voided, 0) = 0 AND s.sold_at >= ?
            GROUP BY k
            """,
            (fmt, since_iso),
        )
        for k, qty, profit in cur.fetchall():
            b = bucket(k)
            b.sales_qty = int(qty)
            b.sales_profit = float(profit)

        cur.execute(
            f"""
            SELECT strftime(?, s.sold_at) AS k,
                   COALESCE(SUM(s.total), 0),
                   COUNT(DISTINCT s.sale_group_id)
            FROM sales s
            WHERE {REVENUE_SALE_CONDITION} AND s.sold_at >= ?
            GROUP BY k
            """,
            (fmt, since_iso),
        )
        for k, total, receipts in cur.fetchall():
            b = bucket(k)
            b.sales_total = float(total)
            b.receipts = int(receipts)

        cur.execute(
            """
            SELECT strftime(?, r.created_at) AS k,
                   COALESCE(SUM(ei.qty), 0),
                   COALESCE(SUM((ei.unit_price - COALESCE(p.buy_price, 0)) * ei.qty), 0)
            FROM exchange_items ei
            JOIN returns r ON r.return_group_id = ei.exchange_group_id
            LEFT JOIN products p ON p.barcode = ei.product_barcode
            WHERE r.mode = 'EXCHANGE' AND r.created_at >= ?
            GROUP BY k
            """,
            (fmt, since_iso),
        )
        for k, qty, profit in cur.fetchall():
            b = bucket(k)
            b.exchange_qty = int(qty)
            b.exchange_profit = float(profit)

        cur.execute(
            """
            SELECT strftime(?, r.created_at) AS k,
                   COALESCE(SUM(ri.qty), 0),
                   COALESCE(SUM((ri.unit_price - COALESCE(p.buy_price, 0)) * ri.qty), 0)
            FROM return_items ri
            JOIN returns r ON r.return_group_id = ri.return_group_id
            LEFT JOIN products p ON p.barcode = ri.product_barcode
            WHERE r.mode = 'REFUND' AND r.created_at >= ?
            GROUP BY k
            """,
            (fmt, since_iso),
        )
        for k, qty, profit in cur.fetchall():
            b = bucket(k)
            b.refund_qty = int(qty)
            b.refund_profit = float(profit)

        cur.execute(
            """
            SELECT strftime(?, created_at) AS k, COALESCE(SUM(diff), 0)
            FROM returns
            WHERE created_at >= ?
            GROUP BY k
            """,
            (fmt, since_iso),
        )
        for k, diff in cur.fetchall():
            bucket(k).return_diff = float(diff)

        cur.execute(
            """
            SELECT strftime(?, spent_at) AS k, COALESCE(SUM(amount), 0)
            FROM expenses
            WHERE spent_at >= ?
            GROUP BY k
            """,
            (fmt, since_iso),
        )
        for k, amount in cur.fetchall():
            bucket(k).expense = float(amount)

        conn.close()
        buckets.pop("None", None)
        return buckets

    def cash_sales_by_day(self, since_day: str) -> list[tuple[str, str, float]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT date(s.sold_at) AS d, COALESCE(s.payment_method, 'CARD') AS pm, SUM(s.total)
            FROM sales s
            WHERE {REVENUE_SALE_CONDITION} AND date(s.sold_at) >= ?
            GROUP BY d, pm
            """,
            (since_day,),
        )
        rows = cur.fetchall()
        conn.close()
        return [(str(r[0]), str(r[1]), float(r[2] or 0)) for r in rows]

    def refund_totals_by_day(self, since_day: str) -> list[tuple[str, float]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT date(created_at) AS d, SUM(COALESCE(returned_total, 0))
            FROM returns
            WHERE mode = 'REFUND' AND date(created_at) >= ?
            GROUP BY d
            """,
            (since_day,),
        )
        rows = cur.fetchall()
        conn.close()
        return [(str(r[0]), float(r[1] or 0)) for r in rows]

    def exchange_diffs_by_day(self, since_day: str) -> list[tuple[str, str, float]]:
        """Exchange differences per day and payment method, positive and negative separately."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT date(created_at) AS d, COALESCE(diff_payment_method, 'CARD') AS pm, SUM(diff)
            FROM returns
            WHERE mode = 'EXCHANGE' AND diff > 0 AND date(created_at) >= ?
            GROUP BY d, pm
            UNION ALL
            SELECT date(created_at) AS d, 'CASH' AS pm, SUM(diff)
            FROM returns
            WHERE mode = 'EXCHANGE' AND diff < 0 AND date(created_at) >= ?
            GROUP BY d
            """,
            (since_day, since_day),
        )
        rows = cur.fetchall()
        conn.close()
        return [(str(r[0]), str(r[1]), float(r[2] or 0)) for r in rows]

    # ---------- Maintenance ----------
    def integrity_check(self) -> str:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("PRAGMA integrity_check")
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else "unknown"
