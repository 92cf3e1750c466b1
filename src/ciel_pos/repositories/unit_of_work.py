from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from ciel_pos.domain.enums import Location, PaymentMethod, ReturnMode
from ciel_pos.domain.errors import IntegrityError
from ciel_pos.repositories.stock_ledger import StockLedger

log = logging.getLogger(__name__)

_GROUP_TABLES = {
    "S": ("sales", "sale_group_id"),
    "R": ("returns", "return_group_id"),
    "E": ("returns", "return_group_id"),
    "T": ("transfers", "transfer_group_id"),
}


def now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


@dataclass(frozen=True)
class OpenSaleLine:
    sale_id: int
    barcode: str
    qty: int
    sold_from: Location


@dataclass(frozen=True)
class OpenTransferLine:
    barcode: str
    qty: int
    from_loc: Location
    to_loc: Location


@dataclass(frozen=True)
class RefSaleLine:
    sale_id: int
    qty: int
    sold_at: str
    sold_from: str


class UnitOfWork(Protocol):
    ledger: StockLedger

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


@dataclass
class RepositoryUnitOfWork:
    """One write transaction against the repository's database.

    Takes the datastore write lock on entry (BEGIN IMMEDIATE), commits on a
    clean exit and rolls back on any exception. Every read done through it
    sees the transaction's own writes.
    """

    repo: object
    conn: Optional[sqlite3.Connection] = field(default=None, init=False)
    cur: Optional[sqlite3.Cursor] = field(default=None, init=False)
    ledger: Optional[StockLedger] = field(default=None, init=False)

    def __enter__(self) -> "RepositoryUnitOfWork":
        self.conn = self.repo.connect()
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            self.conn.close()
            raise IntegrityError(f"Could not start transaction: {exc}") from exc
        self.cur = self.conn.cursor()
        self.ledger = StockLedger(self.cur)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                try:
                    self.conn.execute("COMMIT")
                except sqlite3.Error as commit_exc:
                    self._rollback()
                    raise IntegrityError(f"Commit failed: {commit_exc}") from commit_exc
            else:
                self._rollback()
        finally:
            self.conn.close()
        if exc_type is not None and issubclass(exc_type, sqlite3.Error):
            raise IntegrityError(str(exc)) from exc

    def _rollback(self) -> None:
        # the caller is already failing; its error is the one to report
        try:
            self.conn.execute("ROLLBACK")
        except sqlite3.Error:
            log.exception("rollback_failed")

    # ---------- Ids ----------
    def new_group_id(self, prefix: str) -> str:
        """prefix + epoch milliseconds, bumped until unused."""
        table, column = _GROUP_TABLES[prefix]
        millis = int(time.time() * 1000)
        while True:
            candidate = f"{prefix}{millis}"
            self.cur.execute(f"SELECT 1 FROM {table} WHERE {column} = ? LIMIT 1", (candidate,))
            if not self.cur.fetchone():
                return candidate
            millis += 1

    # ---------- Sales ----------
    def insert_sale_line(
        self,
        group_id: str,
        barcode: str,
        qty: int,
        list_price: float,
        discount_amount: float,
        unit_price: float,
        sold_from: Location,
        payment_method: PaymentMethod,
        sold_at: str,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO sales (
                sale_group_id, product_barcode, qty, list_price, discount_amount, unit_price, total,
                sold_from, payment_method, voided, sold_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (
                group_id,
                barcode,
                int(qty),
                float(list_price),
                float(discount_amount),
                float(unit_price),
                float(unit_price) * int(qty),
                sold_from.value,
                payment_method.value,
                sold_at,
            ),
        )
        return int(self.cur.lastrowid)

    def last_open_sale_group(self) -> Optional[str]:
        self.cur.execute(
            """
            SELECT sale_group_id FROM sales
            WHERE COALESCE(voided, 0) = 0
            ORDER BY id DESC
            LIMIT 1
            """
        )
        row = self.cur.fetchone()
        return str(row[0]) if row else None

    def sale_group_lines(self, group_id: str) -> list[OpenSaleLine]:
        self.cur.execute(
            """
            SELECT id, product_barcode, qty, sold_from FROM sales
            WHERE sale_group_id = ? AND COALESCE(voided, 0) = 0
            ORDER BY id
            """,
            (group_id,),
        )
        return [OpenSaleLine(int(r[0]), str(r[1]), int(r[2]), Location.parse(r[3])) for r in self.cur.fetchall()]

    def sale_group_has_returns(self, group_id: str) -> bool:
        self.cur.execute(
            """
            SELECT 1 FROM return_items ri
            JOIN sales s ON s.id = ri.ref_sale_id
            WHERE s.sale_group_id = ?
            LIMIT 1
            """,
            (group_id,),
        )
        return self.cur.fetchone() is not None

    def delete_sale_group(self, group_id: str) -> int:
        self.cur.execute("DELETE FROM sales WHERE sale_group_id = ?", (group_id,))
        return int(self.cur.rowcount)

    # ---------- Returns ----------
    def find_ref_sale_line(
        self, barcode: str, sold_at: Optional[str], sale_id: Optional[int] = None
    ) -> Optional[RefSaleLine]:
        if sale_id is not None:
            self.cur.execute(
                """
                SELECT id, qty, sold_at, sold_from FROM sales
                WHERE id = ? AND TRIM(product_barcode) = ? AND COALESCE(voided, 0) = 0
                """,
                (int(sale_id), barcode),
            )
        elif sold_at:
            self.cur.execute(
                """
                SELECT id, qty, sold_at, sold_from FROM sales
                WHERE TRIM(product_barcode) = ? AND sold_at = ? AND COALESCE(voided, 0) = 0
                ORDER BY id DESC
                LIMIT 1
                """,
                (barcode, sold_at.strip()),
            )
        else:
            return None
        row = self.cur.fetchone()
        return RefSaleLine(int(row[0]), int(row[1]), str(row[2]), str(row[3])) if row else None

    def refunded_qty(self, sale_id: int) -> int:
        self.cur.execute(
            "SELECT COALESCE(SUM(qty), 0) FROM return_items WHERE ref_sale_id = ?",
            (int(sale_id),),
        )
        return int(self.cur.fetchone()[0])

    def insert_return_group(
        self,
        group_id: str,
        mode: ReturnMode,
        returned_total: float,
        given_total: float,
        diff: float,
        diff_payment_method: Optional[PaymentMethod],
        created_at: str,
    ) -> None:
        self.cur.execute(
            """
            INSERT INTO returns (
                return_group_id, mode, returned_total, given_total, diff, diff_payment_method, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                group_id,
                mode.value,
                float(returned_total),
                float(given_total),
                float(diff),
                diff_payment_method.value if diff_payment_method else None,
                created_at,
            ),
        )

    def insert_return_line(
        self,
        group_id: str,
        barcode: str,
        qty: int,
        unit_price: float,
        return_to: Location,
        ref: Optional[RefSaleLine],
        ref_sold_at: Optional[str],
        ref_sold_from: Optional[str],
        created_at: str,
    ) -> None:
        self.cur.execute(
            """
            INSERT INTO return_items (
                return_group_id, product_barcode, qty, unit_price, total, return_to,
                ref_sale_id, ref_sold_at, ref_sold_from, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                group_id,
                barcode,
                int(qty),
                float(unit_price),
                float(unit_price) * int(qty),
                return_to.value,
                ref.sale_id if ref else None,
                ref.sold_at if ref else ref_sold_at,
                ref.sold_from if ref else ref_sold_from,
                created_at,
            ),
        )

    def insert_exchange_line(
        self, group_id: str, barcode: str, qty: int, unit_price: float, sold_from: Location, created_at: str
    ) -> None:
        self.cur.execute(
            """
            INSERT INTO exchange_items (
                exchange_group_id, product_barcode, qty, unit_price, total, sold_from, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (group_id, barcode, int(qty), float(unit_price), float(unit_price) * int(qty), sold_from.value, created_at),
        )

    def delete_return_group(self, group_id: str) -> int:
        self.cur.execute("DELETE FROM returns WHERE return_group_id = ?", (group_id,))
        return int(self.cur.rowcount)

    # ---------- Transfers ----------
    def insert_transfer(
        self,
        group_id: str,
        barcode: str,
        qty: int,
        from_loc: Location,
        to_loc: Location,
        note: Optional[str],
        transferred_at: str,
    ) -> None:
        self.cur.execute(
            """
            INSERT INTO transfers (
                transfer_group_id, product_barcode, qty, from_loc, to_loc, note, transferred_at, voided
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, 0)
            """,
            (group_id, barcode, int(qty), from_loc.value, to_loc.value, note, transferred_at),
        )

    def last_open_transfer_group(self) -> Optional[str]:
        self.cur.execute(
            """
            SELECT transfer_group_id FROM transfers
            WHERE COALESCE(voided, 0) = 0
            ORDER BY id DESC
            LIMIT 1
            """
        )
        row = self.cur.fetchone()
        return str(row[0]) if row else None

    def transfer_group_lines(self, group_id: str) -> list[OpenTransferLine]:
        self.cur.execute(
            """
            SELECT product_barcode, qty, from_loc, to_loc FROM transfers
            WHERE transfer_group_id = ? AND COALESCE(voided, 0) = 0
            ORDER BY id
            """,
            (group_id,),
        )
        return [
            OpenTransferLine(str(r[0]), int(r[1]), Location.parse(r[2]), Location.parse(r[3]))
            for r in self.cur.fetchall()
        ]

    def void_transfer_group(self, group_id: str) -> int:
        self.cur.execute(
            "UPDATE transfers SET voided = 1 WHERE transfer_group_id = ? AND COALESCE(voided, 0) = 0",
            (group_id,),
        )
        return int(self.cur.rowcount)
