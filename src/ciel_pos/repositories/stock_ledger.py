from __future__ import annotations

import re
import sqlite3
from typing import Optional

from ciel_pos.domain.enums import Location
from ciel_pos.domain.errors import ConflictError, InsufficientStockError, NotFoundError
from ciel_pos.domain.models import CreatedProduct, NewProduct, Product
from ciel_pos.repositories.sqlite_repo import PRODUCT_COLUMNS, product_from_row

BARCODE_BASE = 1_000_001
PRODUCT_CODE_FALLBACK = "PRD"
PRODUCT_CODE_FILLER = "X"
PRODUCT_CODE_MAX_SEQ = 999

_TRANSLITERATION = str.maketrans({
    "ç": "C", "Ç": "C",
    "ğ": "G", "Ğ": "G",
    "ı": "I", "İ": "I",
    "ö": "O", "Ö": "O",
    "ş": "S", "Ş": "S",
    "ü": "U", "Ü": "U",
})


def product_code_prefix(category: Optional[str]) -> str:
    text = (category or "").strip().translate(_TRANSLITERATION).upper()
    letters = [ch for ch in text if ch.isascii() and ch.isalnum()][:3]
    prefix = "".join(letters).ljust(3, PRODUCT_CODE_FILLER)
    return PRODUCT_CODE_FALLBACK if prefix == PRODUCT_CODE_FILLER * 3 else prefix


def normalize_product_code(code: Optional[str]) -> Optional[str]:
    text = (code or "").strip().upper().replace("-", "")
    return text or None


class StockLedger:
    """Product stock state, read and mutated inside one open transaction."""

    def __init__(self, cur: sqlite3.Cursor):
        self.cur = cur

    def get_product(self, barcode: str) -> Product:
        self.cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE barcode = ?", (str(barcode).strip(),))
        row = self.cur.fetchone()
        if not row:
            raise NotFoundError(f"Product not found: {barcode}")
        return product_from_row(row)

    def require_stock(self, barcode: str, location: Location, qty: int) -> Product:
        product = self.get_product(barcode)
        available = product.stock_at(location)
        if available < qty:
            raise InsufficientStockError(product.barcode, location.label, available, qty)
        return product

    def adjust_location_stock(self, barcode: str, location: Location, delta: int, mirror: bool = True) -> None:
        """Move one location counter by delta, and the legacy total with it unless mirror is off."""
        delta = int(delta)
        if delta < 0:
            self.require_stock(barcode, location, -delta)
        column = location.stock_column
        self.cur.execute(
            f"""
            UPDATE products
            SET {column} = {column} + ?, stock = stock + ?, updated_at = datetime('now','localtime')
            WHERE barcode = ?
            """,
            (delta, delta if mirror else 0, str(barcode).strip()),
        )
        if self.cur.rowcount == 0:
            raise NotFoundError(f"Product not found: {barcode}")

    # ---------- Creation ----------
    def next_barcode(self) -> str:
        self.cur.execute(
            """
            SELECT MAX(CAST(barcode AS INTEGER))
            FROM products
            WHERE barcode <> '' AND barcode NOT GLOB '*[^0-9]*'
            """
        )
        row = self.cur.fetchone()
        current = int(row[0]) if row and row[0] is not None else 0
        return str(max(current + 1, BARCODE_BASE))

    def next_product_code(self, category: Optional[str]) -> str:
        prefix = product_code_prefix(category)
        self.cur.execute(
            "SELECT product_code FROM products WHERE product_code LIKE ?",
            (f"{prefix}%",),
        )
        pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
        highest = 0
        for (code,) in self.cur.fetchall():
            m = pattern.match(str(code or ""))
            if m:
                highest = max(highest, int(m.group(1)))
        seq = highest + 1
        if seq > PRODUCT_CODE_MAX_SEQ:
            raise ConflictError(f"Product code sequence for {prefix} is exhausted.")
        return f"{prefix}{seq:03d}"

    def create(self, product: NewProduct) -> CreatedProduct:
        barcode = (product.barcode or "").strip() or self.next_barcode()
        code = normalize_product_code(product.product_code) or self.next_product_code(product.category)

        self.cur.execute("SELECT 1 FROM products WHERE barcode = ?", (barcode,))
        if self.cur.fetchone():
            raise ConflictError(f"Barcode already exists: {barcode}")

        store_opening = int(product.store_opening)
        warehouse_opening = int(product.warehouse_opening)
        stock = int(product.stock) if product.stock is not None else store_opening + warehouse_opening

        self.cur.execute(
            """
            INSERT INTO products (
                barcode, product_code, name, category, color, size, buy_price, sell_price,
                stock, store_opening, warehouse_opening, store_stock, warehouse_stock, is_active
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (
                barcode,
                code,
                product.name,
                product.category,
                product.color,
                product.size,
                float(product.buy_price),
                float(product.sell_price),
                stock,
                store_opening,
                warehouse_opening,
                store_opening,
                warehouse_opening,
            ),
        )
        return CreatedProduct(barcode=barcode, product_code=code)
