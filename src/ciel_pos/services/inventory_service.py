from __future__ import annotations

import logging
import math
from typing import Callable, Optional

from ciel_pos.domain.errors import NotFoundError, ValidationError
from ciel_pos.domain.models import CreatedProduct, NewProduct, Product
from ciel_pos.repositories.stock_ledger import normalize_product_code
from ciel_pos.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger("ciel_pos.stock")

MAX_NAME_LENGTH = 200


def _clean(text: Optional[str]) -> Optional[str]:
    text = (text or "").strip()
    return text or None


def _price(value, label: str) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a number.") from e
    if not math.isfinite(price) or price < 0:
        raise ValidationError(f"{label} must be >= 0.")
    return price


class InventoryService:
    def __init__(self, repo, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def find_product(self, barcode: str) -> Optional[Product]:
        return self.repo.get_product(barcode)

    def get_product(self, barcode: str) -> Product:
        p = self.repo.get_product(barcode)
        if not p:
            raise NotFoundError(f"Product not found: {barcode}")
        return p

    def add_product(self, product: NewProduct) -> CreatedProduct:
        name = (product.name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters.")
        if int(product.store_opening) < 0 or int(product.warehouse_opening) < 0:
            raise ValidationError("Opening stock values must be >= 0.")
        if product.stock is not None and int(product.stock) < 0:
            raise ValidationError("Stock must be >= 0.")

        cleaned = NewProduct(
            name=name,
            barcode=_clean(product.barcode),
            product_code=_clean(product.product_code),
            category=_clean(product.category),
            color=_clean(product.color),
            size=_clean(product.size),
            buy_price=_price(product.buy_price, "Buy price"),
            sell_price=_price(product.sell_price, "Sell price"),
            store_opening=int(product.store_opening),
            warehouse_opening=int(product.warehouse_opening),
            stock=product.stock,
        )
        with self.uow_factory() as uow:
            created = uow.ledger.create(cleaned)
        log.info("product_created barcode=%s product_code=%s", created.barcode, created.product_code)
        return created

    def update_product(
        self,
        barcode: str,
        name: str,
        buy_price: float,
        sell_price: float,
        product_code: Optional[str] = None,
        category: Optional[str] = None,
        color: Optional[str] = None,
        size: Optional[str] = None,
    ) -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters.")
        changed = self.repo.update_product(
            (barcode or "").strip(),
            name,
            normalize_product_code(product_code),
            _clean(category),
            _clean(color),
            _clean(size),
            _price(buy_price, "Buy price"),
            _price(sell_price, "Sell price"),
        )
        if not changed:
            raise NotFoundError(f"Product not found: {barcode}")
        return changed

    def delete_product(self, barcode: str) -> str:
        outcome = self.repo.delete_product((barcode or "").strip())
        if outcome == "missing":
            raise NotFoundError(f"Product not found: {barcode}")
        log.info("product_deleted barcode=%s outcome=%s", barcode, outcome)
        return outcome
