from __future__ import annotations

import logging
from collections import Counter
from datetime import date, timedelta
from typing import Callable, Iterable, Optional

from ciel_pos.domain.enums import Location, PaymentMethod, finite_or_zero
from ciel_pos.domain.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ciel_pos.domain.models import SaleGroupRow, SaleItem, SaleLine, SaleLineRow, SaleResult, UndoResult
from ciel_pos.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork, now_iso

log = logging.getLogger("ciel_pos.sales")


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def since_days(days: int, today: Optional[date] = None) -> str:
    return ((today or date.today()) - timedelta(days=int(days))).isoformat()


class SalesService:
    def __init__(self, repo, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def create_sale(
        self,
        items: Iterable[SaleItem],
        default_location: Location | str | None = None,
        payment_method: PaymentMethod | str | None = None,
    ) -> SaleResult:
        """Commit one basket as a single receipt.

        Quantities are aggregated per (barcode, location) and every aggregate is
        checked before any stock moves, so an under-stocked line leaves the
        whole basket untouched.
        """
        items = list(items)
        if not items:
            raise ValidationError("Cart is empty.")

        default_loc = Location.parse(default_location)
        payment = PaymentMethod.parse(payment_method)

        lines = []
        qty_by_key: Counter[tuple[str, Location]] = Counter()
        for it in items:
            barcode = (it.barcode or "").strip()
            if not barcode:
                raise ValidationError("Barcode is required.")
            qty = int(it.qty) if int(it.qty) > 0 else 1
            location = Location.parse(it.location, default=default_loc)
            unit_price = finite_or_zero(it.unit_price)
            list_price = finite_or_zero(it.list_price if it.list_price is not None else it.unit_price)
            discount = finite_or_zero(it.discount_amount)
            lines.append((barcode, qty, location, unit_price, list_price, discount))
            qty_by_key[(barcode, location)] += qty

        try:
            with self.uow_factory() as uow:
                for (barcode, location), qty in qty_by_key.items():
                    uow.ledger.require_stock(barcode, location, qty)

                group_id = uow.new_group_id("S")
                sold_at = now_iso()
                total = 0.0
                for barcode, qty, location, unit_price, list_price, discount in lines:
                    uow.ledger.adjust_location_stock(barcode, location, -qty)
                    uow.insert_sale_line(
                        group_id, barcode, qty, list_price, discount, unit_price, location, payment, sold_at
                    )
                    total += unit_price * qty
        except InsufficientStockError as e:
            log.warning(
                "sale_rejected barcode=%s location=%s available=%s requested=%s",
                e.barcode, e.location, e.available, e.requested,
            )
            raise

        log.info(
            "sale_created sale_group_id=%s lines=%s total=%.2f payment=%s",
            group_id, len(lines), total, payment.value,
        )
        return SaleResult(sale_group_id=group_id, total=total, line_count=len(lines))

    def undo_last_sale(self) -> UndoResult:
        with self.uow_factory() as uow:
            group_id = uow.last_open_sale_group()
            if not group_id:
                raise NotFoundError("No sale to undo.")
            if uow.sale_group_has_returns(group_id):
                raise ConflictError(f"Sale {group_id} already has returns and cannot be undone.")

            lines = uow.sale_group_lines(group_id)
            for line in lines:
                uow.ledger.adjust_location_stock(line.barcode, line.sold_from, line.qty)
            uow.delete_sale_group(group_id)

        log.info("sale_undone sale_group_id=%s lines=%s", group_id, len(lines))
        return UndoResult(group_id=group_id, restored_line_count=len(lines))

    def list_sales_by_barcode(self, barcode: str, days: int = 30, today: Optional[date] = None) -> list[SaleLine]:
        barcode = (barcode or "").strip()
        if not barcode:
            raise ValidationError("Barcode is required.")
        return self.repo.list_sales_by_barcode(barcode, since_days(clamp(days, 1, 3650), today))

    def list_sale_groups(
        self, days: int = 30, search: Optional[str] = None, today: Optional[date] = None
    ) -> list[SaleGroupRow]:
        return self.repo.list_sale_groups(since_days(clamp(days, 1, 365), today), search)

    def list_sales_by_group(self, group_id: str) -> list[SaleLineRow]:
        group_id = (group_id or "").strip()
        if group_id.startswith("S"):
            return self.repo.list_sale_lines_for_group(group_id)
        if group_id.startswith("E"):
            return self.repo.list_exchange_lines_for_group(group_id)
        return []
