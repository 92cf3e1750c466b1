from __future__ import annotations

import logging
from collections import Counter
from datetime import date
from typing import Callable, Iterable, Optional

from ciel_pos.domain.enums import Location, PaymentMethod, ReturnMode, finite_or_zero
from ciel_pos.domain.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ciel_pos.domain.models import ExchangeResult, GivenItem, ReturnedItem, ReturnGroup, ReturnResult
from ciel_pos.repositories.unit_of_work import RefSaleLine, RepositoryUnitOfWork, UnitOfWork, now_iso
from ciel_pos.services.sales_service import clamp, since_days

log = logging.getLogger("ciel_pos.sales")


class ReturnService:
    """Refunds and exchanges against earlier sales.

    A returned item is linked to the sale line it came from when that line
    can be found, and the link caps how much of the line can ever come
    back: the sum of linked return quantities never exceeds the sold
    quantity. Unlinked returns are accepted as they are.
    """

    def __init__(self, repo, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def create_return(self, item: ReturnedItem) -> ReturnResult:
        returned = self._validate_returned(item)
        return_to = Location.parse(item.return_to)
        unit_price = finite_or_zero(item.unit_price)
        returned_total = unit_price * returned.qty

        with self.uow_factory() as uow:
            ref = self._resolve_reference(uow, returned)
            uow.ledger.adjust_location_stock(returned.barcode, return_to, returned.qty)

            group_id = uow.new_group_id(ReturnMode.REFUND.group_prefix)
            created_at = now_iso()
            uow.insert_return_group(
                group_id, ReturnMode.REFUND, returned_total, 0.0, -returned_total, None, created_at
            )
            uow.insert_return_line(
                group_id, returned.barcode, returned.qty, unit_price, return_to,
                ref, returned.sold_at, returned.sold_from, created_at,
            )

        log.info(
            "refund_created return_group_id=%s barcode=%s qty=%s returned_total=%.2f ref_sale_id=%s",
            group_id, returned.barcode, returned.qty, returned_total, ref.sale_id if ref else None,
        )
        return ReturnResult(return_group_id=group_id, line_count=1, returned_total=returned_total)

    def create_exchange(
        self,
        returned: ReturnedItem,
        given: Iterable[GivenItem],
        diff_payment_method: PaymentMethod | str | None = None,
    ) -> ExchangeResult:
        returned = self._validate_returned(returned)
        given = list(given)
        if not given:
            raise ValidationError("At least one item must be given in exchange.")

        return_to = Location.parse(returned.return_to)
        returned_price = finite_or_zero(returned.unit_price)
        returned_total = returned_price * returned.qty

        given_lines = []
        qty_by_key: Counter[tuple[str, Location]] = Counter()
        for g in given:
            qty = int(g.qty)
            if qty <= 0:
                continue
            barcode = (g.barcode or "").strip()
            if not barcode:
                raise ValidationError("Barcode is required for given items.")
            location = Location.parse(g.location)
            given_lines.append((barcode, qty, location, finite_or_zero(g.unit_price)))
            qty_by_key[(barcode, location)] += qty

        given_total = sum(price * qty for _, qty, _, price in given_lines)
        diff = given_total - returned_total
        payment = PaymentMethod.parse_diff(diff_payment_method, diff)

        try:
            with self.uow_factory() as uow:
                for (barcode, location), qty in qty_by_key.items():
                    uow.ledger.require_stock(barcode, location, qty)

                ref = self._resolve_reference(uow, returned)
                group_id = uow.new_group_id(ReturnMode.EXCHANGE.group_prefix)
                created_at = now_iso()

                uow.ledger.adjust_location_stock(returned.barcode, return_to, returned.qty)
                uow.insert_return_line(
                    group_id, returned.barcode, returned.qty, returned_price, return_to,
                    ref, returned.sold_at, returned.sold_from, created_at,
                )

                for barcode, qty, location, price in given_lines:
                    uow.ledger.adjust_location_stock(barcode, location, -qty)
                    uow.insert_exchange_line(group_id, barcode, qty, price, location, created_at)

                uow.insert_return_group(
                    group_id, ReturnMode.EXCHANGE, returned_total, given_total, diff, payment, created_at
                )
        except InsufficientStockError as e:
            log.warning(
                "exchange_rejected barcode=%s location=%s available=%s requested=%s",
                e.barcode, e.location, e.available, e.requested,
            )
            raise

        log.info(
            "exchange_created exchange_group_id=%s returned_total=%.2f given_total=%.2f diff=%.2f payment=%s",
            group_id, returned_total, given_total, diff, payment.value if payment else None,
        )
        return ExchangeResult(
            exchange_group_id=group_id,
            line_count=len(given_lines),
            returned_total=returned_total,
            given_total=given_total,
            diff=diff,
        )

    def delete_return_group(self, group_id: str) -> int:
        """Remove a return group together with its lines. Stock is not moved."""
        group_id = (group_id or "").strip()
        if not group_id:
            raise ValidationError("Return group id is required.")
        with self.uow_factory() as uow:
            deleted = uow.delete_return_group(group_id)
            if not deleted:
                raise NotFoundError(f"Return group not found: {group_id}")
        log.info("return_group_deleted return_group_id=%s", group_id)
        return deleted

    def list_return_groups(self, days: int = 30, today: Optional[date] = None) -> list[ReturnGroup]:
        return self.repo.list_return_groups(since_days(clamp(days, 1, 365), today))

    def _validate_returned(self, item: ReturnedItem) -> ReturnedItem:
        barcode = (item.barcode or "").strip()
        if not barcode:
            raise ValidationError("Barcode is required.")
        if int(item.qty) <= 0:
            raise ValidationError("Returned quantity must be > 0.")
        return ReturnedItem(
            barcode=barcode,
            qty=int(item.qty),
            unit_price=item.unit_price,
            return_to=item.return_to,
            sold_at=(item.sold_at or "").strip() or None,
            sold_from=(item.sold_from or "").strip() or None,
            sale_id=item.sale_id,
        )

    def _resolve_reference(self, uow, returned: ReturnedItem) -> Optional[RefSaleLine]:
        uow.ledger.get_product(returned.barcode)
        ref = uow.find_ref_sale_line(returned.barcode, returned.sold_at, returned.sale_id)
        if ref is None:
            if returned.sale_id is not None:
                raise NotFoundError(f"Sale line {returned.sale_id} not found for {returned.barcode}.")
            return None

        already = uow.refunded_qty(ref.sale_id)
        remaining = ref.qty - already
        if remaining <= 0:
            log.warning("return_rejected sale_id=%s reason=fully_refunded", ref.sale_id)
            raise ConflictError(f"Sale line {ref.sale_id} is already fully refunded.")
        if returned.qty > remaining:
            log.warning(
                "return_rejected sale_id=%s sold=%s refunded=%s requested=%s",
                ref.sale_id, ref.qty, already, returned.qty,
            )
            raise ConflictError(
                f"Cannot return {returned.qty}: sold {ref.qty}, already refunded {already}, remaining {remaining}."
            )
        return ref
