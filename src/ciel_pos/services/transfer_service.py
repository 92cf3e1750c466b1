from __future__ import annotations

import logging
from collections import Counter
from datetime import date
from typing import Callable, Iterable, Optional

from ciel_pos.domain.enums import Location
from ciel_pos.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from ciel_pos.domain.models import TransferItem, TransferRecord, TransferResult, UndoResult
from ciel_pos.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork, now_iso
from ciel_pos.services.sales_service import clamp, since_days

log = logging.getLogger("ciel_pos.stock")


class TransferService:
    def __init__(self, repo, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def create_transfer(self, items: Iterable[TransferItem], note: Optional[str] = None) -> TransferResult:
        items = list(items)
        if not items:
            raise ValidationError("Transfer list is empty.")
        note = (note or "").strip() or None

        lines = []
        qty_by_key: Counter[tuple[str, Location]] = Counter()
        for it in items:
            barcode = (it.barcode or "").strip()
            if not barcode:
                raise ValidationError("Barcode is required.")
            src = Location.parse(it.from_location)
            dst = Location.parse(it.to_location)
            if src is dst:
                raise ValidationError(f"Source and destination are the same for {barcode}.")
            qty = int(it.qty) if int(it.qty) > 0 else 1
            lines.append((barcode, qty, src, dst))
            qty_by_key[(barcode, src)] += qty

        try:
            with self.uow_factory() as uow:
                for (barcode, src), qty in qty_by_key.items():
                    uow.ledger.require_stock(barcode, src, qty)

                group_id = uow.new_group_id("T")
                transferred_at = now_iso()
                for barcode, qty, src, dst in lines:
                    uow.ledger.adjust_location_stock(barcode, src, -qty, mirror=False)
                    uow.ledger.adjust_location_stock(barcode, dst, qty, mirror=False)
                    uow.insert_transfer(group_id, barcode, qty, src, dst, note, transferred_at)
        except InsufficientStockError as e:
            log.warning(
                "transfer_rejected barcode=%s location=%s available=%s requested=%s",
                e.barcode, e.location, e.available, e.requested,
            )
            raise

        log.info("transfer_created transfer_group_id=%s lines=%s", group_id, len(lines))
        return TransferResult(transfer_group_id=group_id, line_count=len(lines))

    def undo_last_transfer(self) -> UndoResult:
        with self.uow_factory() as uow:
            group_id = uow.last_open_transfer_group()
            if not group_id:
                raise NotFoundError("No transfer to undo.")
            lines = uow.transfer_group_lines(group_id)
            for line in lines:
                uow.ledger.adjust_location_stock(line.barcode, line.to_loc, -line.qty, mirror=False)
                uow.ledger.adjust_location_stock(line.barcode, line.from_loc, line.qty, mirror=False)
            uow.void_transfer_group(group_id)

        log.info("transfer_undone transfer_group_id=%s lines=%s", group_id, len(lines))
        return UndoResult(group_id=group_id, restored_line_count=len(lines))

    def list_transfers(self, days: int = 30, today: Optional[date] = None) -> list[TransferRecord]:
        return self.repo.list_transfers(since_days(clamp(days, 1, 365), today))
