from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ciel_pos.repositories.sqlite_repo import SqliteRepository
from ciel_pos.services.backup_service import BackupService
from ciel_pos.services.expense_service import ExpenseService
from ciel_pos.services.inventory_service import InventoryService
from ciel_pos.services.reporting_service import ReportingService
from ciel_pos.services.return_service import ReturnService
from ciel_pos.services.sales_service import SalesService
from ciel_pos.services.transfer_service import TransferService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    inventory: InventoryService
    sales: SalesService
    returns: ReturnService
    transfers: TransferService
    expenses: ExpenseService
    reporting: ReportingService
    backup: BackupService


def build_container(db_path: Path | str, backup_dir: Path | str | None = None) -> AppContainer:
    repo = SqliteRepository(db_path)
    repo.init_db()

    backup_dir = Path(backup_dir) if backup_dir is not None else Path(db_path).parent / "backups"

    return AppContainer(
        repo=repo,
        inventory=InventoryService(repo),
        sales=SalesService(repo),
        returns=ReturnService(repo),
        transfers=TransferService(repo),
        expenses=ExpenseService(repo),
        reporting=ReportingService(repo),
        backup=BackupService(db_path, backup_dir),
    )
