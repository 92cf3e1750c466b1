from .inventory_service import InventoryService
from .sales_service import SalesService
from .return_service import ReturnService
from .transfer_service import TransferService
from .expense_service import ExpenseService
from .reporting_service import ReportingService
from .backup_service import BackupService

__all__ = [
    "InventoryService",
    "SalesService",
    "ReturnService",
    "TransferService",
    "ExpenseService",
    "ReportingService",
    "BackupService",
]
