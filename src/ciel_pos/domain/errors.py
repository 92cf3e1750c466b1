from __future__ import annotations


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class ConflictError(AppError):
    pass


class IntegrityError(AppError):
    """The datastore rejected or failed to commit a transaction."""


class InsufficientStockError(AppError):
    def __init__(self, barcode: str, location: str, available: int, requested: int):
        self.barcode = barcode
        self.location = location
        self.available = int(available)
        self.requested = int(requested)
        super().__init__(
            f"Not enough stock for {barcode} at {location}. "
            f"Available: {self.available}, requested: {self.requested}"
        )
