from .enums import Location, PaymentMethod, ReturnMode
from .errors import (
    AppError,
    ConflictError,
    InsufficientStockError,
    IntegrityError,
    NotFoundError,
    ValidationError,
)
from .models import (
    GivenItem,
    NewProduct,
    Product,
    ReturnedItem,
    SaleItem,
    TransferItem,
)

__all__ = [
    "Location",
    "PaymentMethod",
    "ReturnMode",
    "AppError",
    "ConflictError",
    "InsufficientStockError",
    "IntegrityError",
    "NotFoundError",
    "ValidationError",
    "GivenItem",
    "NewProduct",
    "Product",
    "ReturnedItem",
    "SaleItem",
    "TransferItem",
]
