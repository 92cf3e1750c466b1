from __future__ import annotations

import math
from enum import Enum
from typing import Optional

from ciel_pos.domain.errors import ValidationError

# Amounts below this are treated as zero when deciding whether an
# exchange difference has to be paid for.
DIFF_EPSILON = 5e-5

_STORE_SPELLINGS = {"STORE", "MAGAZA", "MAĞAZA"}
_WAREHOUSE_SPELLINGS = {"WAREHOUSE", "DEPO"}


class Location(str, Enum):
    STORE = "STORE"
    WAREHOUSE = "WAREHOUSE"

    @property
    def stock_column(self) -> str:
        return "store_stock" if self is Location.STORE else "warehouse_stock"

    @property
    def label(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, raw, default: Optional["Location"] = None) -> "Location":
        if isinstance(raw, Location):
            return raw
        text = str(raw or "").strip().upper()
        if not text:
            return default if default is not None else cls.STORE
        if text in _STORE_SPELLINGS:
            return cls.STORE
        if text in _WAREHOUSE_SPELLINGS:
            return cls.WAREHOUSE
        raise ValidationError(f"Unknown location: {raw!r}")


class PaymentMethod(str, Enum):
    CARD = "CARD"
    CASH = "CASH"
    TRANSFER = "TRANSFER"

    @classmethod
    def parse(cls, raw) -> "PaymentMethod":
        """Lenient receipt payment parsing. Anything unrecognised is CARD."""
        if isinstance(raw, PaymentMethod):
            return raw
        text = str(raw or "").strip().upper()
        if text in ("CASH", "NAKIT", "NAKİT"):
            return cls.CASH
        if text in ("TRANSFER", "HAVALE", "EFT"):
            return cls.TRANSFER
        return cls.CARD

    @classmethod
    def parse_diff(cls, raw, diff: float) -> Optional["PaymentMethod"]:
        """Payment method for an exchange difference.

        Only a positive difference is paid for, and only by CARD or CASH.
        """
        if diff <= DIFF_EPSILON:
            return None
        text = str(raw.value if isinstance(raw, PaymentMethod) else raw or "").strip().upper()
        if not text:
            raise ValidationError("A payment method is required when the customer pays a difference.")
        if text in ("CARD", "KART"):
            return cls.CARD
        if text in ("CASH", "NAKIT", "NAKİT"):
            return cls.CASH
        raise ValidationError(f"Difference can only be paid by CARD or CASH, got {raw!r}.")

    @property
    def bucket(self) -> "PaymentMethod":
        # cash report only distinguishes cash from everything else
        return PaymentMethod.CASH if self is PaymentMethod.CASH else PaymentMethod.CARD


class ReturnMode(str, Enum):
    REFUND = "REFUND"
    EXCHANGE = "EXCHANGE"

    @property
    def group_prefix(self) -> str:
        return "R" if self is ReturnMode.REFUND else "E"


def finite_or_zero(value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0
