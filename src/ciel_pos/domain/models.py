from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ciel_pos.domain.enums import Location, PaymentMethod


@dataclass(frozen=True)
class Product:
    barcode: str
    product_code: Optional[str]
    name: str
    category: Optional[str]
    color: Optional[str]
    size: Optional[str]
    buy_price: float
    sell_price: float
    stock: int
    store_stock: int
    warehouse_stock: int
    store_opening: int = 0
    warehouse_opening: int = 0
    is_active: int = 1

    def stock_at(self, location: Location) -> int:
        return self.store_stock if location is Location.STORE else self.warehouse_stock


@dataclass(frozen=True)
class NewProduct:
    name: str
    barcode: Optional[str] = None
    product_code: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    buy_price: float = 0.0
    sell_price: float = 0.0
    store_opening: int = 0
    warehouse_opening: int = 0
    stock: Optional[int] = None


@dataclass(frozen=True)
class CreatedProduct:
    barcode: str
    product_code: str


# ---------- Sales ----------
@dataclass(frozen=True)
class SaleItem:
    barcode: str
    qty: int
    unit_price: float
    list_price: Optional[float] = None
    discount_amount: float = 0.0
    location: Optional[str] = None


@dataclass(frozen=True)
class SaleResult:
    sale_group_id: str
    total: float
    line_count: int


@dataclass(frozen=True)
class UndoResult:
    group_id: str
    restored_line_count: int


@dataclass(frozen=True)
class SaleLine:
    sale_id: int
    sold_at: str
    qty: int
    unit_price: float
    total: float
    sold_from: str
    refunded_qty: int


@dataclass(frozen=True)
class SaleGroupRow:
    group_id: str
    sold_at: str
    qty: int
    total: float
    payment_method: str
    kind: str


@dataclass(frozen=True)
class SaleLineRow:
    line_id: int
    group_id: str
    barcode: str
    name: Optional[str]
    qty: int
    unit_price: float
    total: float
    sold_from: str
    sold_at: str
    refunded_qty: int = 0
    refund_kind: Optional[str] = None
    list_price: float = 0.0
    discount_amount: float = 0.0
    payment_method: Optional[str] = None


# ---------- Returns / exchanges ----------
@dataclass(frozen=True)
class ReturnedItem:
    barcode: str
    qty: int
    unit_price: float
    return_to: Optional[str] = None
    sold_at: Optional[str] = None
    sold_from: Optional[str] = None
    sale_id: Optional[int] = None


@dataclass(frozen=True)
class GivenItem:
    barcode: str
    qty: int
    unit_price: float
    location: Optional[str] = None


@dataclass(frozen=True)
class ReturnResult:
    return_group_id: str
    line_count: int
    returned_total: float


@dataclass(frozen=True)
class ExchangeResult:
    exchange_group_id: str
    line_count: int
    returned_total: float
    given_total: float
    diff: float


@dataclass(frozen=True)
class ReturnGroup:
    return_group_id: str
    mode: str
    returned_total: float
    given_total: float
    diff: float
    diff_payment_method: Optional[str]
    created_at: str


# ---------- Transfers ----------
@dataclass(frozen=True)
class TransferItem:
    barcode: str
    qty: int
    from_location: str
    to_location: str


@dataclass(frozen=True)
class TransferResult:
    transfer_group_id: str
    line_count: int


@dataclass(frozen=True)
class TransferRecord:
    id: int
    transfer_group_id: str
    barcode: str
    qty: int
    from_loc: str
    to_loc: str
    note: Optional[str]
    transferred_at: str
    voided: int


# ---------- Expenses ----------
@dataclass(frozen=True)
class Expense:
    id: int
    title: str
    amount: float
    spent_at: str
    period: Optional[str]
    category: Optional[str]
    note: Optional[str]


# ---------- Reporting ----------
@dataclass
class BucketTotals:
    """Raw per-bucket sums gathered from the event tables."""

    sales_qty: int = 0
    exchange_qty: int = 0
    refund_qty: int = 0
    sales_total: float = 0.0
    return_diff: float = 0.0
    sales_profit: float = 0.0
    exchange_profit: float = 0.0
    refund_profit: float = 0.0
    receipts: int = 0
    expense: float = 0.0

    @property
    def net_qty(self) -> int:
        return max(self.sales_qty + self.exchange_qty - self.refund_qty, 0)

    @property
    def net_revenue(self) -> float:
        return self.sales_total + self.return_diff

    @property
    def gross_profit(self) -> float:
        return self.sales_profit + self.exchange_profit - self.refund_profit

    @property
    def avg_basket(self) -> float:
        return self.net_revenue / self.receipts if self.receipts > 0 else 0.0


@dataclass(frozen=True)
class DashboardKpi:
    today_qty: int
    today_net_revenue: float
    month_gross_profit: float
    month_net_profit: float
    month_avg_basket: float
    month_expense: float


@dataclass(frozen=True)
class DailyDashboardRow:
    day: str
    net_qty: int
    net_revenue: float
    gross_profit: float
    avg_basket: float


@dataclass(frozen=True)
class MonthlyDashboardRow:
    period: str
    net_qty: int
    net_revenue: float
    gross_profit: float
    expense: float
    net_profit: float
    avg_basket: float


@dataclass(frozen=True)
class DashboardSummary:
    kpi: DashboardKpi
    daily: list[DailyDashboardRow] = field(default_factory=list)
    monthly: list[MonthlyDashboardRow] = field(default_factory=list)


@dataclass
class CashReportRow:
    day: str
    cash_sales: float = 0.0
    card_sales: float = 0.0
    cash_refunds: float = 0.0
    card_refunds: float = 0.0
    cash_net: float = 0.0
    card_net: float = 0.0
    net_total: float = 0.0

    def add_sale(self, method: PaymentMethod, amount: float) -> None:
        if method.bucket is PaymentMethod.CASH:
            self.cash_sales += amount
        else:
            self.card_sales += amount

    def close(self) -> None:
        self.cash_net = self.cash_sales - self.cash_refunds
        self.card_net = self.card_sales - self.card_refunds
        self.net_total = self.cash_net + self.card_net
