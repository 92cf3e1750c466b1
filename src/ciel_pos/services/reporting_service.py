from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from ciel_pos.domain.enums import PaymentMethod
from ciel_pos.domain.models import (
    BucketTotals,
    CashReportRow,
    DailyDashboardRow,
    DashboardKpi,
    DashboardSummary,
    MonthlyDashboardRow,
)
from ciel_pos.services.sales_service import clamp

log = logging.getLogger(__name__)

ZERO = 1e-4


def _near_zero(*values: float) -> bool:
    return all(abs(v) < ZERO for v in values)


def month_keys(today: date, months: int) -> list[str]:
    """The last `months` calendar months as YYYY-MM, oldest first."""
    keys = []
    year, month = today.year, today.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


class ReportingService:
    def __init__(self, repo):
        self.repo = repo

    def get_dashboard_summary(self, days: int = 30, months: int = 12, today: Optional[date] = None) -> DashboardSummary:
        today = today or date.today()
        days = clamp(days, 1, 90)
        months = clamp(months, 1, 24)

        day_keys = [(today - timedelta(days=i)).isoformat() for i in range(days - 1, -1, -1)]
        period_keys = month_keys(today, months)

        daily_buckets = self.repo.dashboard_buckets("%Y-%m-%d", day_keys[0])
        monthly_buckets = self.repo.dashboard_buckets("%Y-%m", f"{period_keys[0]}-01")

        today_totals = daily_buckets.get(today.isoformat(), BucketTotals())
        month_totals = monthly_buckets.get(period_keys[-1], BucketTotals())
        kpi = DashboardKpi(
            today_qty=today_totals.net_qty,
            today_net_revenue=today_totals.net_revenue,
            month_gross_profit=month_totals.gross_profit,
            month_net_profit=month_totals.gross_profit - month_totals.expense,
            month_avg_basket=month_totals.avg_basket,
            month_expense=month_totals.expense,
        )

        daily = []
        for key in day_keys:
            b = daily_buckets.get(key, BucketTotals())
            if b.net_qty == 0 and _near_zero(b.net_revenue, b.gross_profit):
                continue
            daily.append(DailyDashboardRow(key, b.net_qty, b.net_revenue, b.gross_profit, b.avg_basket))

        monthly = []
        for key in period_keys:
            b = monthly_buckets.get(key, BucketTotals())
            if b.net_qty == 0 and _near_zero(b.net_revenue, b.gross_profit, b.expense):
                continue
            monthly.append(
                MonthlyDashboardRow(
                    period=key,
                    net_qty=b.net_qty,
                    net_revenue=b.net_revenue,
                    gross_profit=b.gross_profit,
                    expense=b.expense,
                    net_profit=b.gross_profit - b.expense,
                    avg_basket=b.avg_basket,
                )
            )

        return DashboardSummary(kpi=kpi, daily=daily, monthly=monthly)

    def get_cash_report(self, days: int = 30, today: Optional[date] = None) -> list[CashReportRow]:
        today = today or date.today()
        since = (today - timedelta(days=max(int(days), 0))).isoformat()
        rows: dict[str, CashReportRow] = {}

        def row(day: str) -> CashReportRow:
            return rows.setdefault(day, CashReportRow(day=day))

        for day, method, amount in self.repo.cash_sales_by_day(since):
            row(day).add_sale(PaymentMethod.parse(method), amount)

        for day, amount in self.repo.refund_totals_by_day(since):
            row(day).cash_refunds += amount

        for day, method, diff in self.repo.exchange_diffs_by_day(since):
            if diff > 0:
                row(day).add_sale(PaymentMethod.parse(method), diff)
            elif diff < 0:
                row(day).cash_refunds += -diff

        out = [rows[d] for d in sorted(rows)]
        for r in out:
            r.close()
        return out

    def export_dashboard_excel(self, path: str, days: int = 30, months: int = 12, today: Optional[date] = None) -> None:
        summary = self.get_dashboard_summary(days, months, today=today)
        wb = Workbook()

        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Dashboard"
        ws["A1"].font = Font(bold=True, size=14)
        ws["A3"] = "Generated"
        ws["B3"] = (today or date.today()).isoformat()

        k = summary.kpi
        rows = [
            ("Today net qty", k.today_qty, "int"),
            ("Today net revenue", k.today_net_revenue, "money"),
            ("Month gross profit", k.month_gross_profit, "money"),
            ("Month expenses", k.month_expense, "money"),
            ("Month net profit", k.month_net_profit, "money"),
            ("Month average basket", k.month_avg_basket, "money"),
        ]
        start_row = 5
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                _money(ws[f"B{r}"])
        _set_widths(ws, {"A": 26, "B": 18})

        ws2 = wb.create_sheet("Daily")
        ws2.append(["Day", "Net Qty", "Net Revenue", "Gross Profit", "Avg Basket"])
        _bold_row(ws2, 1)
        for d in summary.daily:
            ws2.append([d.day, d.net_qty, d.net_revenue, d.gross_profit, d.avg_basket])
            for col in "CDE":
                _money(ws2[f"{col}{ws2.max_row}"])
        ws2.freeze_panes = "A2"
        _set_widths(ws2, {"A": 14, "B": 10, "C": 16, "D": 16, "E": 14})
        if ws2.max_row >= 2:
            _add_table(ws2, "DailySeries", 1, 1, ws2.max_row, 5)

        ws3 = wb.create_sheet("Monthly")
        ws3.append(["Period", "Net Qty", "Net Revenue", "Gross Profit", "Expense", "Net Profit", "Avg Basket"])
        _bold_row(ws3, 1)
        for m in summary.monthly:
            ws3.append([m.period, m.net_qty, m.net_revenue, m.gross_profit, m.expense, m.net_profit, m.avg_basket])
            for col in "CDEFG":
                _money(ws3[f"{col}{ws3.max_row}"])
        ws3.freeze_panes = "A2"
        _set_widths(ws3, {"A": 10, "B": 10, "C": 16, "D": 16, "E": 14, "F": 16, "G": 14})
        if ws3.max_row >= 2:
            _add_table(ws3, "MonthlySeries", 1, 1, ws3.max_row, 7)

        wb.save(path)
        log.info("dashboard_exported path=%s days=%s months=%s", path, days, months)

    def export_cash_report_excel(self, path: str, days: int = 30, today: Optional[date] = None) -> None:
        report = self.get_cash_report(days, today=today)
        wb = Workbook()
        ws = wb.active
        ws.title = "Cash Report"
        headers = [
            "Day", "Cash Sales", "Card Sales", "Cash Refunds", "Card Refunds",
            "Cash Net", "Card Net", "Net Total",
        ]
        ws.append(headers)
        _bold_row(ws, 1)
        for r in report:
            ws.append([
                r.day, r.cash_sales, r.card_sales, r.cash_refunds, r.card_refunds,
                r.cash_net, r.card_net, r.net_total,
            ])
            for col in range(2, len(headers) + 1):
                _money(ws.cell(row=ws.max_row, column=col))

        if report:
            ws.append([
                "Total",
                sum(r.cash_sales for r in report),
                sum(r.card_sales for r in report),
                sum(r.cash_refunds for r in report),
                sum(r.card_refunds for r in report),
                sum(r.cash_net for r in report),
                sum(r.card_net for r in report),
                sum(r.net_total for r in report),
            ])
            _bold_row(ws, ws.max_row)
            for col in range(2, len(headers) + 1):
                _money(ws.cell(row=ws.max_row, column=col))

        ws.freeze_panes = "A2"
        _set_widths(ws, {get_column_letter(i): 14 for i in range(1, len(headers) + 1)})
        wb.save(path)
        log.info("cash_report_exported path=%s days=%s rows=%s", path, days, len(report))


def _money(cell):
    cell.number_format = "#,##0.00"


def _bold_row(ws, r):
    for c in ws[r]:
        c.font = Font(bold=True)


def _set_widths(ws, widths: dict[str, int]):
    for col, w in widths.items():
        ws.column_dimensions[col].width = w


def _add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
    ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
    tab = Table(displayName=name, ref=ref)
    tab.tableStyleInfo = TableStyleInfo(
        name="TableStyleMedium9",
        showRowStripes=True,
        showColumnStripes=False,
    )
    ws.add_table(tab)
