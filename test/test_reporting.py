from datetime import date, timedelta

import pytest
from openpyxl import load_workbook

from conftest import add_product
from ciel_pos.domain.models import GivenItem, ReturnedItem, SaleItem
from ciel_pos.services.reporting_service import month_keys


def _today_at(hour: int = 9) -> str:
    return f"{date.today().isoformat()} {hour:02d}:00:00"


def _seed_mixed_day(app):
    add_product(app, "A", store=10, warehouse=0, buy=40.0)
    add_product(app, "B", store=10, warehouse=0, buy=10.0)
    sale = app.sales.create_sale([SaleItem("A", 3, 100.0)], "store", "CASH")
    line = app.sales.list_sales_by_group(sale.sale_group_id)[0]
    app.returns.create_return(ReturnedItem("A", 1, 100.0, sale_id=line.line_id))
    app.returns.create_exchange(
        ReturnedItem("A", 1, 100.0, sale_id=line.line_id),
        [GivenItem("B", 1, 150.0)],
        "CASH",
    )


def test_empty_ledger_still_reports_zero_kpis(app):
    summary = app.reporting.get_dashboard_summary(7, 3)
    k = summary.kpi
    assert (k.today_qty, k.today_net_revenue, k.month_gross_profit) == (0, 0.0, 0.0)
    assert (k.month_net_profit, k.month_avg_basket, k.month_expense) == (0.0, 0.0, 0.0)
    assert summary.daily == []
    assert summary.monthly == []


def test_dashboard_combines_sales_refunds_and_exchanges(app):
    _seed_mixed_day(app)
    app.expenses.add_expense("Rent", 70.0, _today_at())

    summary = app.reporting.get_dashboard_summary(7, 3)

    k = summary.kpi
    assert k.today_qty == 3
    assert k.today_net_revenue == pytest.approx(250.0)
    assert k.month_gross_profit == pytest.approx(260.0)
    assert k.month_expense == pytest.approx(70.0)
    assert k.month_net_profit == pytest.approx(190.0)
    assert k.month_avg_basket == pytest.approx(250.0)

    assert len(summary.daily) == 1
    day = summary.daily[0]
    assert day.day == date.today().isoformat()
    assert (day.net_qty, day.net_revenue, day.gross_profit) == (3, pytest.approx(250.0), pytest.approx(260.0))

    assert len(summary.monthly) == 1
    month = summary.monthly[0]
    assert month.period == date.today().strftime("%Y-%m")
    assert month.expense == pytest.approx(70.0)
    assert month.net_profit == pytest.approx(190.0)


def test_expense_only_month_is_kept_but_day_is_omitted(app):
    app.expenses.add_expense("Power", 12.5, _today_at())
    summary = app.reporting.get_dashboard_summary(7, 3)
    assert summary.daily == []
    assert [m.period for m in summary.monthly] == [date.today().strftime("%Y-%m")]
    assert summary.kpi.month_net_profit == pytest.approx(-12.5)


def test_undone_sale_leaves_no_trace(app):
    add_product(app, "A", store=5)
    app.sales.create_sale([SaleItem("A", 2, 30.0)])
    app.sales.undo_last_sale()
    summary = app.reporting.get_dashboard_summary(7, 3)
    assert summary.daily == []
    assert summary.kpi.today_net_revenue == 0.0


def test_net_quantity_is_floored_at_zero(app):
    add_product(app, "A", store=0)
    app.returns.create_return(ReturnedItem("A", 3, 10.0))
    summary = app.reporting.get_dashboard_summary(1, 1)
    assert summary.kpi.today_qty == 0
    assert summary.kpi.today_net_revenue == pytest.approx(-30.0)
    assert len(summary.daily) == 1


def test_windows_are_clamped(app):
    add_product(app, "A", store=5)
    app.sales.create_sale([SaleItem("A", 1, 30.0)])
    summary = app.reporting.get_dashboard_summary(0, 500)
    assert [d.day for d in summary.daily] == [date.today().isoformat()]
    assert len(summary.monthly) == 1


def test_month_keys_cross_year_boundary():
    assert month_keys(date(2024, 2, 10), 4) == ["2023-11", "2023-12", "2024-01", "2024-02"]


def test_cash_report_buckets_by_payment_method(app):
    add_product(app, "A", store=10)
    add_product(app, "X", store=10)
    add_product(app, "Y", store=10)
    app.sales.create_sale([SaleItem("A", 2, 50.0)], payment_method="CASH")
    app.sales.create_sale([SaleItem("A", 1, 30.0)], payment_method="CARD")
    app.sales.create_sale([SaleItem("A", 1, 20.0)], payment_method="EFT")
    app.returns.create_return(ReturnedItem("A", 1, 50.0))
    app.returns.create_exchange(ReturnedItem("X", 1, 10.0), [GivenItem("Y", 1, 35.0)], "CASH")
    app.returns.create_exchange(ReturnedItem("X", 1, 20.0), [GivenItem("Y", 1, 10.0)])

    rows = app.reporting.get_cash_report(7)

    assert len(rows) == 1
    r = rows[0]
    assert r.day == date.today().isoformat()
    assert r.cash_sales == pytest.approx(125.0)
    assert r.card_sales == pytest.approx(50.0)
    assert r.cash_refunds == pytest.approx(60.0)
    assert r.card_refunds == 0.0
    assert r.cash_net == pytest.approx(65.0)
    assert r.card_net == pytest.approx(50.0)
    assert r.net_total == pytest.approx(115.0)


def test_cash_report_window_excludes_old_days(app):
    add_product(app, "A", store=10)
    app.sales.create_sale([SaleItem("A", 1, 10.0)], payment_method="CASH")
    tomorrow = date.today() + timedelta(days=1)
    assert app.reporting.get_cash_report(0, today=tomorrow) == []
    assert len(app.reporting.get_cash_report(1, today=tomorrow)) == 1


def test_export_dashboard_excel(app, tmp_path):
    _seed_mixed_day(app)
    out = tmp_path / "dashboard.xlsx"

    app.reporting.export_dashboard_excel(str(out), 7, 3)

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Daily", "Monthly"]
    assert wb["Summary"]["A5"].value == "Today net qty"
    assert wb["Summary"]["B5"].value == 3
    assert wb["Daily"]["A2"].value == date.today().isoformat()
    assert wb["Monthly"]["C2"].value == pytest.approx(250.0)


def test_export_cash_report_excel(app, tmp_path):
    add_product(app, "A", store=10)
    app.sales.create_sale([SaleItem("A", 2, 50.0)], payment_method="CASH")
    out = tmp_path / "cash.xlsx"

    app.reporting.export_cash_report_excel(str(out), 7)

    ws = load_workbook(out)["Cash Report"]
    assert ws["A1"].value == "Day"
    assert ws["B2"].value == pytest.approx(100.0)
    assert ws["A3"].value == "Total"
