import pytest

from conftest import add_product, stock_of
from ciel_pos.domain.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ciel_pos.domain.models import GivenItem, ReturnedItem, SaleItem


def _sell(app, barcode: str, qty: int, price: float):
    sale = app.sales.create_sale([SaleItem(barcode, qty, price)], "store", "CASH")
    return app.sales.list_sales_by_group(sale.sale_group_id)[0]


def test_refund_to_warehouse_referencing_sale(app):
    add_product(app, "A", store=10, warehouse=5)
    line = _sell(app, "A", 4, 50.0)

    result = app.returns.create_return(
        ReturnedItem("A", 2, 50.0, return_to="warehouse", sold_at=line.sold_at, sold_from="store")
    )

    assert result.return_group_id.startswith("R")
    assert result.line_count == 1
    assert result.returned_total == 100.0
    assert stock_of(app, "A") == (6, 7, 13)
    rows = app.sales.list_sales_by_barcode("A", days=1)
    assert rows[0].qty - rows[0].refunded_qty == 2


def test_partial_refunds_never_exceed_sold_quantity(app):
    add_product(app, "A", store=10, warehouse=0)
    line = _sell(app, "A", 5, 20.0)

    app.returns.create_return(ReturnedItem("A", 3, 20.0, sale_id=line.line_id))
    with pytest.raises(ConflictError, match="remaining 2"):
        app.returns.create_return(ReturnedItem("A", 3, 20.0, sale_id=line.line_id))
    app.returns.create_return(ReturnedItem("A", 2, 20.0, sale_id=line.line_id))
    with pytest.raises(ConflictError, match="fully refunded"):
        app.returns.create_return(ReturnedItem("A", 1, 20.0, sale_id=line.line_id))

    assert stock_of(app, "A") == (10, 0, 10)
    refunded = app.sales.list_sales_by_group(line.group_id)[0]
    assert refunded.refunded_qty == 5
    assert refunded.refund_kind == "REFUND"


def test_rejected_refund_leaves_stock_alone(app):
    add_product(app, "A", store=10, warehouse=0)
    line = _sell(app, "A", 1, 20.0)
    with pytest.raises(ConflictError):
        app.returns.create_return(ReturnedItem("A", 2, 20.0, sold_at=line.sold_at))
    assert stock_of(app, "A") == (9, 0, 9)
    assert app.returns.list_return_groups(days=1) == []


def test_unmatched_refund_proceeds_without_link(app):
    add_product(app, "A", store=0, warehouse=0)
    result = app.returns.create_return(ReturnedItem("A", 2, 15.0, sold_at="1999-01-01 10:00:00"))
    assert result.returned_total == 30.0
    assert stock_of(app, "A") == (2, 0, 2)


def test_explicit_sale_id_must_exist(app):
    add_product(app, "A")
    with pytest.raises(NotFoundError):
        app.returns.create_return(ReturnedItem("A", 1, 15.0, sale_id=999))


def test_refund_validation(app):
    add_product(app, "A")
    with pytest.raises(ValidationError):
        app.returns.create_return(ReturnedItem("A", 0, 15.0))
    with pytest.raises(NotFoundError):
        app.returns.create_return(ReturnedItem("NOPE", 1, 15.0))


def test_exchange_with_positive_diff_requires_card_or_cash(app):
    add_product(app, "A", store=5, warehouse=0)
    add_product(app, "B", store=5, warehouse=0)
    line = _sell(app, "A", 1, 50.0)
    returned = ReturnedItem("A", 1, 50.0, return_to="store", sale_id=line.line_id)
    given = [GivenItem("B", 1, 80.0, location="store")]

    with pytest.raises(ValidationError, match="required"):
        app.returns.create_exchange(returned, given)
    with pytest.raises(ValidationError, match="CARD or CASH"):
        app.returns.create_exchange(returned, given, "TRANSFER")
    assert stock_of(app, "B") == (5, 0, 5)

    result = app.returns.create_exchange(returned, given, "kart")
    assert result.exchange_group_id.startswith("E")
    assert result.line_count == 1
    assert result.returned_total == 50.0
    assert result.given_total == 80.0
    assert result.diff == pytest.approx(30.0)
    assert stock_of(app, "A") == (5, 0, 5)
    assert stock_of(app, "B") == (4, 0, 4)

    group = app.returns.list_return_groups(days=1)[0]
    assert group.mode == "EXCHANGE"
    assert group.diff_payment_method == "CARD"
    assert app.sales.list_sales_by_group(line.group_id)[0].refund_kind == "EXCHANGE"


def test_exchange_with_non_positive_diff_stores_no_payment(app):
    add_product(app, "A", store=5)
    add_product(app, "B", store=5)
    line = _sell(app, "A", 2, 50.0)

    result = app.returns.create_exchange(
        ReturnedItem("A", 2, 50.0, sale_id=line.line_id),
        [GivenItem("B", 1, 60.0), GivenItem("B", 0, 60.0)],
        "CASH",
    )

    assert result.diff == pytest.approx(-40.0)
    assert result.line_count == 1
    assert app.returns.list_return_groups(days=1)[0].diff_payment_method is None


def test_tiny_positive_diff_needs_no_payment(app):
    add_product(app, "A", store=5)
    add_product(app, "B", store=5)
    result = app.returns.create_exchange(
        ReturnedItem("A", 1, 10.0),
        [GivenItem("B", 1, 10.00004)],
    )
    assert result.diff > 0
    assert app.returns.list_return_groups(days=1)[0].diff_payment_method is None


def test_exchange_out_of_stock_rolls_back_returned_item(app):
    add_product(app, "A", store=5, warehouse=0)
    add_product(app, "B", store=1, warehouse=0)
    line = _sell(app, "A", 1, 50.0)

    with pytest.raises(InsufficientStockError):
        app.returns.create_exchange(
            ReturnedItem("A", 1, 50.0, sale_id=line.line_id),
            [GivenItem("B", 1, 20.0), GivenItem("B", 1, 20.0)],
        )

    assert stock_of(app, "A") == (4, 0, 4)
    assert stock_of(app, "B") == (1, 0, 1)
    assert app.sales.list_sales_by_group(line.group_id)[0].refunded_qty == 0


def test_exchange_respects_remaining_quantity(app):
    add_product(app, "A", store=5)
    add_product(app, "B", store=5)
    line = _sell(app, "A", 1, 50.0)
    app.returns.create_return(ReturnedItem("A", 1, 50.0, sale_id=line.line_id))

    with pytest.raises(ConflictError):
        app.returns.create_exchange(ReturnedItem("A", 1, 50.0, sale_id=line.line_id), [GivenItem("B", 1, 50.0)])


def test_exchange_needs_given_items(app):
    add_product(app, "A")
    with pytest.raises(ValidationError):
        app.returns.create_exchange(ReturnedItem("A", 1, 50.0), [])


def test_exchange_group_listing(app):
    add_product(app, "A", store=5)
    add_product(app, "B", store=5, name="Green socks")
    result = app.returns.create_exchange(ReturnedItem("A", 1, 10.0), [GivenItem("B", 2, 10.0)], "cash")

    groups = app.sales.list_sale_groups(days=1)
    assert [(g.group_id, g.kind, g.qty, g.payment_method) for g in groups] == [
        (result.exchange_group_id, "EXCHANGE", 2, "CASH")
    ]
    lines = app.sales.list_sales_by_group(result.exchange_group_id)
    assert [(x.barcode, x.qty, x.total) for x in lines] == [("B", 2, 20.0)]
    assert lines[0].refund_kind == "EXCHANGE"
    assert lines[0].payment_method == "CASH"
    assert (lines[0].list_price, lines[0].discount_amount) == (10.0, 0.0)

    assert app.sales.list_sale_groups(days=1, search="green")[0].qty == 2
    assert app.sales.list_sale_groups(days=1, search="nothing like it") == []


def test_even_exchange_lines_default_to_card(app):
    add_product(app, "A", store=5)
    add_product(app, "B", store=5)
    result = app.returns.create_exchange(ReturnedItem("A", 1, 10.0), [GivenItem("B", 1, 10.0)])

    lines = app.sales.list_sales_by_group(result.exchange_group_id)
    assert [(x.refund_kind, x.payment_method) for x in lines] == [("EXCHANGE", "CARD")]


def test_delete_return_group_cascades_lines(app):
    add_product(app, "A", store=5)
    add_product(app, "B", store=5)
    result = app.returns.create_exchange(ReturnedItem("A", 1, 10.0), [GivenItem("B", 1, 5.0)])

    app.returns.delete_return_group(result.exchange_group_id)

    assert app.repo.count_return_lines(result.exchange_group_id) == (0, 0)
    assert app.returns.list_return_groups(days=1) == []
    with pytest.raises(NotFoundError):
        app.returns.delete_return_group(result.exchange_group_id)
