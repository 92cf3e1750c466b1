from pathlib import Path

import pytest

from conftest import add_product, stock_of
from ciel_pos.domain.enums import Location
from ciel_pos.domain.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ciel_pos.domain.models import NewProduct
from ciel_pos.repositories.stock_ledger import product_code_prefix


def test_new_product_starts_at_opening_stock(app):
    add_product(app, "A1", store=10, warehouse=5)
    assert stock_of(app, "A1") == (10, 5, 15)


def test_barcode_is_generated_from_base_and_skips_non_numeric(app):
    add_product(app, "ABC")
    add_product(app, "42")
    first = app.inventory.add_product(NewProduct(name="Shirt"))
    second = app.inventory.add_product(NewProduct(name="Shirt"))
    assert first.barcode == "1000001"
    assert second.barcode == "1000002"


def test_barcode_continues_after_highest_numeric(app):
    add_product(app, "2000000")
    created = app.inventory.add_product(NewProduct(name="Hat"))
    assert created.barcode == "2000001"


def test_product_code_sequence_per_category_prefix(app):
    a = app.inventory.add_product(NewProduct(name="Tee", category="Tişört"))
    b = app.inventory.add_product(NewProduct(name="Tee 2", category="tişört"))
    c = app.inventory.add_product(NewProduct(name="Misc"))
    assert a.product_code == "TIS001"
    assert b.product_code == "TIS002"
    assert c.product_code == "PRD001"


@pytest.mark.parametrize(
    "category, expected",
    [
        ("Çanta", "CAN"),
        ("ğı", "GIX"),
        ("Ü", "UXX"),
        ("  ", "PRD"),
        (None, "PRD"),
        ("!!!", "PRD"),
        ("a-b", "ABX"),
    ],
)
def test_product_code_prefix(category, expected):
    assert product_code_prefix(category) == expected


def test_supplied_product_code_is_normalized(app):
    created = app.inventory.add_product(NewProduct(name="Bag", product_code="ab-12"))
    assert created.product_code == "AB12"


def test_product_code_ceiling(app):
    app.inventory.add_product(NewProduct(name="Last", category="Bag", product_code="BAG999"))
    with pytest.raises(ConflictError, match="exhausted"):
        app.inventory.add_product(NewProduct(name="Overflow", category="Bag"))


def test_duplicate_barcode_is_rejected(app):
    add_product(app, "A1")
    with pytest.raises(ConflictError):
        add_product(app, "A1")


def test_add_product_validation(app):
    with pytest.raises(ValidationError, match="Name"):
        app.inventory.add_product(NewProduct(name="  "))
    with pytest.raises(ValidationError):
        app.inventory.add_product(NewProduct(name="X", store_opening=-1))
    with pytest.raises(ValidationError):
        app.inventory.add_product(NewProduct(name="X", buy_price=-5))


def test_adjust_location_stock_refuses_negative(app):
    from ciel_pos.repositories.unit_of_work import RepositoryUnitOfWork

    add_product(app, "A1", store=2, warehouse=0)
    with pytest.raises(InsufficientStockError) as exc:
        with RepositoryUnitOfWork(app.repo) as uow:
            uow.ledger.adjust_location_stock("A1", Location.STORE, -3)
    assert exc.value.barcode == "A1"
    assert exc.value.location == "store"
    assert exc.value.available == 2
    assert exc.value.requested == 3
    assert stock_of(app, "A1") == (2, 0, 2)


def test_adjust_unknown_product(app):
    from ciel_pos.repositories.unit_of_work import RepositoryUnitOfWork

    with pytest.raises(NotFoundError):
        with RepositoryUnitOfWork(app.repo) as uow:
            uow.ledger.adjust_location_stock("NOPE", Location.WAREHOUSE, 1)


def test_delete_product_without_history_is_hard_delete(app):
    add_product(app, "A1")
    assert app.inventory.delete_product("A1") == "deleted"
    assert app.inventory.find_product("A1") is None


def test_delete_product_with_history_deactivates(app):
    from ciel_pos.domain.models import SaleItem

    add_product(app, "A1")
    app.sales.create_sale([SaleItem("A1", 1, 100.0)], "store", "CASH")
    assert app.inventory.delete_product("A1") == "deactivated"
    p = app.inventory.get_product("A1")
    assert p.is_active == 0
    assert (p.store_stock, p.warehouse_stock, p.stock) == (0, 0, 0)
    assert [x.barcode for x in app.inventory.list_products()] == []


def test_update_product_keeps_code_when_blank(app):
    created = app.inventory.add_product(NewProduct(name="Bag", category="Bag"))
    app.inventory.update_product(created.barcode, "Big bag", 10.0, 30.0, product_code="")
    p = app.inventory.get_product(created.barcode)
    assert p.name == "Big bag"
    assert p.product_code == created.product_code
    assert p.sell_price == 30.0


def test_update_missing_product(app):
    with pytest.raises(NotFoundError):
        app.inventory.update_product("NOPE", "x", 1.0, 2.0)
