import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture
def app(tmp_path: Path):
    from ciel_pos.application.container import build_container

    return build_container(tmp_path / "pos.sqlite")


def add_product(app, barcode: str, store: int = 10, warehouse: int = 5, buy: float = 40.0, sell: float = 100.0, **kw):
    from ciel_pos.domain.models import NewProduct

    return app.inventory.add_product(
        NewProduct(
            name=kw.pop("name", f"Product {barcode}"),
            barcode=barcode,
            buy_price=buy,
            sell_price=sell,
            store_opening=store,
            warehouse_opening=warehouse,
            **kw,
        )
    )


def stock_of(app, barcode: str):
    p = app.inventory.get_product(barcode)
    return p.store_stock, p.warehouse_stock, p.stock
