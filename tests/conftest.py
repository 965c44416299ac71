from decimal import Decimal

import pytest

from invoicing.config import EngineConfig
from invoicing.models.product import Product
from invoicing.services.line_item_engine import LineItemEngine


def make_product(**overrides) -> Product:
    data = dict(
        id="p-cable",
        sku="CAB-001",
        name="Câble XLR 10m",
        description="Câble XLR mâle/femelle",
        tax_code="8544",
        base_price=Decimal("100"),
        unit="pièce",
        stock_level=Decimal("5"),
        category="Câblage",
        tax_rate=Decimal("18"),
    )
    data.update(overrides)
    return Product(**data)


@pytest.fixture
def product():
    return make_product()


@pytest.fixture
def other_product():
    return make_product(
        id="p-mic",
        sku="MIC-058",
        name="Micro SM58",
        description=None,
        tax_code="8518",
        base_price=Decimal("250"),
        stock_level=Decimal("100"),
        tax_rate=Decimal("5"),
    )


@pytest.fixture
def engine():
    return LineItemEngine(EngineConfig())


@pytest.fixture
def strict_engine():
    return LineItemEngine(EngineConfig(strict_stock=True))


@pytest.fixture
def product_factory():
    return make_product
