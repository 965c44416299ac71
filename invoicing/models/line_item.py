from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from decimal import Decimal
from typing import Optional
from .common import gen_id
from .product import CatalogSnapshot


class PriceOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_price: Decimal
    override_price: Decimal
    discount_percent: Decimal  # négatif = majoration
    reason: Optional[str] = None


class LineItem(BaseModel):
    """
    Ligne de facture. Immuable : le moteur remplace la ligne par une copie
    recalculée (même id, même position).
    taxable_base / tax_amount / total / stock_warning / price_override sont dérivés.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=gen_id)
    product_ref: Optional[str] = None
    catalog_snapshot: Optional[CatalogSnapshot] = None

    description: str = ""
    tax_code: str = ""
    unit: str = ""

    quantity: Decimal = Decimal("1")
    rate: Decimal = Decimal("0")  # prix unitaire TTC appliqué
    price_override: Optional[PriceOverride] = None

    taxable_base: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    stock_warning: bool = False

    @property
    def is_bound(self) -> bool:
        return self.product_ref is not None and self.catalog_snapshot is not None


class StockExceeded(BaseModel):
    """Signal (non bloquant) : quantité plafonnée au stock en mode strict."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    requested: Decimal
    available: Decimal
