from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from decimal import Decimal
from datetime import datetime
from typing import Optional
from .common import gen_id, utcnow


class Product(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    sku: str = ""
    name: str = ""
    description: Optional[str] = None
    tax_code: Optional[str] = None  # HSN / code TVA
    base_price: Decimal = Decimal("0")  # TTC
    unit: str = ""
    stock_level: Optional[Decimal] = None  # None = stock non suivi
    category: Optional[str] = None
    tax_rate: Decimal = Decimal("0")  # en %
    active: bool = True


class CatalogSnapshot(BaseModel):
    """Copie figée du produit au moment du rattachement (audit)."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    sku: str
    name: str
    description: Optional[str] = None
    tax_code: str
    base_price: Decimal = Field(gt=0)
    unit: str = ""
    stock_level: Optional[Decimal] = None
    category: Optional[str] = None
    tax_rate: Decimal = Decimal("0")
    captured_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_product(cls, p: Product) -> "CatalogSnapshot":
        return cls(
            product_id=p.id,
            sku=p.sku,
            name=p.name,
            description=p.description,
            tax_code=(p.tax_code or "").strip(),
            base_price=p.base_price,
            unit=p.unit or "",
            stock_level=p.stock_level,
            category=p.category,
            tax_rate=p.tax_rate,
        )
