from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Iterable, List, Literal, Optional
from decimal import Decimal
from datetime import datetime
from .common import gen_id, utcnow
from .line_item import LineItem

InvoiceStatus = Literal["DRAFT", "ISSUED", "PAID"]


class TaxTable(BaseModel):
    """Configuration TVA de la facture (fournie de l'extérieur, peut changer)."""

    model_config = ConfigDict(frozen=True)

    default_percent: Decimal = Decimal("0")
    rates: Dict[str, Decimal] = Field(default_factory=dict)  # code TVA/HSN -> %


class InvoiceTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    taxable_base: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    line_count: int = 0
    stock_warnings: int = 0
    price_overrides: int = 0

    @classmethod
    def from_lines(cls, lines: Iterable[LineItem]) -> "InvoiceTotals":
        rows = list(lines)
        zero = Decimal("0")
        return cls(
            taxable_base=sum((ln.taxable_base for ln in rows), zero),
            tax_amount=sum((ln.tax_amount for ln in rows), zero),
            total=sum((ln.total for ln in rows), zero),
            line_count=len(rows),
            stock_warnings=sum(1 for ln in rows if ln.stock_warning),
            price_overrides=sum(1 for ln in rows if ln.price_override is not None),
        )


class Invoice(BaseModel):
    model_config = ConfigDict(extra="ignore")  # tolère d'anciennes clés dans les JSON

    id: str = Field(default_factory=gen_id)
    client_id: Optional[str] = None
    status: InvoiceStatus = "DRAFT"

    tax: TaxTable = Field(default_factory=TaxTable)
    lines: List[LineItem] = Field(default_factory=list)
    totals: InvoiceTotals = Field(default_factory=InvoiceTotals)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None

    def touch(self):
        object.__setattr__(self, "updated_at", utcnow())
