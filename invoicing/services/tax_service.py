"""
Calcul TVA d'une ligne à partir d'un prix unitaire TTC.

    >>> compute_tax(Decimal("100"), Decimal("1"), Decimal("18"))
    TaxBreakdown(taxable_base=Decimal('84.75'), tax_amount=Decimal('15.25'), total=Decimal('100.00'))

Arrondi unique : demi-pair à 2 décimales, appliqué sur les montants finaux
(les calculs intermédiaires restent non arrondis). Le taux est passé à chaque
appel, rien n'est mémorisé.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_EVEN
from typing import NamedTuple, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


class TaxBreakdown(NamedTuple):
    taxable_base: Decimal
    tax_amount: Decimal
    total: Decimal


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def compute_tax(rate: Decimal, quantity: Decimal, tax_percent: Optional[Decimal]) -> TaxBreakdown:
    gross = Decimal(rate) * Decimal(quantity)
    total = round_money(gross)

    if tax_percent is None or tax_percent <= 0:
        return TaxBreakdown(taxable_base=total, tax_amount=round_money(ZERO), total=total)

    pct = Decimal(tax_percent)
    base = round_money(gross / (1 + pct / HUNDRED))
    # tax = total - base : base + tax == total au centime près, sans dérive
    return TaxBreakdown(taxable_base=base, tax_amount=total - base, total=total)
