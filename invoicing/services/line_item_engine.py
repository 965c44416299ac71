from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from invoicing.config import EngineConfig
from invoicing.errors import (
    InvalidProduct,
    InvalidQuantity,
    InvalidRate,
    LineItemNotFound,
    ProductIntegrationDisabled,
)
from invoicing.models.common import to_decimal
from invoicing.models.invoice import InvoiceTotals, TaxTable
from invoicing.models.line_item import LineItem, PriceOverride, StockExceeded
from invoicing.models.product import CatalogSnapshot, Product
from invoicing.services.tax_service import HUNDRED, ZERO, compute_tax, round_money

logger = logging.getLogger(__name__)

ItemRef = Union[LineItem, str]


class LineItemEngine:
    """
    Moteur de rapprochement des lignes d'une facture.
    - rattache un produit catalogue à une ligne (snapshot figé)
    - garde quantité / prix / TVA cohérents quel que soit l'ordre des saisies
    - suit les écarts au prix catalogue (price_override)
    - avertit (ou plafonne en mode strict) selon le stock

    Chaque opération valide puis construit une copie complète de la ligne
    avant de remplacer l'ancienne : en cas d'erreur rien n'a bougé.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        items: Iterable[LineItem] = (),
        tax_table: Optional[TaxTable] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.tax_table = tax_table or TaxTable()
        self._items: List[LineItem] = list(items)

    # ---------- Accès ---------- #

    @property
    def items(self) -> List[LineItem]:
        return list(self._items)

    def get(self, item_id: str) -> LineItem:
        return self._items[self._index_of(item_id)]

    def _index_of(self, item_id: str) -> int:
        for i, it in enumerate(self._items):
            if it.id == item_id:
                return i
        raise LineItemNotFound(item_id)

    @staticmethod
    def _item_id(item: ItemRef) -> str:
        return item.id if isinstance(item, LineItem) else str(item)

    def _replace(self, idx: int, item: LineItem) -> LineItem:
        self._items[idx] = item
        return item

    # ---------- Opérations ---------- #

    def bind_product(self, item: Optional[ItemRef], product: Product) -> LineItem:
        """Crée une ligne (item=None) ou remplace le produit d'une ligne existante."""
        if not self.config.product_integration_enabled:
            raise ProductIntegrationDisabled("product integration is disabled")
        self._validate_product(product)

        idx = None if item is None else self._index_of(self._item_id(item))
        snapshot = CatalogSnapshot.from_product(product)
        fields: Dict[str, Any] = dict(
            product_ref=product.id,
            catalog_snapshot=snapshot,
            description=product.description or product.name or "",
            tax_code=snapshot.tax_code,
            unit=snapshot.unit,
            quantity=Decimal("1"),
            rate=snapshot.base_price,
            price_override=None,
            stock_warning=False,
        )

        if idx is None:
            candidate = LineItem(**fields)
        else:
            # rebind : on repart du nouveau snapshot, rien de l'ancien produit
            candidate = self._items[idx].model_copy(update=fields)

        warning, _ = self._stock_state(candidate, candidate.quantity)
        try:
            candidate = self._recompute(candidate.model_copy(update={"stock_warning": warning}))
        except InvalidOperation as e:
            raise InvalidProduct(f"product {product.sku or product.id} price is out of range") from e

        if idx is None:
            self._items.append(candidate)
            logger.info("ligne %s: produit %s rattaché", candidate.id, snapshot.sku)
        else:
            self._replace(idx, candidate)
            logger.info("ligne %s: produit remplacé par %s", candidate.id, snapshot.sku)
        return candidate

    def set_quantity(self, item: ItemRef, new_quantity: Any) -> Tuple[LineItem, Optional[StockExceeded]]:
        idx = self._index_of(self._item_id(item))
        current = self._items[idx]

        qty = to_decimal(new_quantity)
        if qty is None or qty <= 0:
            raise InvalidQuantity(f"quantity must be a positive number, got {new_quantity!r}")

        signal: Optional[StockExceeded] = None
        warning, exceeded = self._stock_state(current, qty)
        if exceeded and self.config.strict_stock:
            available = current.catalog_snapshot.stock_level  # type: ignore[union-attr]
            if available is None or available <= 0:
                raise InvalidQuantity(f"no stock available for {current.catalog_snapshot.sku}")  # type: ignore[union-attr]
            signal = StockExceeded(item_id=current.id, requested=qty, available=available)
            logger.warning(
                "ligne %s: quantité %s > stock %s, plafonnée", current.id, qty, available
            )
            qty = available

        try:
            candidate = self._recompute(current.model_copy(update={"quantity": qty, "stock_warning": warning}))
        except InvalidOperation as e:
            raise InvalidQuantity(f"quantity {new_quantity!r} is out of range") from e
        return self._replace(idx, candidate), signal

    def set_rate(self, item: ItemRef, new_rate: Any, reason: Optional[str] = None) -> LineItem:
        idx = self._index_of(self._item_id(item))
        current = self._items[idx]

        rate = to_decimal(new_rate)
        if rate is None or rate < 0:
            raise InvalidRate(f"rate must be a non-negative number, got {new_rate!r}")

        try:
            candidate = self._recompute(current.model_copy(update={"rate": rate}), reason=reason)
        except InvalidOperation as e:
            raise InvalidRate(f"rate {new_rate!r} is out of range") from e
        return self._replace(idx, candidate)

    def update_details(
        self,
        item: ItemRef,
        description: Optional[str] = None,
        tax_code: Optional[str] = None,
        unit: Optional[str] = None,
    ) -> LineItem:
        idx = self._index_of(self._item_id(item))
        update: Dict[str, Any] = {}
        if description is not None:
            update["description"] = description
        if tax_code is not None:
            update["tax_code"] = tax_code.strip()
        if unit is not None:
            update["unit"] = unit
        candidate = self._recompute(self._items[idx].model_copy(update=update))
        return self._replace(idx, candidate)

    def add_manual(self, description: str = "") -> LineItem:
        item = self._recompute(LineItem(description=description, quantity=Decimal("1"), rate=ZERO))
        self._items.append(item)
        return item

    def remove(self, item_id: ItemRef) -> bool:
        iid = self._item_id(item_id)
        before = len(self._items)
        self._items = [it for it in self._items if it.id != iid]
        removed = len(self._items) != before
        if removed:
            logger.info("ligne %s supprimée", iid)
        return removed

    def set_tax_table(self, tax_table: TaxTable) -> List[LineItem]:
        """Nouvelle configuration TVA de la facture : toutes les lignes sont recalculées."""
        self.tax_table = tax_table
        self._items = [self._recompute(it) for it in self._items]
        return self.items

    def totals(self) -> InvoiceTotals:
        return InvoiceTotals.from_lines(self._items)

    # ---------- Règles ---------- #

    @staticmethod
    def _validate_product(product: Product) -> None:
        if product is None:
            raise InvalidProduct("no product given")
        if product.base_price is None or not product.base_price.is_finite() or product.base_price <= 0:
            raise InvalidProduct(f"product {product.sku or product.id} has no valid price")
        if not (product.tax_code or "").strip():
            raise InvalidProduct(f"product {product.sku or product.id} has no tax code")

    def _stock_state(self, item: LineItem, qty: Decimal) -> Tuple[bool, bool]:
        """(avertissement, dépassement) pour une quantité donnée."""
        if not item.is_bound:
            return False, False
        stock = item.catalog_snapshot.stock_level  # type: ignore[union-attr]
        if stock is None:
            return False, False
        if qty > stock:
            return True, True
        return (stock - qty) < self.config.low_stock_band, False

    def tax_percent_for(self, item: LineItem) -> Decimal:
        code = (item.tax_code or "").strip()
        if code and code in self.tax_table.rates:
            return self.tax_table.rates[code]
        if item.is_bound:
            return item.catalog_snapshot.tax_rate  # type: ignore[union-attr]
        return self.tax_table.default_percent

    def _price_override(self, item: LineItem, reason: Optional[str]) -> Optional[PriceOverride]:
        if not item.is_bound:
            return None
        base = item.catalog_snapshot.base_price  # type: ignore[union-attr]
        deviation = abs(item.rate - base) / base * HUNDRED
        if deviation <= self.config.override_threshold_pct:
            return None
        if reason is None and item.price_override is not None:
            reason = item.price_override.reason
        return PriceOverride(
            original_price=base,
            override_price=item.rate,
            discount_percent=round_money((base - item.rate) / base * HUNDRED),
            reason=reason,
        )

    def _recompute(self, item: LineItem, reason: Optional[str] = None) -> LineItem:
        tax = compute_tax(item.rate, item.quantity, self.tax_percent_for(item))
        return item.model_copy(update={
            "taxable_base": tax.taxable_base,
            "tax_amount": tax.tax_amount,
            "total": tax.total,
            "price_override": self._price_override(item, reason),
            "stock_warning": item.stock_warning if item.is_bound else False,
        })
