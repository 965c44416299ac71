# invoicing/services/invoice_service.py
from __future__ import annotations
import logging
import os
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from invoicing.config import DATA_DIR, EngineConfig
from invoicing.models.common import to_decimal
from invoicing.models.invoice import Invoice, InvoiceTotals
from invoicing.models.line_item import LineItem
from invoicing.services.catalog_service import CatalogService
from invoicing.services.line_item_engine import LineItemEngine
from invoicing.services.tax_service import compute_tax
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)

INVOICES_JSON = DATA_DIR / "invoices.json"

# clés des lignes écrites avant l'intégration catalogue
_LEGACY_LINE_KEYS = ("label", "qty", "unit_price_ttc_cent", "total_line_ttc_cent")


# ---------- Lignes héritées ----------
def _legacy_line_id(invoice_id: str, index: int) -> str:
    # id stable : une ligne ancienne relue deux fois garde le même id
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"invoice/{invoice_id}/line/{index}"))


def _cents(v: Any) -> Optional[Decimal]:
    d = to_decimal(v)
    return None if d is None else d / 100


def _hydrate_line(d: Dict[str, Any], invoice_id: str, index: int) -> Dict[str, Any]:
    """
    Ligne stockée -> dict LineItem.
    Les lignes au nouveau format sont reprises telles quelles (champs dérivés
    compris) ; les anciennes (label/qty/centimes) deviennent des lignes manuelles.
    """
    out = dict(d)
    is_legacy = "quantity" not in out and any(k in out for k in _LEGACY_LINE_KEYS)
    if is_legacy:
        out["description"] = out.get("description") or out.get("label") or ""
        out["quantity"] = out.get("qty", 1)
        out["rate"] = _cents(out.get("unit_price_ttc_cent")) or Decimal("0")
        total = _cents(out.get("total_line_ttc_cent"))
        if total is not None:
            out.setdefault("total", total)
            out.setdefault("taxable_base", total)
            out.setdefault("tax_amount", Decimal("0"))
        out["product_ref"] = None
        out["catalog_snapshot"] = None

    if not out.get("id"):
        out["id"] = _legacy_line_id(invoice_id, index)

    if "total" not in out:
        qty = to_decimal(out.get("quantity")) or Decimal("1")
        rate = to_decimal(out.get("rate")) or Decimal("0")
        tax = compute_tax(rate, qty, Decimal("0"))
        out.update(taxable_base=tax.taxable_base, tax_amount=tax.tax_amount, total=tax.total)
    return out


# ---------- Service ----------
class InvoiceService:
    def __init__(self, path: os.PathLike | str = INVOICES_JSON):
        self.repo = JsonRepository(path, entity_name="invoice", key="id")

    def _hydrate(self, d: Dict[str, Any]) -> Invoice:
        data = dict(d)
        inv_id = str(data.get("id") or "")
        raw_lines = data.get("lines") or data.get("items") or []
        data["lines"] = [_hydrate_line(ln, inv_id, i) for i, ln in enumerate(raw_lines) if isinstance(ln, dict)]
        data.pop("items", None)
        # totaux toujours dérivés des lignes
        data["totals"] = InvoiceTotals.from_lines(LineItem.model_validate(ln) for ln in data["lines"])
        return Invoice.model_validate(data)

    # ----------- CRUD/list -----------
    def list_invoices(self) -> List[Invoice]:
        out: List[Invoice] = []
        for d in self.repo.list_all():
            if not isinstance(d, dict):
                logger.warning("facture ignorée (entrée non objet): %r", d)
                continue
            try:
                out.append(self._hydrate(d))
            except ValidationError as e:
                logger.warning("facture %s ignorée: %s", d.get("id"), e.error_count())
                continue
        return out

    def get_by_id(self, invoice_id: str) -> Optional[Invoice]:
        d = self.repo.get_by_id(invoice_id)
        if d is None:
            return None
        try:
            return self._hydrate(d)
        except ValidationError as e:
            logger.warning("facture %s illisible: %s", invoice_id, e.error_count())
            return None

    def delete_invoice(self, invoice_id: str) -> bool:
        return self.repo.delete(invoice_id)

    def save_invoice(self, inv: Invoice, catalog: Optional[CatalogService] = None) -> List[str]:
        """
        Recalcule les totaux, enregistre (upsert) et, si un catalogue est fourni,
        vérifie le stock actuel des lignes rattachées.
        Retourne les ids de lignes dont le stock ne couvre plus la quantité (indicatif).
        """
        inv.totals = InvoiceTotals.from_lines(inv.lines)
        inv.touch()

        short: List[str] = []
        if catalog is not None:
            for ln in inv.lines:
                if ln.product_ref is not None and not catalog.validate_stock(ln.product_ref, ln.quantity):
                    logger.warning("facture %s, ligne %s: stock insuffisant", inv.id, ln.id)
                    short.append(ln.id)

        self.repo.upsert(inv)
        logger.info("facture %s enregistrée (%d lignes, total %s)", inv.id, len(inv.lines), inv.totals.total)
        return short

    # ----------- moteur -----------
    @staticmethod
    def open_engine(inv: Invoice, config: Optional[EngineConfig] = None) -> LineItemEngine:
        return LineItemEngine(config=config, items=inv.lines, tax_table=inv.tax)

    @staticmethod
    def apply_engine(inv: Invoice, engine: LineItemEngine) -> Invoice:
        inv.lines = engine.items
        inv.tax = engine.tax_table
        inv.totals = engine.totals()
        inv.touch()
        return inv
