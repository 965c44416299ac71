from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from invoicing.config import DATA_DIR
from invoicing.errors import LookupFailed
from invoicing.models.common import to_decimal
from invoicing.models.product import Product
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)

# anciennes clés de prix (centimes puis unités)
_CENT_KEYS = ("price_cents", "price_cent", "price_ttc_cent")
_UNIT_KEYS = ("base_price", "price", "price_eur")


class CatalogService:
    """
    Catalogue produits (data/products.json).
    - Hydrate JSON -> Product en normalisant les anciennes clés
      (ref -> sku, label -> name, hsn -> tax_code, price_ttc_cent -> base_price, stock -> stock_level)
    - Recherche texte pour l'autocomplétion des lignes de facture
    - Upsert "smart" : id, puis sku, puis nom unique
    """

    def __init__(
        self,
        products_repo: Optional[JsonRepository] = None,
        data_dir: Optional[str | Path] = None,
    ) -> None:
        base = Path(data_dir) if data_dir else DATA_DIR
        self.products_repo = products_repo or JsonRepository(
            base / "products.json", entity_name="product", key="id"
        )

    # ---------- Helpers (prix & normalisation) ---------- #

    @staticmethod
    def _parse_price(payload: Dict[str, Any]) -> Decimal:
        """
        Accepte:
          - price_cents / price_cent / price_ttc_cent (int, centimes)
          - base_price / price / price_eur (str/float, ex "18,50")
        Retourne un Decimal >= 0
        """
        for k in _UNIT_KEYS:
            d = to_decimal(payload.get(k))
            if d is not None:
                return max(Decimal("0"), d)
        for k in _CENT_KEYS:
            d = to_decimal(payload.get(k))
            if d is not None:
                return max(Decimal("0"), d) / 100
        return Decimal("0")

    def _normalize(self, row: Dict[str, Any]) -> Dict[str, Any]:
        d = dict(row)
        if not d.get("sku") and d.get("ref"):
            d["sku"] = str(d["ref"]).strip()
        if not d.get("name") and d.get("label"):
            d["name"] = d["label"]
        if not d.get("tax_code") and d.get("hsn"):
            d["tax_code"] = str(d["hsn"]).strip()
        if d.get("stock_level") is None and d.get("stock") is not None:
            d["stock_level"] = d["stock"]
        if d.get("unit") is None:
            d["unit"] = ""
        d["base_price"] = self._parse_price(d)
        return d

    def _hydrate(self, row: Optional[Dict[str, Any]]) -> Product:
        if row is None:
            raise KeyError("product not found")
        return Product.model_validate(self._normalize(row))

    def _hydrate_all(self) -> List[Product]:
        out: List[Product] = []
        for row in self.products_repo.list_all():
            if not isinstance(row, Mapping):
                logger.warning("produit ignoré (entrée non objet): %r", row)
                continue
            try:
                out.append(self._hydrate(row))
            except ValidationError as e:
                # ligne catalogue invalide : ignorée pour ne pas bloquer la recherche
                logger.warning("produit ignoré (%s): %s", row.get("id"), e.error_count())
        return out

    # ---------- Recherche ---------- #

    @staticmethod
    def _matches(p: Product, needle: str) -> bool:
        fields = (p.sku, p.name, p.description, p.category, p.tax_code)
        return any(needle in (f or "").casefold() for f in fields)

    def search_products(self, query: str, limit: Optional[int] = None) -> List[Product]:
        """Produits actifs dont sku/nom/description/catégorie/code TVA contient `query`."""
        needle = (query or "").strip().casefold()
        if not needle:
            return []
        try:
            products = self._hydrate_all()
        except OSError as e:
            raise LookupFailed(f"catalog unavailable: {e}") from e

        found = [p for p in products if p.active and self._matches(p, needle)]
        # sku exact en premier, puis ordre alphabétique
        found.sort(key=lambda p: (p.sku.casefold() != needle, p.name.casefold()))
        return found[:limit] if limit else found

    def validate_stock(self, product_ref: str, quantity: Decimal) -> bool:
        """Contrôle avant enregistrement : le stock actuel couvre-t-il la quantité ?"""
        try:
            p = self.get_product(product_ref)
        except KeyError:
            return False
        if p.stock_level is None:
            return True
        return Decimal(quantity) <= p.stock_level

    # ---------- CRUD ---------- #

    def list_products(self) -> List[Product]:
        return self._hydrate_all()

    def get_product(self, product_id: str) -> Product:
        return self._hydrate(self.products_repo.get_by_id(product_id))

    def add_product(self, p: Product) -> Dict[str, Any]:
        return self.products_repo.add(p)

    def update_product(self, p: Product) -> Dict[str, Any]:
        payload = p.model_dump(mode="json")
        # les entrées non objet sont écartées à la réécriture
        rows = [r for r in self.products_repo.list_all() if isinstance(r, Mapping)]

        # priorité: id -> sku -> nom (si unique)
        idx = next((i for i, r in enumerate(rows) if str(r.get("id")) == p.id), None)
        if idx is None and p.sku:
            idx = next(
                (i for i, r in enumerate(rows) if (r.get("sku") or r.get("ref") or "").strip() == p.sku.strip()),
                None,
            )
        if idx is None and p.name:
            same_name = [i for i, r in enumerate(rows) if (r.get("name") or r.get("label") or "").strip() == p.name.strip()]
            if len(same_name) == 1:
                idx = same_name[0]

        if idx is None:
            return self.products_repo.add(payload)

        payload["id"] = rows[idx].get("id") or p.id
        rows[idx] = payload
        self.products_repo.replace_all(rows)
        return payload

    def delete_product(self, product_id: str) -> bool:
        return self.products_repo.delete(product_id)
