from __future__ import annotations


class InvoicingError(Exception):
    """Base des erreurs du module facturation (aucune n'est fatale)."""


# ---------- Erreurs de saisie (l'opération est rejetée, la ligne reste intacte) ---------- #

class InvalidProduct(InvoicingError, ValueError):
    pass


class InvalidQuantity(InvoicingError, ValueError):
    pass


class InvalidRate(InvoicingError, ValueError):
    pass


class LineItemNotFound(InvoicingError, KeyError):
    def __init__(self, item_id: str):
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self) -> str:
        return f"line item {self.item_id} not found"


# ---------- Collaborateurs ---------- #

class LookupFailed(InvoicingError, RuntimeError):
    """Échec de la recherche catalogue, propagé tel quel à l'appelant."""


class ProductIntegrationDisabled(InvoicingError, RuntimeError):
    pass
