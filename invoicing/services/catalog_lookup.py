from __future__ import annotations

import logging
from typing import Callable, List, NamedTuple, Optional, Sequence

from invoicing.config import EngineConfig
from invoicing.errors import InvoicingError, LookupFailed
from invoicing.models.product import Product

logger = logging.getLogger(__name__)

SearchFn = Callable[[str], Sequence[Product]]


class LookupTicket(NamedTuple):
    seq: int
    query: str


class CatalogLookup:
    """
    Séquencement des recherches catalogue de la zone de saisie.

    Chaque requête émise reçoit un numéro croissant ; seule la réponse de la
    dernière requête émise est appliquée, les réponses périmées sont jetées.
    Une requête identique à celle en cours réutilise son ticket (anti-rebond).

        lookup = CatalogLookup.from_config(catalog.search_products, load_engine_config())
        ticket = lookup.issue("câble")
        results = lookup.complete(ticket, lookup.fetch(ticket))  # None si périmé
    """

    def __init__(self, search: SearchFn, min_query_length: int = 2, limit: Optional[int] = None) -> None:
        self._search = search
        self.min_query_length = min_query_length
        self.limit = limit
        self._issued: Optional[LookupTicket] = None
        self._seq = 0
        self._applied_seq = 0
        self.results: List[Product] = []

    @classmethod
    def from_config(cls, search: SearchFn, config: EngineConfig) -> "CatalogLookup":
        return cls(search, min_query_length=config.min_query_length, limit=config.search_limit)

    @staticmethod
    def _normalize(query: str) -> str:
        return " ".join((query or "").split())

    @property
    def latest(self) -> Optional[LookupTicket]:
        return self._issued

    def issue(self, query: str) -> Optional[LookupTicket]:
        q = self._normalize(query)
        if self._issued is not None and self._issued.query == q and self._issued.seq > self._applied_seq:
            return self._issued

        self._seq += 1
        if len(q) < self.min_query_length:
            # requête trop courte : rien à chercher, les résultats sont vidés
            self._issued = None
            self._applied_seq = self._seq
            self.results = []
            return None

        self._issued = LookupTicket(self._seq, q)
        return self._issued

    def fetch(self, ticket: LookupTicket) -> List[Product]:
        try:
            found = list(self._search(ticket.query))
        except LookupFailed:
            raise
        except (InvoicingError, OSError, ValueError) as e:
            raise LookupFailed(f"search {ticket.query!r} failed: {e}") from e
        return found[: self.limit] if self.limit else found

    def complete(self, ticket: LookupTicket, results: Sequence[Product]) -> Optional[List[Product]]:
        if self._issued is None or ticket.seq != self._issued.seq or ticket.seq <= self._applied_seq:
            logger.debug("réponse périmée ignorée (#%s %r)", ticket.seq, ticket.query)
            return None
        self._applied_seq = ticket.seq
        self.results = list(results)
        return self.results

    def search(self, query: str) -> Optional[List[Product]]:
        """Émet, exécute et applique une recherche en une fois."""
        ticket = self.issue(query)
        if ticket is None:
            return self.results
        return self.complete(ticket, self.fetch(ticket))
