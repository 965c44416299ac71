import json
from decimal import Decimal

import pytest

from invoicing.config import load_engine_config
from invoicing.errors import LookupFailed
from invoicing.models.product import Product
from invoicing.services.catalog_lookup import CatalogLookup


def _product(pid: str) -> Product:
    return Product(id=pid, sku=pid.upper(), name=pid, tax_code="1", base_price=Decimal("1"))


class FakeCatalog:
    def __init__(self):
        self.calls = []

    def search(self, query):
        self.calls.append(query)
        return [_product(query.replace(" ", "-"))]


@pytest.fixture
def fake():
    return FakeCatalog()


@pytest.fixture
def lookup(fake):
    return CatalogLookup(fake.search, min_query_length=2)


def test_issue_numbers_queries_increasingly(lookup):
    first = lookup.issue("ca")
    second = lookup.issue("cab")
    assert second.seq > first.seq
    assert lookup.latest == second


def test_stale_response_is_discarded(lookup, fake):
    old = lookup.issue("ca")
    new = lookup.issue("cab")

    # la réponse récente arrive d'abord
    assert [p.id for p in lookup.complete(new, lookup.fetch(new))] == ["cab"]
    assert lookup.complete(old, lookup.fetch(old)) is None
    assert [p.id for p in lookup.results] == ["cab"]


def test_older_response_arriving_first_is_not_applied(lookup):
    old = lookup.issue("ca")
    new = lookup.issue("cab")
    assert lookup.complete(old, [_product("ca")]) is None
    assert lookup.results == []
    assert lookup.complete(new, [_product("cab")]) is not None


def test_same_query_in_flight_is_debounced(lookup):
    first = lookup.issue("câble")
    again = lookup.issue("  câble ")
    assert again == first


def test_same_query_after_completion_gets_new_ticket(lookup):
    first = lookup.issue("câble")
    lookup.complete(first, [])
    assert lookup.issue("câble").seq > first.seq


def test_short_query_clears_results_and_invalidates_pending(lookup):
    assert lookup.search("cab") is not None
    pending = lookup.issue("cable")

    assert lookup.issue("c") is None
    assert lookup.results == []
    assert lookup.complete(pending, [_product("cable")]) is None


def test_search_runs_and_applies(lookup, fake):
    results = lookup.search("micro sm")
    assert [p.id for p in results] == ["micro-sm"]
    assert fake.calls == ["micro sm"]


def test_completing_twice_is_ignored(lookup):
    t = lookup.issue("abc")
    assert lookup.complete(t, [_product("abc")]) is not None
    assert lookup.complete(t, []) is None
    assert [p.id for p in lookup.results] == ["abc"]


@pytest.mark.parametrize("error", [OSError("network down"), ValueError("bad payload")])
def test_collaborator_errors_become_lookup_failed(error):
    def search(query):
        raise error

    lookup = CatalogLookup(search)
    lookup.results = [_product("kept")]
    with pytest.raises(LookupFailed):
        lookup.search("abc")
    assert [p.id for p in lookup.results] == ["kept"]


def test_lookup_failed_is_propagated_unchanged():
    original = LookupFailed("catalog unavailable")

    def search(query):
        raise original

    with pytest.raises(LookupFailed) as exc:
        CatalogLookup(search).search("abc")
    assert exc.value is original


def test_failed_lookup_can_be_retried_with_same_ticket(fake):
    attempts = []

    def flaky(query):
        attempts.append(query)
        if len(attempts) == 1:
            raise OSError("timeout")
        return fake.search(query)

    lookup = CatalogLookup(flaky)
    t = lookup.issue("abc")
    with pytest.raises(LookupFailed):
        lookup.fetch(t)
    assert lookup.issue("abc") == t
    assert lookup.complete(t, lookup.fetch(t)) is not None


def test_from_config_applies_query_length_and_limit(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"products": {"min_query_length": 3, "search_limit": 1}}), encoding="utf-8")
    config = load_engine_config(path, environ={})

    lookup = CatalogLookup.from_config(lambda q: [_product("a"), _product("b")], config)
    assert lookup.issue("ab") is None
    assert lookup.search("ab") == []
    assert [p.id for p in lookup.search("abc")] == ["a"]
