import json
from decimal import Decimal

import pytest

from invoicing.models.product import Product
from invoicing.storage.json_repo import JsonRepository


@pytest.fixture
def repo(tmp_path):
    return JsonRepository(tmp_path / "items.json", entity_name="item", backup_keep=2)


def test_creates_empty_file(tmp_path, repo):
    assert json.loads((tmp_path / "items.json").read_text(encoding="utf-8")) == []


def test_add_get_update_delete(repo):
    repo.add({"id": "a", "v": 1})
    assert repo.get_by_id("a") == {"id": "a", "v": 1}

    repo.update({"id": "a", "v": 2})
    assert repo.get_by_id("a")["v"] == 2

    assert repo.delete("a") is True
    assert repo.delete("a") is False
    assert repo.list_all() == []


def test_add_duplicate_or_without_key_fails(repo):
    repo.add({"id": "a"})
    with pytest.raises(ValueError):
        repo.add({"id": "a"})
    with pytest.raises(ValueError):
        repo.add({"v": 1})


def test_update_missing_raises_and_upsert_adds(repo):
    with pytest.raises(KeyError):
        repo.update({"id": "x"})
    repo.upsert({"id": "x", "v": 1})
    repo.upsert({"id": "x", "v": 2})
    assert repo.list_all() == [{"id": "x", "v": 2}]


def test_models_are_stored_as_json(repo):
    repo.add(Product(id="p", sku="S", base_price=Decimal("18.50")))
    row = repo.get_by_id("p")
    assert row["base_price"] == "18.50"


def test_find(repo):
    repo.add({"id": "a", "kind": "x"})
    repo.add({"id": "b", "kind": "y"})
    assert [r["id"] for r in repo.find(lambda r: r["kind"] == "y")] == ["b"]
    assert repo.find_one(lambda r: r["kind"] == "z") is None


def test_backups_are_rotated(tmp_path, repo):
    for i in range(5):
        repo.upsert({"id": "a", "v": i})
    backups = list(tmp_path.glob("items.*.bak.json"))
    assert 0 < len(backups) <= 2


def test_identical_write_is_skipped(tmp_path):
    repo = JsonRepository(tmp_path / "items.json")
    repo.add({"id": "a"})
    before = set(tmp_path.glob("*.bak.json"))
    repo.update({"id": "a"})
    assert set(tmp_path.glob("*.bak.json")) == before


def test_corrupt_file_is_kept_aside(tmp_path):
    path = tmp_path / "items.json"
    path.write_text("[{oops", encoding="utf-8")
    repo = JsonRepository(path)
    assert repo.list_all() == []
    assert (tmp_path / "items.corrupt.json").read_text(encoding="utf-8") == "[{oops"


def test_non_object_entries_are_ignored(tmp_path):
    path = tmp_path / "items.json"
    path.write_text(json.dumps(["oops", 3, {"id": "a", "kind": "x"}]), encoding="utf-8")
    repo = JsonRepository(path)

    assert repo.get_by_id("a") == {"id": "a", "kind": "x"}
    assert repo.find(lambda r: r["kind"] == "x") == [{"id": "a", "kind": "x"}]
    repo.add({"id": "b"})
    repo.update({"id": "a", "kind": "y"})
    assert repo.delete("a") is True
    assert repo.list_all() == ["oops", 3, {"id": "b"}]
