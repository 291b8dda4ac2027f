from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo import ASCENDING
from pymongo.errors import ServerSelectionTimeoutError

import database
from database import Constraint, DocumentRef, MongoStore, build_filter, collection_name, sort_order
from errors import DocumentNotFoundError, InvalidQueryError, StoreError


@pytest.fixture
def mongo():
    db = MagicMock()
    coll = MagicMock()
    db.__getitem__.return_value = coll
    return db, coll


def test_collection_name_flattens_nested_paths():
    assert collection_name(("products",)) == "products"
    assert collection_name(("users", "U1", "categories", "C1", "products")) == "users.U1.categories.C1.products"


@pytest.mark.parametrize("path", [(), ("users", "a.b", "categories"), ("users", "", "categories"), ("$cmd",)])
def test_collection_name_rejects_bad_segments(path):
    with pytest.raises(InvalidQueryError):
        collection_name(path)


def test_build_filter_merges_constraints_per_field():
    query_filter = build_filter([
        Constraint("state", "==", True),
        Constraint("lower", ">=", "cof"),
        Constraint("lower", "<", "cog"),
    ])
    assert query_filter == {"state": {"$eq": True}, "lower": {"$gte": "cof", "$lt": "cog"}}


def test_build_filter_keeps_repeated_operators():
    query_filter = build_filter([Constraint("lower", "==", "a"), Constraint("lower", "==", "b")])
    assert query_filter == {"lower": {"$eq": "a"}, "$and": [{"lower": {"$eq": "b"}}]}


def test_build_filter_rejects_unknown_operator():
    with pytest.raises(InvalidQueryError):
        build_filter([Constraint("lower", "!=", "a")])


def test_sort_order_puts_range_fields_first():
    constraints = [Constraint("state", "==", True), Constraint("lower", ">=", "a"), Constraint("lower", "<", "b")]
    assert sort_order(constraints) == [("lower", ASCENDING), ("_id", ASCENDING)]
    assert sort_order([]) == [("_id", ASCENDING)]


def test_allocate_id_is_an_object_id(mongo):
    store = MongoStore(mongo[0])
    assert ObjectId.is_valid(store.allocate_id(("products",)))


def test_get_strips_mongo_id(mongo):
    db, coll = mongo
    coll.find_one.return_value = {"_id": "p1", "id": "p1", "name": "Mug"}
    store = MongoStore(db)

    assert store.get(DocumentRef(("products",), "p1")) == {"id": "p1", "name": "Mug"}
    db.__getitem__.assert_called_with("products")
    coll.find_one.assert_called_with({"_id": "p1"})

    coll.find_one.return_value = None
    assert store.get(DocumentRef(("products",), "p2")) is None


def test_set_upserts_with_entity_id(mongo):
    db, coll = mongo
    MongoStore(db).set(DocumentRef(("users", "U1", "categories"), "C1"), {"id": "C1", "name": "Tea"})
    db.__getitem__.assert_called_with("users.U1.categories")
    coll.replace_one.assert_called_once_with({"_id": "C1"}, {"id": "C1", "name": "Tea", "_id": "C1"}, upsert=True)


def test_update_sets_fields_and_requires_existing_document(mongo):
    db, coll = mongo
    coll.update_one.return_value = MagicMock(matched_count=1)
    store = MongoStore(db)
    store.update(DocumentRef(("products",), "p1"), {"name": "Mug", "_id": "ignored"})
    coll.update_one.assert_called_once_with({"_id": "p1"}, {"$set": {"name": "Mug"}})

    coll.update_one.return_value = MagicMock(matched_count=0)
    with pytest.raises(DocumentNotFoundError) as exc:
        store.update(DocumentRef(("products",), "p2"), {"name": "Mug"})
    assert exc.value.key == "products/p2"


def test_delete(mongo):
    db, coll = mongo
    MongoStore(db).delete(DocumentRef(("products",), "p1"))
    coll.delete_one.assert_called_once_with({"_id": "p1"})


def test_query_translates_constraints_and_pagination(mongo):
    db, coll = mongo
    cursor = MagicMock()
    coll.find.return_value.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.__iter__.return_value = iter([{"_id": "c1", "id": "c1", "lower": "coffee"}])

    docs = MongoStore(db).query(
        ("categories",),
        [Constraint("lower", ">=", "cof"), Constraint("lower", "<", "cog")],
        limit=5,
        skip=10,
    )

    assert docs == [{"id": "c1", "lower": "coffee"}]
    coll.find.assert_called_once_with({"lower": {"$gte": "cof", "$lt": "cog"}})
    coll.find.return_value.sort.assert_called_once_with([("lower", ASCENDING), ("_id", ASCENDING)])
    cursor.skip.assert_called_once_with(10)
    cursor.limit.assert_called_once_with(5)


def test_query_without_pagination_does_not_skip_or_limit(mongo):
    db, coll = mongo
    cursor = MagicMock()
    coll.find.return_value.sort.return_value = cursor
    cursor.__iter__.return_value = iter([])

    assert MongoStore(db).query(("products",)) == []
    coll.find.assert_called_once_with({})
    cursor.skip.assert_not_called()
    cursor.limit.assert_not_called()


def test_driver_errors_become_store_errors(mongo):
    db, coll = mongo
    coll.find_one.side_effect = ServerSelectionTimeoutError("no servers")
    coll.find.side_effect = ServerSelectionTimeoutError("no servers")
    coll.replace_one.side_effect = ServerSelectionTimeoutError("no servers")
    store = MongoStore(db)

    with pytest.raises(StoreError):
        store.get(DocumentRef(("products",), "p1"))
    with pytest.raises(StoreError):
        store.query(("products",))
    with pytest.raises(StoreError):
        store.set(DocumentRef(("products",), "p1"), {})


def test_get_store_requires_configuration(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    with pytest.raises(StoreError):
        database.get_store()

    fake_db = MagicMock()
    monkeypatch.setattr(database, "db", fake_db)
    assert database.get_store().database is fake_db
