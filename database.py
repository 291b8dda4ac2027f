"""
Document store access

MongoDB connection from environment configuration plus the store capability
the repositories are written against. Documents are addressed by a
collection path (a tuple of segments, where nested collections alternate
collection and parent id: ("users", uid, "categories")) and a document id.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Protocol, Tuple

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import DocumentNotFoundError, InvalidQueryError, StoreError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None
if DATABASE_URL and DATABASE_NAME:
    # MongoClient connects lazily, so a missing server only shows up on first use
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


CollectionPath = Tuple[str, ...]


class DocumentRef(NamedTuple):
    path: CollectionPath
    id: str

    @property
    def key(self) -> str:
        return "/".join(self.path + (self.id,))


class Constraint(NamedTuple):
    field: str
    op: str  # "==", ">=" or "<"
    value: Any


RANGE_OPERATORS = (">=", "<")

MONGO_OPERATORS = {
    "==": "$eq",
    ">=": "$gte",
    "<": "$lt",
}


class DocumentStore(Protocol):
    def allocate_id(self, path: CollectionPath) -> str: ...

    def get(self, ref: DocumentRef) -> Optional[Dict[str, Any]]: ...

    def set(self, ref: DocumentRef, data: Dict[str, Any]) -> None: ...

    def update(self, ref: DocumentRef, data: Dict[str, Any]) -> None: ...

    def delete(self, ref: DocumentRef) -> None: ...

    def query(
        self,
        path: CollectionPath,
        constraints: Iterable[Constraint] = (),
        limit: Optional[int] = None,
        skip: Optional[int] = None,
    ) -> List[Dict[str, Any]]: ...


def collection_name(path: CollectionPath) -> str:
    """Flatten a collection path into a dotted MongoDB collection name."""
    if not path:
        raise InvalidQueryError("Empty collection path")
    for segment in path:
        if not segment or "." in segment or "$" in segment:
            raise InvalidQueryError(f"Invalid path segment {segment!r} in {path!r}")
    return ".".join(path)


def build_filter(constraints: Iterable[Constraint]) -> Dict[str, Any]:
    """
    Translate constraints into a MongoDB filter.

    Constraints on the same field merge into one operator document; a repeated
    operator on a field goes into an $and clause so neither value is lost.
    """
    query_filter: Dict[str, Any] = {}
    extra = []
    for constraint in constraints:
        op = MONGO_OPERATORS.get(constraint.op)
        if op is None:
            raise InvalidQueryError(f"Unsupported operator {constraint.op!r}")
        clause = query_filter.setdefault(constraint.field, {})
        if op in clause:
            extra.append({constraint.field: {op: constraint.value}})
        else:
            clause[op] = constraint.value
    if extra:
        query_filter["$and"] = extra
    return query_filter


def sort_order(constraints: Iterable[Constraint]) -> List[Tuple[str, int]]:
    """Range fields first, then document id, so skip/limit pages are stable."""
    order = []
    for constraint in constraints:
        if constraint.op in RANGE_OPERATORS and (constraint.field, ASCENDING) not in order:
            order.append((constraint.field, ASCENDING))
    order.append(("_id", ASCENDING))
    return order


def _strip_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc.pop("_id", None)
    return doc


class MongoStore:
    """DocumentStore on top of a pymongo Database. `_id` always equals the entity id."""

    def __init__(self, database):
        self.database = database

    def _collection(self, path: CollectionPath):
        return self.database[collection_name(path)]

    def allocate_id(self, path: CollectionPath) -> str:
        collection_name(path)
        return str(ObjectId())

    def get(self, ref: DocumentRef) -> Optional[Dict[str, Any]]:
        try:
            doc = self._collection(ref.path).find_one({"_id": ref.id})
        except PyMongoError as e:
            raise StoreError(f"Could not read {ref.key}: {e}") from e
        return _strip_id(doc) if doc is not None else None

    def set(self, ref: DocumentRef, data: Dict[str, Any]) -> None:
        try:
            self._collection(ref.path).replace_one({"_id": ref.id}, {**data, "_id": ref.id}, upsert=True)
        except PyMongoError as e:
            raise StoreError(f"Could not write {ref.key}: {e}") from e

    def update(self, ref: DocumentRef, data: Dict[str, Any]) -> None:
        changes = {k: v for k, v in data.items() if k != "_id"}
        try:
            res = self._collection(ref.path).update_one({"_id": ref.id}, {"$set": changes})
        except PyMongoError as e:
            raise StoreError(f"Could not update {ref.key}: {e}") from e
        if res.matched_count == 0:
            raise DocumentNotFoundError(ref.key)

    def delete(self, ref: DocumentRef) -> None:
        try:
            self._collection(ref.path).delete_one({"_id": ref.id})
        except PyMongoError as e:
            raise StoreError(f"Could not delete {ref.key}: {e}") from e

    def query(
        self,
        path: CollectionPath,
        constraints: Iterable[Constraint] = (),
        limit: Optional[int] = None,
        skip: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        constraints = list(constraints)
        query_filter = build_filter(constraints)
        name = collection_name(path)
        logger.debug("Querying %s with %s (limit=%s, skip=%s)", name, query_filter, limit, skip)
        try:
            cursor = self.database[name].find(query_filter).sort(sort_order(constraints))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return [_strip_id(doc) for doc in cursor]
        except PyMongoError as e:
            raise StoreError(f"Query on {name} failed: {e}") from e


def get_store() -> MongoStore:
    if db is None:
        raise StoreError("Database not configured: set DATABASE_URL and DATABASE_NAME")
    return MongoStore(db)
