from typing import Dict, Tuple

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import AccountService
from database import DocumentRef
from errors import DocumentNotFoundError, StoreError
from main import app
from repositories import Repositories


def _matches(doc, constraint) -> bool:
    if constraint.field not in doc:
        return False
    value = doc[constraint.field]
    if constraint.op == "==":
        return value == constraint.value
    # Range comparisons only hold between values of the same type
    if type(value) is not type(constraint.value):
        return False
    if constraint.op == ">=":
        return value >= constraint.value
    return value < constraint.value


class MemoryStore:
    """In-memory DocumentStore with MongoStore's ordering, plus failure injection."""

    def __init__(self):
        self.collections: Dict[Tuple[str, ...], Dict[str, dict]] = {}
        self.failures = set()

    def fail(self, op: str, path) -> None:
        self.failures.add((op, tuple(path)))

    def _check(self, op: str, path) -> None:
        if (op, tuple(path)) in self.failures:
            raise StoreError(f"{op} on {'/'.join(path)} failed")

    def docs(self, *path) -> Dict[str, dict]:
        return self.collections.setdefault(tuple(path), {})

    def allocate_id(self, path) -> str:
        return str(ObjectId())

    def get(self, ref: DocumentRef):
        self._check("get", ref.path)
        doc = self.docs(*ref.path).get(ref.id)
        return dict(doc) if doc is not None else None

    def set(self, ref: DocumentRef, data) -> None:
        self._check("set", ref.path)
        self.docs(*ref.path)[ref.id] = dict(data)

    def update(self, ref: DocumentRef, data) -> None:
        self._check("update", ref.path)
        docs = self.docs(*ref.path)
        if ref.id not in docs:
            raise DocumentNotFoundError(ref.key)
        docs[ref.id].update(data)

    def delete(self, ref: DocumentRef) -> None:
        self._check("delete", ref.path)
        self.docs(*ref.path).pop(ref.id, None)

    def query(self, path, constraints=(), limit=None, skip=None):
        self._check("query", path)
        constraints = list(constraints)
        range_fields = []
        for c in constraints:
            if c.op != "==" and c.field not in range_fields:
                range_fields.append(c.field)
        rows = [
            (doc_id, doc)
            for doc_id, doc in self.docs(*path).items()
            if all(_matches(doc, c) for c in constraints)
        ]
        rows.sort(key=lambda row: tuple(row[1][f] for f in range_fields) + (row[0],))
        docs = [dict(doc) for _, doc in rows][skip or 0:]
        if limit:
            docs = docs[:limit]
        return docs


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def repos(store):
    return Repositories(store)


@pytest.fixture
def accounts(store):
    return AccountService(store)


@pytest.fixture
def client(repos, accounts):
    app.state.repositories = repos
    app.state.accounts = accounts
    try:
        yield TestClient(app)
    finally:
        app.state.repositories = None
        app.state.accounts = None


@pytest.fixture
def user_role(repos):
    role = repos.roles.new(name="user")
    return repos.roles.save(role)


@pytest.fixture
def signup(client, user_role):
    """Create a user through the API; returns (user json, auth headers)."""

    def _signup(name="Ada Lovelace", email="ada@example.com", password="secret123"):
        r = client.post("/api/users", json={"name": name, "email": email, "password": password, "role": "user"})
        assert r.status_code == 200, r.text
        body = r.json()
        return body["user"], {"x-token": body["token"]}

    return _signup
