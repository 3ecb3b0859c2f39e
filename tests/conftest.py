"""
Common test fixtures and an in-memory stand-in for the Motor client.

The fake implements just enough of the Motor API for the connector: ping, database and collection lookup, cursors with
sort/skip/limit, the CRUD and index calls the connector makes, and unique indexes that raise the same pymongo
exceptions a server would.
"""
from copy import deepcopy
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import BulkWriteError, DuplicateKeyError, OperationFailure, ServerSelectionTimeoutError

from doclink.connector import Connector
from doclink.retry import RetryOptions


MISSING = object()

OPERATORS = {
    "$eq": lambda value, operand: value == operand,
    "$ne": lambda value, operand: value != operand,
    "$in": lambda value, operand: value in operand,
    "$nin": lambda value, operand: value not in operand,
    "$gt": lambda value, operand: value is not MISSING and value > operand,
    "$gte": lambda value, operand: value is not MISSING and value >= operand,
    "$lt": lambda value, operand: value is not MISSING and value < operand,
    "$lte": lambda value, operand: value is not MISSING and value <= operand,
}


def matches(document: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        value = document.get(key, MISSING)
        if isinstance(condition, dict) and condition and all(name.startswith("$") for name in condition):
            if not all(OPERATORS[name](value, operand) for name, operand in condition.items()):
                return False

        elif value != condition:
            return False

    return True


class FakeCursor:
    def __init__(self, documents: list[dict[str, Any]]):
        self._documents = documents
        self._sort: list[tuple[str, int]] = []
        self._skip = 0
        self._limit = 0
        self.batch = None

    def sort(self, keys):
        self._sort = list(keys)
        return self

    def skip(self, count: int):
        self._skip = count
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def batch_size(self, size: int):
        self.batch = size
        return self

    def _results(self) -> list[dict[str, Any]]:
        documents = list(self._documents)
        for field, direction in reversed(self._sort):
            documents.sort(key=lambda document: document.get(field), reverse=direction < 0)

        documents = documents[self._skip:]
        if self._limit:
            documents = documents[:self._limit]

        return [deepcopy(document) for document in documents]

    async def to_list(self, length=None):
        return self._results()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for document in self._results():
            yield document


class FakeCollection:
    def __init__(self, server: "FakeServer", database_name: str, name: str):
        self.server = server
        self.database_name = database_name
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.indexes: dict[str, dict[str, Any]] = {"_id_": {"v": 2, "key": {"_id": 1}, "name": "_id_"}}
        self.calls: list[tuple[str, tuple, dict]] = []
        self.failure: Exception | None = None

    def _record(self, name: str, /, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if self.failure:
            raise self.failure

    def _duplicate_error(self, index_name: str, field: str, value: Any) -> dict[str, Any]:
        error = {
            "index": 0,
            "code": 11000,
            "errmsg": (
                f"E11000 duplicate key error collection: {self.database_name}.{self.name} "
                f'index: {index_name} dup key: {{ {field}: "{value}" }}'
            ),
        }
        if self.server.structured_errors:
            error |= {"keyPattern": {field: 1}, "keyValue": {field: value}}

        return error

    def _store(self, document: dict[str, Any]):
        for index in self.indexes.values():
            if index["name"] != "_id_" and not index.get("unique"):
                continue

            fields = list(index["key"])
            for existing in self.documents:
                if all(existing.get(field) == document.get(field) for field in fields):
                    details = self._duplicate_error(index["name"], fields[0], document.get(fields[0]))
                    raise DuplicateKeyError(details["errmsg"], 11000, details)

        self.documents.append(deepcopy(document))

    async def find_one(self, query=None, projection=None):
        self._record("find_one", query, projection=projection)
        for document in self.documents:
            if matches(document, query or {}):
                if projection:
                    return {field: document[field] for field in projection if field in document}

                return deepcopy(document)

        return None

    def find(self, query=None):
        self._record("find", query)
        return FakeCursor([document for document in self.documents if matches(document, query or {})])

    async def count_documents(self, query):
        self._record("count_documents", query)
        return sum(1 for document in self.documents if matches(document, query))

    async def insert_one(self, document):
        self._record("insert_one", document)
        document.setdefault("_id", ObjectId())
        self._store(document)
        return SimpleNamespace(inserted_id=document["_id"], acknowledged=self.server.acknowledged)

    async def insert_many(self, documents, ordered=True):
        self._record("insert_many", documents, ordered=ordered)
        for document in documents:
            document.setdefault("_id", ObjectId())

        write_errors = []
        for index, document in enumerate(documents):
            try:
                self._store(document)
            except DuplicateKeyError as error:
                write_errors.append(error.details | {"index": index})
                if ordered:
                    break

        if write_errors:
            raise BulkWriteError(
                {
                    "writeErrors": write_errors,
                    "writeConcernErrors": [],
                    "nInserted": len(documents) - len(write_errors),
                }
            )

        return SimpleNamespace(inserted_ids=[document["_id"] for document in documents], acknowledged=True)

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        self._record("find_one_and_update", query, update, return_document=return_document)
        for document in self.documents:
            if matches(document, query):
                before = deepcopy(document)
                self._apply(document, update)
                return deepcopy(document) if return_document == ReturnDocument.AFTER else before

        return None

    async def update_many(self, query, update):
        self._record("update_many", query, update)
        modified = 0
        for document in self.documents:
            if matches(document, query):
                before = deepcopy(document)
                self._apply(document, update)
                modified += before != document

        return SimpleNamespace(matched_count=modified, modified_count=modified, acknowledged=True)

    @staticmethod
    def _apply(document, update):
        for field, value in update.get("$set", {}).items():
            document[field] = value

        for field, amount in update.get("$inc", {}).items():
            document[field] = document.get(field, 0) + amount

    async def delete_one(self, query):
        self._record("delete_one", query)
        for document in self.documents:
            if matches(document, query):
                self.documents.remove(document)
                return SimpleNamespace(deleted_count=1, acknowledged=True)

        return SimpleNamespace(deleted_count=0, acknowledged=True)

    async def delete_many(self, query):
        self._record("delete_many", query)
        remaining = [document for document in self.documents if not matches(document, query)]
        deleted = len(self.documents) - len(remaining)
        self.documents = remaining
        return SimpleNamespace(deleted_count=deleted, acknowledged=True)

    async def create_index(self, keys, name=None, unique=False, **options):
        self._record("create_index", keys, name=name, unique=unique, **options)
        name = name or "_".join(f"{field}_{direction}" for field, direction in keys)
        self.indexes.setdefault(name, {"v": 2, "key": dict(keys), "name": name, "unique": unique, **options})
        return name

    def list_indexes(self):
        self._record("list_indexes")
        return FakeCursor(list(self.indexes.values()))

    async def drop_index(self, name):
        self._record("drop_index", name)
        if name not in self.indexes:
            raise OperationFailure(f"index not found with name [{name}]", 27)

        del self.indexes[name]


class FakeDatabase:
    def __init__(self, server: "FakeServer", name: str):
        self.server = server
        self.name = name

    def __getitem__(self, name: str) -> FakeCollection:
        return self.server.collection(self.name, name)


class FakeAdmin:
    def __init__(self, server: "FakeServer"):
        self.server = server

    async def command(self, name: str):
        self.server.pings += 1
        if self.server.failing_pings:
            self.server.failing_pings -= 1
            raise ServerSelectionTimeoutError("No servers found yet")

        if not self.server.reachable:
            raise ServerSelectionTimeoutError("localhost:27017: [Errno 111] Connection refused")

        return {"ok": 1.0}


class FakeClient:
    def __init__(self, server: "FakeServer", uri: str, **options):
        self.server = server
        self.uri = uri
        self.options = options
        self.closed = False
        self.admin = FakeAdmin(server)

    def __getitem__(self, name: str) -> FakeDatabase:
        return FakeDatabase(self.server, name)

    def close(self):
        self.closed = True


class FakeServer:
    """Shared state for every fake client created through `connect`, so data survives reconnects."""
    def __init__(self):
        self.collections: dict[tuple[str, str], FakeCollection] = {}
        self.clients: list[FakeClient] = []
        self.reachable = True
        self.failing_pings = 0
        self.pings = 0
        self.structured_errors = True
        self.acknowledged = True

    def connect(self, uri: str, **options) -> FakeClient:
        client = FakeClient(self, uri, **options)
        self.clients.append(client)
        return client

    def collection(self, database_name: str, name: str) -> FakeCollection:
        key = database_name, name
        if key not in self.collections:
            self.collections[key] = FakeCollection(self, database_name, name)

        return self.collections[key]


NO_WAIT = RetryOptions(max_attempts=1, base_delay=0, max_delay=0)


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def connector(server):
    """Fixture that provides a connector connected to the fake server with "test-db" selected."""
    connector = Connector(client_factory=server.connect)
    await connector.connect("mongodb://fake:27017", "test-db", NO_WAIT)
    yield connector
    await connector.close()


@pytest.fixture
def users(server) -> FakeCollection:
    return server.collection("test-db", "users")
