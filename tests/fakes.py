"""In-memory stand-ins for the async MongoDB driver and the Redis cache.

FakeMongoServer holds every database; each FakeMongoClient built by
server.client_factory sees the same data, so reconnects keep state. Only
the driver surface the routing layer uses is implemented: single-document
CRUD, cursors with sort/skip/limit, unique indexes, the update operators
$set/$inc/$setOnInsert/$push/$unset, upserts, and sessions whose
transactions roll back on error.
"""

from __future__ import annotations

import copy
import fnmatch
from dataclasses import dataclass, field
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

_MISSING = object()


def _get_path(doc: Any, path: str) -> list[Any]:
    """Every value reachable at a dotted path (arrays are traversed)."""
    values = [doc]
    for part in path.split("."):
        found = []
        for value in values:
            if isinstance(value, dict):
                if part in value:
                    found.append(value[part])
            elif isinstance(value, list):
                for item in value:
                    if isinstance(item, dict) and part in item:
                        found.append(item[part])
        values = found
    flattened = []
    for value in values:
        if isinstance(value, list):
            flattened.extend(value)
        flattened.append(value)
    return flattened


def _compare(op: str, actual: Any, expected: Any) -> bool:
    try:
        if op == "$gt":
            return actual > expected
        if op == "$gte":
            return actual >= expected
        if op == "$lt":
            return actual < expected
        if op == "$lte":
            return actual <= expected
    except TypeError:
        return False
    raise NotImplementedError(op)


def _match_condition(values: list[Any], condition: Any) -> bool:
    if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
        for op, expected in condition.items():
            if op == "$ne":
                if expected in values:
                    return False
            elif op == "$in":
                if not any(v in expected for v in values):
                    return False
            elif op == "$exists":
                if bool(values) != bool(expected):
                    return False
            elif op in ("$gt", "$gte", "$lt", "$lte"):
                if not any(_compare(op, v, expected) for v in values):
                    return False
            else:
                raise NotImplementedError(op)
        return True
    if condition is None:
        return not values or None in values
    return condition in values


def matches(doc: dict[str, Any], query: dict[str, Any] | None) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
            continue
        if key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
            continue
        if not _match_condition(_get_path(doc, key), condition):
            return False
    return True


def _set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _read_path(doc: dict[str, Any], path: str) -> Any:
    target: Any = doc
    for part in path.split("."):
        if not isinstance(target, dict) or part not in target:
            return _MISSING
        target = target[part]
    return target


def _unset_path(doc: dict[str, Any], path: str) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.get(part)
        if not isinstance(target, dict):
            return
    target.pop(parts[-1], None)


def apply_update(doc: dict[str, Any], update: dict[str, Any], inserting: bool) -> None:
    for op, fields in update.items():
        if op == "$set":
            for path, value in fields.items():
                _set_path(doc, path, copy.deepcopy(value))
        elif op == "$setOnInsert":
            if inserting:
                for path, value in fields.items():
                    _set_path(doc, path, copy.deepcopy(value))
        elif op == "$inc":
            for path, amount in fields.items():
                current = _read_path(doc, path)
                _set_path(doc, path, (0 if current is _MISSING else current) + amount)
        elif op == "$push":
            for path, value in fields.items():
                current = _read_path(doc, path)
                items = [] if current is _MISSING else list(current)
                items.append(copy.deepcopy(value))
                _set_path(doc, path, items)
        elif op == "$unset":
            for path in fields:
                _unset_path(doc, path)
        else:
            raise NotImplementedError(op)


def _sort_key(value: Any) -> tuple[int, Any]:
    return (0, 0) if value is _MISSING or value is None else (1, value)


def _normalize_sort(key_or_list: Any, direction: int | None = None) -> list[tuple[str, int]]:
    if isinstance(key_or_list, str):
        return [(key_or_list, direction or 1)]
    return list(key_or_list)


@dataclass
class InsertOneResult:
    inserted_id: Any


@dataclass
class UpdateResult:
    matched_count: int
    modified_count: int
    upserted_id: Any = None


@dataclass
class DeleteResult:
    deleted_count: int


@dataclass
class IndexDef:
    keys: list[tuple[str, int]]
    unique: bool = False
    sparse: bool = False


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self._docs = docs
        self._sort: list[tuple[str, int]] = []
        self._skip = 0
        self._limit = 0

    def sort(self, key_or_list: Any, direction: int | None = None) -> FakeCursor:
        self._sort = _normalize_sort(key_or_list, direction)
        return self

    def skip(self, n: int) -> FakeCursor:
        self._skip = n
        return self

    def limit(self, n: int) -> FakeCursor:
        self._limit = n
        return self

    def _results(self) -> list[dict[str, Any]]:
        docs = list(self._docs)
        for key, direction in reversed(self._sort):
            docs.sort(key=lambda d: _sort_key(_read_path(d, key)), reverse=direction < 0)
        docs = docs[self._skip :]
        if self._limit:
            docs = docs[: self._limit]
        return [copy.deepcopy(d) for d in docs]

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        docs = self._results()
        return docs[:length] if length else docs

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._results():
            yield doc


class FakeCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.docs: list[dict[str, Any]] = []
        self.indexes: list[IndexDef] = []
        # Raised once by the next write when set (simulates driver failures).
        self.fail_next_write: Exception | None = None

    async def create_index(self, keys, unique: bool = False, sparse: bool = False, **kwargs) -> str:
        keys = _normalize_sort(keys)
        if not any(i.keys == keys for i in self.indexes):
            self.indexes.append(IndexDef(keys, unique, sparse))
        return "_".join(f"{k}_{d}" for k, d in keys)

    def _check_failure(self) -> None:
        if self.fail_next_write is not None:
            error, self.fail_next_write = self.fail_next_write, None
            raise error

    def _check_unique(self, candidate: dict[str, Any]) -> None:
        for index in self.indexes:
            if not index.unique:
                continue
            values = {k: _read_path(candidate, k) for k, _ in index.keys}
            if index.sparse and any(v is _MISSING for v in values.values()):
                continue
            values = {k: None if v is _MISSING else v for k, v in values.items()}
            for other in self.docs:
                if other["_id"] == candidate["_id"]:
                    continue
                other_values = {
                    k: None if _read_path(other, k) is _MISSING else _read_path(other, k)
                    for k, _ in index.keys
                }
                if other_values == values:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {self.name} "
                        f"dup key: {values}",
                        11000,
                        {"keyValue": values},
                    )

    def _find(self, query: dict[str, Any] | None) -> list[dict[str, Any]]:
        return [d for d in self.docs if matches(d, query)]

    async def insert_one(self, document: dict[str, Any], session: Any = None, **kwargs) -> InsertOneResult:
        self._check_failure()
        doc = copy.deepcopy(dict(document))
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(doc)
        return InsertOneResult(doc["_id"])

    async def find_one(self, filter: dict[str, Any] | None = None, *args, session: Any = None, **kwargs):
        found = self._find(filter)
        return copy.deepcopy(found[0]) if found else None

    def find(self, filter: dict[str, Any] | None = None, *args, session: Any = None, **kwargs) -> FakeCursor:
        return FakeCursor(self._find(filter))

    async def count_documents(self, filter: dict[str, Any] | None = None, session: Any = None, **kwargs) -> int:
        return len(self._find(filter))

    def _upsert_document(self, filter: dict[str, Any]) -> dict[str, Any]:
        doc: dict[str, Any] = {}
        for key, value in filter.items():
            if key.startswith("$") or (isinstance(value, dict) and any(k.startswith("$") for k in value)):
                continue
            _set_path(doc, key, copy.deepcopy(value))
        return doc

    def _write(self, filter, update, upsert: bool) -> tuple[dict[str, Any] | None, dict[str, Any] | None, bool]:
        """(before, after, inserted) for an update of the first match."""
        self._check_failure()
        found = self._find(filter)
        if found:
            target = found[0]
            before = copy.deepcopy(target)
            after = copy.deepcopy(target)
            apply_update(after, update, inserting=False)
            self._check_unique(after)
            target.clear()
            target.update(after)
            return before, copy.deepcopy(after), False
        if not upsert:
            return None, None, False
        doc = self._upsert_document(filter)
        apply_update(doc, update, inserting=True)
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(doc)
        return None, copy.deepcopy(doc), True

    async def update_one(self, filter, update, upsert: bool = False, session: Any = None, **kwargs) -> UpdateResult:
        before, after, inserted = self._write(filter, update, upsert)
        if inserted:
            return UpdateResult(0, 0, after["_id"])
        if after is None:
            return UpdateResult(0, 0)
        return UpdateResult(1, int(before != after))

    async def find_one_and_update(
        self,
        filter,
        update,
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
        session: Any = None,
        **kwargs,
    ):
        before, after, _ = self._write(filter, update, upsert)
        return after if return_document == ReturnDocument.AFTER else before

    async def delete_one(self, filter, session: Any = None, **kwargs) -> DeleteResult:
        self._check_failure()
        found = self._find(filter)
        if not found:
            return DeleteResult(0)
        self.docs.remove(found[0])
        return DeleteResult(1)


class FakeDatabase:
    def __init__(self, name: str) -> None:
        self.name = name
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def collection_names(self) -> list[str]:
        return sorted(self.collections)


class _FakeAdmin:
    def __init__(self, client: FakeMongoClient) -> None:
        self._client = client

    async def command(self, name: str, *args, **kwargs) -> dict[str, Any]:
        server = self._client.server
        server.pings.append(self._client.uri)
        if server.ping_errors:
            raise server.ping_errors.pop(0)
        return {"ok": 1.0}


class FakeTransaction:
    def __init__(self, server: FakeMongoServer) -> None:
        self._server = server
        self._snapshot: dict[tuple[str, str], list[dict[str, Any]]] = {}

    async def __aenter__(self) -> FakeTransaction:
        self._snapshot = {
            (db_name, coll_name): copy.deepcopy(coll.docs)
            for db_name, db in self._server.databases.items()
            for coll_name, coll in db.collections.items()
        }
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self._server.committed_transactions += 1
            return False
        # Restore in place: connections and models hold the collection objects.
        for db_name, db in self._server.databases.items():
            for coll_name, coll in db.collections.items():
                coll.docs = self._snapshot.get((db_name, coll_name), [])
        self._server.aborted_transactions += 1
        return False


class FakeSession:
    def __init__(self, server: FakeMongoServer) -> None:
        self._server = server

    async def __aenter__(self) -> FakeSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False

    async def with_transaction(self, callback) -> Any:
        """Run callback in a transaction, rerunning it on TransientTransactionError."""
        while True:
            try:
                async with FakeTransaction(self._server):
                    return await callback(self)
            except PyMongoError as e:
                if not e.has_error_label("TransientTransactionError"):
                    raise
                self._server.transaction_retries += 1


class FakeMongoClient:
    def __init__(self, server: FakeMongoServer, uri: str, **options: Any) -> None:
        self.server = server
        self.uri = uri
        self.options = options
        self.admin = _FakeAdmin(self)
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        return self.server.database(name)

    def start_session(self) -> FakeSession:
        return FakeSession(self.server)

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeMongoServer:
    databases: dict[str, FakeDatabase] = field(default_factory=dict)
    clients: list[FakeMongoClient] = field(default_factory=list)
    pings: list[str] = field(default_factory=list)
    # Exceptions raised, in order, by the next ping commands.
    ping_errors: list[Exception] = field(default_factory=list)
    committed_transactions: int = 0
    aborted_transactions: int = 0
    transaction_retries: int = 0

    def database(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    def client_factory(self, uri: str, **options: Any) -> FakeMongoClient:
        client = FakeMongoClient(self, uri, **options)
        self.clients.append(client)
        return client


class FakeCache:
    """Dict-backed CacheProtocol implementation recording every call."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.data: dict[str, Any] = {}
        self.gets: list[str] = []
        self.sets: list[tuple[str, int]] = []
        self.deletes: list[str] = []

    def is_available(self) -> bool:
        return self.available

    async def get(self, key: str) -> Any | None:
        self.gets.append(key)
        return copy.deepcopy(self.data.get(key))

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        self.sets.append((key, ttl))
        self.data[key] = copy.deepcopy(value)
        return True

    async def delete(self, key: str) -> bool:
        self.deletes.append(key)
        return self.data.pop(key, None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        keys = [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]
        for key in keys:
            del self.data[key]
        return len(keys)
