"""
backend/tests/fake_mongo.py

Purpose:
    Minimal in-memory stand-in for the motor collections used by services
    and workers. Supports the query and update operators the backend relies
    on; anything else raises so a test never silently passes on an
    unsupported query.
"""

from __future__ import annotations

import copy
from types import SimpleNamespace
from typing import Any

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

_MISSING = object()


def _get(doc: dict, path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _unset(doc: dict, path: str) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.get(part)
        if not isinstance(target, dict):
            return
    target.pop(parts[-1], None)


def _compare(value: Any, op: str, expected: Any) -> bool:
    if value is _MISSING or value is None or expected is None:
        return False
    if op == "$lt":
        return value < expected
    if op == "$lte":
        return value <= expected
    if op == "$gt":
        return value > expected
    return value >= expected


def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, expected in condition.items():
            if op == "$in":
                if (None if value is _MISSING else value) not in expected:
                    return False
            elif op == "$nin":
                if (None if value is _MISSING else value) in expected:
                    return False
            elif op == "$ne":
                if (None if value is _MISSING else value) == expected:
                    return False
            elif op == "$exists":
                if (value is not _MISSING) != bool(expected):
                    return False
            elif op in ("$lt", "$lte", "$gt", "$gte"):
                if not _compare(value, op, expected):
                    return False
            else:
                raise NotImplementedError(f"operator {op}")
        return True
    if value is _MISSING:
        return condition is None
    return value == condition


def matches(doc: dict, query: dict | None) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, clause) for clause in condition):
                return False
        elif key.startswith("$"):
            raise NotImplementedError(f"operator {key}")
        elif not _matches_condition(_get(doc, key), condition):
            return False
    return True


def _sort_key(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs
        self._limit: int | None = None

    def sort(self, key: str, direction: int = 1):
        self._docs.sort(key=lambda d: _sort_key(_get(d, key)), reverse=int(direction) < 0)
        return self

    def limit(self, value: int):
        self._limit = int(value)
        return self

    async def to_list(self, length: int | None = None):
        rows = list(self._docs)
        if self._limit:
            rows = rows[: self._limit]
        if length is not None:
            rows = rows[:length]
        return rows


class FakeCollection:
    def __init__(self, docs: list[dict] | None = None, unique: tuple[str, ...] = ()):
        self.docs: list[dict] = []
        self.unique = unique
        for doc in docs or []:
            self._store(dict(doc))

    def _store(self, doc: dict) -> dict:
        doc.setdefault("_id", ObjectId())
        if self.unique and any(
            all(_get(d, k) == _get(doc, k) for k in self.unique) for d in self.docs
        ):
            raise DuplicateKeyError(f"duplicate {self.unique}")
        self.docs.append(doc)
        return doc

    def find(self, query: dict | None = None, projection: dict | None = None):
        return FakeCursor([copy.deepcopy(d) for d in self.docs if matches(d, query)])

    async def find_one(self, query: dict | None = None, projection: dict | None = None):
        for doc in self.docs:
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def insert_one(self, doc: dict):
        stored = self._store(copy.deepcopy(doc))
        doc["_id"] = stored["_id"]
        return SimpleNamespace(inserted_id=stored["_id"])

    @staticmethod
    def _apply(doc: dict, update: dict) -> None:
        for op, fields in update.items():
            for path, value in fields.items():
                if op == "$set":
                    _set(doc, path, copy.deepcopy(value))
                elif op == "$unset":
                    _unset(doc, path)
                elif op == "$inc":
                    current = _get(doc, path)
                    _set(doc, path, (0 if current is _MISSING else current) + value)
                elif op != "$setOnInsert":
                    raise NotImplementedError(f"update operator {op}")

    async def update_one(self, query: dict, update: dict, upsert: bool = False):
        for doc in self.docs:
            if matches(doc, query):
                self._apply(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

        doc = {
            k: v for k, v in query.items()
            if not k.startswith("$") and not isinstance(v, dict)
        }
        self._apply(doc, update)
        for path, value in update.get("$setOnInsert", {}).items():
            _set(doc, path, copy.deepcopy(value))
        stored = self._store(doc)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=stored["_id"])

    async def update_many(self, query: dict, update: dict):
        count = 0
        for doc in self.docs:
            if matches(doc, query):
                self._apply(doc, update)
                count += 1
        return SimpleNamespace(matched_count=count, modified_count=count)

    async def delete_one(self, query: dict):
        for index, doc in enumerate(self.docs):
            if matches(doc, query):
                del self.docs[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query: dict):
        return sum(1 for d in self.docs if matches(d, query))


class FakeDB:
    """Collections are created on first access, like a real Mongo database."""

    def __init__(self):
        self._collections: dict[str, FakeCollection] = {
            "bets": FakeCollection(unique=("game_id", "user_id")),
            "competition_users": FakeCollection(unique=("competition_id", "user_id")),
        }

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._collections.setdefault(name, FakeCollection())

    async def command(self, name: str):
        return {"ok": 1.0}
