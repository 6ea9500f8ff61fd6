"""
Shared fixtures.

auth_service refuses to import without JWT_SECRET, so it is set here before any
test module imports it. InMemoryGateway is a dict-backed DataGateway that
records every call and can be told to fail specific operations.
"""

import os
import sys
import copy
import uuid

import pytest

os.environ.setdefault("JWT_SECRET", "test-secret-do-not-use-in-production")

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data_gateway import DataGateway, DataAccessError  # noqa: E402


def _matches(row: dict, filters) -> bool:
    for key, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            if row.get(key) not in value:
                return False
        elif value is None:
            if row.get(key) is not None:
                return False
        elif row.get(key) != value:
            return False
    return True


class InMemoryGateway(DataGateway):
    def __init__(self, tables=None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.calls = []
        # {(action, collection)} that raise DataAccessError
        self.fail_on = set()

    def _check(self, action, collection):
        if (action, collection) in self.fail_on:
            raise DataAccessError(f"{action} on {collection} failed: simulated")

    def rows(self, collection):
        return self.tables.setdefault(collection, [])

    def writes(self, collection=None):
        return [
            c for c in self.calls
            if c[0] in ("insert", "update", "delete", "upsert") and (collection is None or c[1] == collection)
        ]

    async def get(self, collection, filters=None, columns="*", order=None, desc=False, limit=None):
        self.calls.append(("get", collection, dict(filters or {})))
        self._check("get", collection)
        rows = [copy.deepcopy(r) for r in self.rows(collection) if _matches(r, filters)]
        if order:
            rows.sort(key=lambda r: r.get(order) or "", reverse=desc)
        if limit:
            rows = rows[:limit]
        return rows

    async def insert(self, collection, record):
        self.calls.append(("insert", collection, dict(record)))
        self._check("insert", collection)
        row = {"id": str(uuid.uuid4()), **copy.deepcopy(record)}
        self.rows(collection).append(row)
        return copy.deepcopy(row)

    async def update(self, collection, filters, patch):
        self.calls.append(("update", collection, dict(filters), dict(patch)))
        self._check("update", collection)
        updated = []
        for row in self.rows(collection):
            if _matches(row, filters):
                row.update(copy.deepcopy(patch))
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, collection, filters):
        self.calls.append(("delete", collection, dict(filters)))
        self._check("delete", collection)
        self.tables[collection] = [r for r in self.rows(collection) if not _matches(r, filters)]

    async def upsert(self, collection, record, on_conflict):
        self.calls.append(("upsert", collection, dict(record)))
        self._check("upsert", collection)
        keys = [k.strip() for k in on_conflict.split(",")]
        for row in self.rows(collection):
            if all(row.get(k) == record.get(k) for k in keys):
                row.update(copy.deepcopy(record))
                return copy.deepcopy(row)
        return await self.insert(collection, record)


@pytest.fixture
def gateway():
    return InMemoryGateway()
