# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Relational data store collaborator used by database nodes.

Filters are lists of {column, operator, value} with operators
eq, neq, gt, gte, lt, lte, in, like, is, isnot.
"""

import asyncio
import copy
import fnmatch
import uuid
from typing import Any, Dict, List, Optional

from credflow.core.errors import ValidationError


FILTER_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "like", "is", "isnot")


def _like(value: Any, pattern: Any) -> bool:
    if value is None or pattern is None:
        return False
    # SQL LIKE -> glob: % is any run, _ is any single character
    glob = str(pattern).replace("*", "[*]").replace("?", "[?]").replace("%", "*").replace("_", "?")
    return fnmatch.fnmatchcase(str(value), glob)


def _compare(op: str, value: Any, expected: Any) -> bool:
    try:
        if op == "eq":
            return value == expected
        if op == "neq":
            return value != expected
        if op == "gt":
            return value is not None and value > expected
        if op == "gte":
            return value is not None and value >= expected
        if op == "lt":
            return value is not None and value < expected
        if op == "lte":
            return value is not None and value <= expected
    except TypeError:
        return False
    if op == "in":
        return value in (expected or [])
    if op == "like":
        return _like(value, expected)
    if op == "is":
        return value is expected or value == expected
    if op == "isnot":
        return not (value is expected or value == expected)
    raise ValidationError(f"Invalid filter operator: {op}", field="operator")


def matches(row: Dict[str, Any], filters: List[Dict[str, Any]]) -> bool:
    return all(
        _compare(f.get("operator", "eq"), row.get(f["column"]), f.get("value"))
        for f in filters
    )


class DataStore:
    """Interface of the relational data store"""

    async def select(
        self,
        table: str,
        filters: List[Dict[str, Any]],
        columns: Optional[List[str]] = None,
        order_by: Optional[List[Dict[str, str]]] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def update(self, table: str, values: Dict[str, Any], filters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def delete(self, table: str, filters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError


class InMemoryDataStore(DataStore):
    """
    Table store kept in memory.

    Rows get an `id` on insert when they have none.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = copy.deepcopy(tables) if tables else {}
        self._lock = asyncio.Lock()

    async def select(self, table, filters, columns=None, order_by=None, limit=None):
        async with self._lock:
            rows = [row for row in self.tables.get(table, []) if matches(row, filters)]

        for order in reversed(order_by or []):
            column = order["column"]
            rows.sort(
                key=lambda row: (row.get(column) is None, row.get(column)),
                reverse=order.get("direction", "asc") == "desc"
            )

        if limit is not None:
            rows = rows[:limit]

        if columns and columns != ["*"]:
            rows = [{column: row.get(column) for column in columns} for row in rows]

        return copy.deepcopy(rows)

    async def insert(self, table, rows):
        async with self._lock:
            inserted = []
            for row in rows:
                record = copy.deepcopy(row)
                record.setdefault("id", uuid.uuid4().hex)
                self.tables.setdefault(table, []).append(record)
                inserted.append(copy.deepcopy(record))
            return inserted

    async def update(self, table, values, filters):
        async with self._lock:
            updated = []
            for row in self.tables.get(table, []):
                if matches(row, filters):
                    row.update(copy.deepcopy(values))
                    updated.append(copy.deepcopy(row))
            return updated

    async def delete(self, table, filters):
        async with self._lock:
            kept, deleted = [], []
            for row in self.tables.get(table, []):
                (deleted if matches(row, filters) else kept).append(row)
            self.tables[table] = kept
            return copy.deepcopy(deleted)
