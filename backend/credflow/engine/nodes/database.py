# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Database node - select/insert/update/delete against the data store.

Tables are restricted to the configured allow-list and column names are
validated before anything reaches the store. Update and delete refuse to
run without filters.
"""

import re
from typing import Any, Dict, List

from credflow.core.errors import CredflowError
from credflow.core.logging import get_engine_logger
from .base import NodeHandler, NodeOutcome, register_handler

logger = get_engine_logger("database")

OPERATIONS = ("select", "insert", "update", "delete")

COLUMN_PATTERN = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)?$|^\*$|^count\(\*\)$"
)


class QueryConfigError(ValueError):
    pass


def _fields_to_dict(fields: Any) -> Dict[str, Any]:
    """fields may be a dict or a list of {column, value}"""
    if isinstance(fields, dict):
        return dict(fields)
    return {item["column"]: item.get("value") for item in (fields or []) if item.get("column")}


def _check_columns(columns: List[str]) -> None:
    for column in columns:
        if not COLUMN_PATTERN.match(str(column)):
            raise QueryConfigError(f"Invalid column name: {column}")


@register_handler("database")
class DatabaseHandler(NodeHandler):
    """
    databaseConfig:
        operation: select | insert | update | delete
        table: allow-listed table name
        columns: list (select only, default *)
        filters (alias where): [{column, operator, value}]
        data / values / fields: row(s) to insert, or columns to set on update (alias set)
        orderBy: [{column, direction}]
        limit: capped at database.max_rows
    """

    async def execute(self, node, context, step):
        db_config = node.config("databaseConfig", "dbConfig")
        operation = str(db_config.get("operation", "select")).lower()
        table = db_config.get("table")

        try:
            filters = self._filters(db_config, context)
            if operation not in OPERATIONS:
                raise QueryConfigError(f"Invalid operation '{operation}'. Use: {', '.join(OPERATIONS)}")
            if table not in self.services.config.allowed_tables:
                raise QueryConfigError(f"Table not allowed: {table}")

            if operation == "select":
                result = await self._select(table, db_config, filters)
            elif operation == "insert":
                result = await self._insert(table, db_config, context)
            elif operation == "update":
                result = await self._update(table, db_config, filters, context)
            else:
                result = await self._delete(table, filters)
        except QueryConfigError as e:
            return NodeOutcome.failed(str(e), {"dbOperation_success": False})
        except CredflowError as e:
            return NodeOutcome.failed(f"Database {operation} failed: {e.message}", {"dbOperation_success": False})

        logger.info(f"Database {operation} on {table}: {result['dbRowCount']} rows (node {node.id})")
        result["dbOperation_success"] = True
        return NodeOutcome.completed(result)

    def _filters(self, db_config: Dict[str, Any], context) -> List[Dict[str, Any]]:
        filters = context.resolve_object(db_config.get("filters") or db_config.get("where") or [])
        _check_columns([f.get("column", "") for f in filters])
        return filters

    async def _select(self, table, db_config, filters):
        columns = db_config.get("columns") or ["*"]
        _check_columns(columns)
        order_by = db_config.get("orderBy") or []
        _check_columns([order.get("column", "") for order in order_by])

        max_rows = self.services.config.database_max_rows
        limit = min(int(db_config.get("limit") or max_rows), max_rows)

        rows = await self.services.data_store.select(table, filters, columns, order_by, limit)
        return {"dbResult": rows, "dbRowCount": len(rows)}

    async def _insert(self, table, db_config, context):
        values = context.resolve_object(db_config.get("data") or db_config.get("values") or db_config.get("fields"))
        if not values:
            raise QueryConfigError("Insert requires values")
        if isinstance(values, list) and not all("column" in item for item in values):
            rows = [dict(item) for item in values]
        else:
            rows = [_fields_to_dict(values)]
        for row in rows:
            _check_columns(list(row))

        inserted = await self.services.data_store.insert(table, rows)
        return {
            "dbResult": inserted,
            "dbRowCount": len(inserted),
            "dbInsertedIds": [row.get("id") for row in inserted],
        }

    async def _update(self, table, db_config, filters, context):
        if not filters:
            raise QueryConfigError("Update requires filters")
        values = _fields_to_dict(context.resolve_object(db_config.get("set") or db_config.get("fields") or {}))
        if not values:
            raise QueryConfigError("Update requires values to set")
        _check_columns(list(values))

        updated = await self.services.data_store.update(table, values, filters)
        return {"dbResult": updated, "dbRowCount": len(updated), "dbAffectedRows": len(updated)}

    async def _delete(self, table, filters):
        if not filters:
            raise QueryConfigError("Delete requires filters")
        deleted = await self.services.data_store.delete(table, filters)
        return {"dbResult": deleted, "dbRowCount": len(deleted), "dbAffectedRows": len(deleted)}
