"""Schema introspection and query execution against an ``AdxConnection``."""

import json
import logging
import re
import time
from collections import OrderedDict
from typing import Any

from adx_mcp.connection import AdxConnection, primary_rows
from adx_mcp.errors import (
    AdxDataConversionError,
    AdxMcpError,
    AdxQueryError,
    AdxResourceNotFoundError,
    AdxValidationError,
)
from adx_mcp.formatting import QueryMetadata, QueryResult
from adx_mcp.response_limiter import FitResult, ResponseLimitOptions, limit_response_size

logger = logging.getLogger(__name__)

PARTIAL_MESSAGE = (
    "Results are partial. Consider using aggregations, filters, or more "
    "specific conditions to reduce the dataset."
)

_IDENTIFIER_FORBIDDEN = re.compile(r"['\"\[\]\x00-\x1f]")


def validate_identifier(name: str, kind: str = "name") -> str:
    name = (name or "").strip()
    if not name:
        raise AdxValidationError(f"{kind} must not be empty")
    if _IDENTIFIER_FORBIDDEN.search(name):
        raise AdxValidationError(f"invalid {kind}: {name!r}")
    return name


def _quote(name: str) -> str:
    return f"['{name}']"


class SchemaCache:
    """Small LRU cache of table schemas with a time-to-live."""

    def __init__(self, max_entries: int = 100, ttl_seconds: float = 30 * 60, clock=time.monotonic):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, dict]] = OrderedDict()

    @staticmethod
    def key(database: str, table: str) -> str:
        return f"{database}:{table}"

    def get(self, key: str) -> dict | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: dict) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()


def _wrap(message: str, error: Exception) -> AdxMcpError:
    if isinstance(error, (AdxResourceNotFoundError, AdxValidationError)):
        return error
    return AdxQueryError.from_error(f"{message}: {error}", error)


async def show_tables(conn: AdxConnection) -> list[dict[str, Any]]:
    database = conn.database
    try:
        rows = primary_rows(await conn.execute(".show tables"))
    except AdxMcpError as e:
        raise _wrap("Failed to list tables", e)

    tables = [
        {
            "name": row.get("TableName") or row.get("Name"),
            "database": row.get("DatabaseName") or database,
            "folder": row.get("Folder"),
            "description": row.get("DocString"),
        }
        for row in rows
    ]
    logger.info(f"Found {len(tables)} tables in database {database}")
    return tables


async def show_table(conn: AdxConnection, table_name: str, cache: SchemaCache) -> dict[str, Any]:
    table_name = validate_identifier(table_name, "table name")
    database = conn.database
    key = SchemaCache.key(database, table_name)

    cached = cache.get(key)
    if cached is not None:
        logger.debug(f"Using cached schema for table: {table_name}")
        return cached

    try:
        rows = primary_rows(await conn.execute(f".show table {_quote(table_name)} schema as json"))
    except AdxMcpError as e:
        raise _wrap("Failed to get table schema", e)
    if not rows:
        raise AdxResourceNotFoundError(f"Table {table_name} not found in database {database}")

    row = rows[0]
    try:
        schema = row["Schema"]
        if isinstance(schema, str):
            schema = json.loads(schema)
        columns = [
            {
                "name": col.get("Name"),
                "type": col.get("CslType") or col.get("Type"),
                "ordinal": index,
            }
            for index, col in enumerate(schema.get("OrderedColumns", []))
        ]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise AdxDataConversionError(f"Could not parse schema of table {table_name}: {e}") from e

    table_schema = {
        "tableName": row.get("TableName") or table_name,
        "databaseName": row.get("DatabaseName") or database,
        "folder": row.get("Folder"),
        "description": row.get("DocString"),
        "columns": columns,
    }
    cache.set(key, table_schema)
    return table_schema


async def show_functions(conn: AdxConnection) -> list[dict[str, Any]]:
    try:
        rows = primary_rows(await conn.execute(".show functions"))
    except AdxMcpError as e:
        raise _wrap("Failed to list functions", e)
    return [
        {
            "name": row.get("Name"),
            "parameters": row.get("Parameters"),
            "folder": row.get("Folder"),
            "description": row.get("DocString"),
        }
        for row in rows
    ]


async def show_function(conn: AdxConnection, function_name: str) -> dict[str, Any]:
    function_name = validate_identifier(function_name, "function name")
    try:
        rows = primary_rows(await conn.execute(f".show function {_quote(function_name)}"))
    except AdxMcpError as e:
        if "not found" in str(e).lower() or "does not exist" in str(e).lower():
            raise AdxResourceNotFoundError.from_error(
                f"Function {function_name} not found in database {conn.database}", e
            ) from e
        raise _wrap("Failed to get function", e)
    if not rows:
        raise AdxResourceNotFoundError(
            f"Function {function_name} not found in database {conn.database}"
        )

    row = rows[0]
    return {
        "name": row.get("Name") or function_name,
        "parameters": row.get("Parameters"),
        "body": row.get("Body"),
        "folder": row.get("Folder"),
        "description": row.get("DocString"),
    }


def build_query_result(rows: list[dict[str, Any]], limit: int, name: str | None = None) -> QueryResult:
    """Trim the ``limit + 1`` rows fetched to ``limit`` and mark the result partial if cut."""
    is_partial = len(rows) > limit
    returned = rows[:limit]
    return QueryResult(
        name=name,
        data=returned,
        metadata=QueryMetadata(
            row_count=len(returned),
            is_partial=is_partial,
            requested_limit=limit,
            has_more_results=is_partial,
        ),
        message=PARTIAL_MESSAGE if is_partial else None,
    )


async def execute_query(
    conn: AdxConnection,
    query: str,
    limit: int,
    options: ResponseLimitOptions,
) -> FitResult:
    query = (query or "").strip().rstrip(";")
    if not query:
        raise AdxValidationError("query must not be empty")
    if limit < 1:
        raise AdxValidationError("limit must be at least 1")

    # Fetch one extra row to learn whether more rows exist.
    limited_query = query if query.startswith(".") else f"{query}\n| take {limit + 1}"
    try:
        response = await conn.execute(limited_query)
    except AdxMcpError as e:
        raise _wrap("Failed to execute query", e)

    if not response or not response.primary_results:
        raise AdxQueryError("No primary result found in query response")

    name = getattr(response.primary_results[0], "table_name", None)
    result = build_query_result(primary_rows(response), limit, name=name)
    return limit_response_size(result, options)
