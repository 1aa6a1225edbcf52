"""Tool implementations behind the MCP server.

Handlers return the text sent back to the caller. ADX failures are turned
into readable error text instead of propagating into the protocol layer.
"""

import asyncio
import functools
import json
import logging

from adx_mcp import operations
from adx_mcp.config import Settings
from adx_mcp.connection import AdxConnection
from adx_mcp.errors import AdxConnectionError, AdxMcpError, AdxValidationError, format_error
from adx_mcp.formatting import ResponseFormat
from adx_mcp.operations import SchemaCache, validate_identifier

logger = logging.getLogger(__name__)


def reports_errors(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except AdxMcpError as e:
            logger.warning(f"{func.__name__} failed: {e}")
            return format_error(e)
        except Exception as e:
            logger.exception(f"{func.__name__} failed with an unexpected error")
            return format_error(e)

    return wrapper


def _dump(value) -> str:
    return json.dumps(value, indent=2, default=str)


class ToolHandlers:
    def __init__(self, settings: Settings, connection_factory=AdxConnection):
        self.settings = settings
        self._connection_factory = connection_factory
        self.connection: AdxConnection | None = None
        self.schema_cache = SchemaCache()
        self._connect_lock = asyncio.Lock()

    async def _connect(self, cluster_url: str, database: str) -> dict:
        database = validate_identifier(database, "database name")
        connection = self._connection_factory(self.settings)
        result = await connection.initialize(cluster_url, database)
        if self.connection is not None:
            self.connection.close()
        self.connection = connection
        self.schema_cache.clear()
        return result

    def _connected(self) -> bool:
        return self.connection is not None and self.connection.is_initialized

    async def _require_connection(self) -> AdxConnection:
        if self._connected():
            return self.connection
        if self.settings.has_auto_connection:
            async with self._connect_lock:
                # another call may have connected while this one waited
                if not self._connected():
                    logger.info(f"Auto-connecting to {self.settings.cluster_url} -> {self.settings.database}")
                    await self._connect(self.settings.cluster_url, self.settings.database)
            return self.connection
        raise AdxConnectionError(
            "Connection not initialized. Please call initialize_connection first."
        )

    @reports_errors
    async def initialize_connection(self, cluster_url: str, database: str) -> str:
        async with self._connect_lock:
            return _dump(await self._connect(cluster_url, database))

    @reports_errors
    async def show_tables(self) -> str:
        conn = await self._require_connection()
        return _dump(await operations.show_tables(conn))

    @reports_errors
    async def show_table(self, table_name: str) -> str:
        conn = await self._require_connection()
        return _dump(await operations.show_table(conn, table_name, cache=self.schema_cache))

    @reports_errors
    async def show_functions(self) -> str:
        conn = await self._require_connection()
        return _dump(await operations.show_functions(conn))

    @reports_errors
    async def show_function(self, function_name: str) -> str:
        conn = await self._require_connection()
        return _dump(await operations.show_function(conn, function_name))

    @reports_errors
    async def execute_query(self, query: str, limit: int | None = None, response_format: str | None = None) -> str:
        conn = await self._require_connection()
        options = self.settings.limit_options()
        if response_format:
            try:
                options.format = ResponseFormat.parse(response_format)
            except ValueError as e:
                raise AdxValidationError(f"unknown response format: {response_format!r}") from e
        fit = await operations.execute_query(
            conn, query, limit or self.settings.default_row_limit, options
        )
        return fit.content
