import logging
import sys
from typing import Literal

from fastmcp import FastMCP
from pydantic import BaseModel, Field

from adx_mcp.config import Settings
from adx_mcp.errors import ConfigurationError
from adx_mcp.logging_config import setup_logging
from adx_mcp.prompts import ANALYZE_TABLE_PROMPT, EXPLORE_DATABASE_PROMPT, SERVER_INSTRUCTIONS
from adx_mcp.tools import ToolHandlers

logger = logging.getLogger(__name__)


# -------- Tool Schemas --------
class ConnectionInput(BaseModel):
    cluster_url: str = Field(description="ADX cluster URL, host name, or short cluster name")
    database: str = Field(description="Database to connect to")


class TableInput(BaseModel):
    table_name: str = Field(description="Name of the table to describe")


class FunctionInput(BaseModel):
    function_name: str = Field(description="Name of the stored function to describe")


class QueryInput(BaseModel):
    kql: str = Field(description="KQL query to run against the ADX database")
    limit: int | None = Field(
        default=None, ge=1, description="Maximum number of rows to return (default: 20)"
    )
    response_format: Literal["json", "markdown"] | None = Field(
        default=None, description="Override the configured response format"
    )


def create_server(settings: Settings, handlers: ToolHandlers | None = None) -> FastMCP:
    handlers = handlers or ToolHandlers(settings)
    mcp = FastMCP("adx-mcp", instructions=SERVER_INSTRUCTIONS)

    # -------- Tools --------
    @mcp.tool
    async def initialize_connection(input: ConnectionInput) -> str:
        """Connect to an ADX cluster and database, replacing any current connection."""
        return await handlers.initialize_connection(input.cluster_url, input.database)

    @mcp.tool
    async def show_tables() -> str:
        """List the tables in the current database."""
        return await handlers.show_tables()

    @mcp.tool
    async def show_table(input: TableInput) -> str:
        """Show the columns and types of a table."""
        return await handlers.show_table(input.table_name)

    @mcp.tool
    async def show_functions() -> str:
        """List the stored functions in the current database."""
        return await handlers.show_functions()

    @mcp.tool
    async def show_function(input: FunctionInput) -> str:
        """Show a stored function's parameters and body."""
        return await handlers.show_function(input.function_name)

    @mcp.tool
    async def execute_query(input: QueryInput) -> str:
        """
        Run a KQL query and return its rows with result metadata.

        Results are limited to 20 rows by default and may be cut further to fit
        the response size limit. When results are partial, refine the query with
        filters or aggregations rather than raising the limit.
        """
        return await handlers.execute_query(input.kql, input.limit, input.response_format)

    # -------- Prompts --------
    @mcp.prompt
    def explore_database(database: str, focus: str = "the user's question") -> str:
        """Walk through the tables of a database and summarize what they hold."""
        return EXPLORE_DATABASE_PROMPT.format(database=database, focus=focus)

    @mcp.prompt
    def analyze_table(table_name: str) -> str:
        """Profile one table: size, time range, value distributions, anomalies."""
        return ANALYZE_TABLE_PROMPT.format(table_name=table_name)

    return mcp


def main() -> None:
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings.log_level)
    if settings.has_auto_connection:
        logger.warning(f"Auto-connection configured: {settings.cluster_url} -> {settings.database}")
    else:
        logger.warning("No auto-connection configured, initialize_connection must be called first")

    mcp = create_server(settings)
    if settings.transport == "stdio":
        mcp.run(transport="stdio")
        return

    print(f"Starting MCP server on {settings.host}:{settings.port} (FastMCP) ...", file=sys.stderr)
    # Keep uvicorn quiet; our own logging goes to stderr.
    uvicorn_cfg = {"access_log": False, "log_level": "critical"}
    mcp.run(
        transport="streamable-http",
        host=settings.host,
        port=settings.port,
        uvicorn_config=uvicorn_cfg,
    )


if __name__ == "__main__":
    main()
