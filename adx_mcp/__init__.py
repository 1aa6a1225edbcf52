"""MCP server exposing Azure Data Explorer (Kusto) to tool-calling agents."""

from adx_mcp.errors import ConfigurationError
from adx_mcp.formatting import QueryMetadata, QueryResult, ResponseFormat
from adx_mcp.response_limiter import FitResult, ResponseLimitOptions, limit_response_size
from adx_mcp.retry import ErrorClass, RetryPolicy, classify, with_retry

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ErrorClass",
    "FitResult",
    "QueryMetadata",
    "QueryResult",
    "ResponseFormat",
    "ResponseLimitOptions",
    "RetryPolicy",
    "classify",
    "limit_response_size",
    "with_retry",
]
