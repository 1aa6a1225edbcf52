"""Fit query results into the global response size limit.

A query may return more rows than a tool response can carry. The limiter
binary-searches for the largest row count whose rendered response stays within
``max_length`` characters, keeping at least ``min_rows`` rows even if that
overshoots. Every rendering carries metadata describing how many rows were
dropped, so a reduced response always says so.
"""

import logging
from dataclasses import dataclass, replace

from adx_mcp.errors import ConfigurationError
from adx_mcp.formatting import QueryResult, ResponseFormat, format_query_result

logger = logging.getLogger(__name__)

MIN_RESPONSE_LENGTH = 100
REDUCED_MESSAGE = (
    "Row count reduced to fit response size limit. "
    "Use more specific filters for larger datasets."
)


@dataclass
class ResponseLimitOptions:
    max_length: int
    min_rows: int = 1
    format: ResponseFormat = ResponseFormat.JSON
    max_column_width: int | None = None
    show_metadata: bool = True


@dataclass
class FitResult:
    content: str
    optimal_row_count: int
    was_reduced: bool
    original_row_count: int
    final_char_count: int


def render_with_row_count(result: QueryResult, row_count: int, options: ResponseLimitOptions) -> str:
    """Render the first ``row_count`` rows with metadata consistent with the cut."""
    available = len(result.data)
    reduced = row_count < available
    metadata = replace(
        result.metadata,
        row_count=row_count,
        is_partial=reduced or result.metadata.is_partial,
        has_more_results=reduced or result.metadata.has_more_results,
        reduced_for_response_size=reduced,
        original_rows_available=available,
        global_char_limit=options.max_length,
        response_char_count=None,
    )
    limited = replace(
        result,
        data=result.data[:row_count],
        metadata=metadata,
        message=REDUCED_MESSAGE if reduced else result.message,
    )

    fmt = ResponseFormat.parse(options.format)
    content = format_query_result(limited, fmt, options.max_column_width, options.show_metadata)
    if fmt is ResponseFormat.JSON:
        # Stamp the final length; the stamp itself adds characters, so settle
        # on a count that matches the text it appears in.
        count = len(content)
        while True:
            metadata.response_char_count = count
            content = format_query_result(limited, fmt, options.max_column_width)
            if len(content) == count:
                break
            count = len(content)
    return content


def find_optimal_row_count(result: QueryResult, options: ResponseLimitOptions) -> FitResult:
    original = len(result.data)
    fmt = ResponseFormat.parse(options.format)

    if original == 0:
        content = format_query_result(result, fmt, options.max_column_width, options.show_metadata)
        return FitResult(content, 0, False, 0, len(content))

    full = render_with_row_count(result, original, options)
    if len(full) <= options.max_length:
        return FitResult(full, original, False, original, len(full))

    min_rows = min(options.min_rows, original)
    low, high = min_rows, original
    best_rows, best_content = min_rows, None
    probes = 0

    while low <= high:
        mid = (low + high) // 2
        candidate = render_with_row_count(result, mid, options)
        probes += 1
        if len(candidate) <= options.max_length:
            best_rows, best_content = mid, candidate
            low = mid + 1
        else:
            high = mid - 1

    if best_content is None:
        # was_reduced means the limit could not be honored. When min_rows is
        # clamped to every row, the payload itself still reports no rows dropped.
        logger.warning(
            f"Even {min_rows} row(s) exceed the {options.max_length} character limit; "
            f"returning the minimum anyway"
        )
        best_content = render_with_row_count(result, min_rows, options)
        best_rows = min_rows

    logger.info(
        f"Reduced response from {original} to {best_rows} rows "
        f"({len(best_content)} chars, {probes} probes)"
    )
    return FitResult(best_content, best_rows, True, original, len(best_content))


def limit_response_size(result: QueryResult, options: ResponseLimitOptions) -> FitResult:
    if options.max_length < MIN_RESPONSE_LENGTH:
        raise ConfigurationError(
            f"Global response limit must be at least {MIN_RESPONSE_LENGTH} characters"
        )
    if options.min_rows < 0:
        raise ConfigurationError("Minimum rows must be non-negative")
    return find_optimal_row_count(result, options)
