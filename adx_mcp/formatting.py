"""Rendering of query results as JSON or as a markdown table.

Both renderers are pure functions of the result they are given. The response
limiter calls them repeatedly on growing prefixes of the same rows, so output
length must never shrink as rows are added.
"""

import json
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ELLIPSIS = "..."


class ResponseFormat(str, Enum):
    JSON = "json"
    MARKDOWN = "markdown"

    @classmethod
    def parse(cls, value: str) -> "ResponseFormat":
        """Accept the format names plus the ``structured``/``tabular`` aliases."""
        key = value.strip().lower()
        aliases = {"structured": cls.JSON, "tabular": cls.MARKDOWN}
        if key in aliases:
            return aliases[key]
        return cls(key)


@dataclass
class QueryMetadata:
    row_count: int
    is_partial: bool = False
    requested_limit: int = 0
    has_more_results: bool = False
    # Set by the response limiter.
    reduced_for_response_size: bool | None = None
    original_rows_available: int | None = None
    global_char_limit: int | None = None
    response_char_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out = {
            "rowCount": self.row_count,
            "isPartial": self.is_partial,
            "requestedLimit": self.requested_limit,
            "hasMoreResults": self.has_more_results,
        }
        optional = {
            "reducedForResponseSize": self.reduced_for_response_size,
            "originalRowsAvailable": self.original_rows_available,
            "globalCharLimit": self.global_char_limit,
            "responseCharCount": self.response_char_count,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        return out


@dataclass
class QueryResult:
    data: list[dict[str, Any]]
    metadata: QueryMetadata
    name: str | None = None
    message: str | None = None

    @classmethod
    def from_rows(cls, rows, requested_limit=0, name=None, message=None):
        rows = list(rows)
        return cls(
            data=rows,
            metadata=QueryMetadata(row_count=len(rows), requested_limit=requested_limit),
            name=name,
            message=message,
        )


def _truncate(text: str, max_width: int | None) -> str:
    if max_width and len(text) > max_width:
        return text[: max(max_width - len(ELLIPSIS), 0)] + ELLIPSIS
    return text


def format_cell_value(value, max_width: int | None = None) -> str:
    """Format one value for a markdown table cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (datetime, date, time)):
        text = value.isoformat()
    elif isinstance(value, str):
        text = value
    elif isinstance(value, (dict, list)):
        text = json.dumps(to_json_value(value), ensure_ascii=False)
    else:
        text = str(value)
    text = " ".join(text.splitlines()).strip().replace("|", "\\|")
    return _truncate(text, max_width)


def to_json_value(value, max_width: int | None = None):
    """Convert a Kusto value into something ``json.dumps`` accepts."""
    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, str):
        return _truncate(value, max_width)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (UUID, timedelta)):
        return str(value)
    if isinstance(value, dict):
        return {str(k): to_json_value(v, max_width) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v, max_width) for v in value]
    return _truncate(str(value), max_width)


def format_as_json(result: QueryResult, max_column_width: int | None = None) -> str:
    payload: dict[str, Any] = {}
    if result.name is not None:
        payload["name"] = result.name
    payload["data"] = [
        {str(k): to_json_value(v, max_column_width) for k, v in row.items()}
        for row in result.data
    ]
    payload["metadata"] = result.metadata.to_dict()
    if result.message is not None:
        payload["message"] = result.message
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _metadata_summary(metadata: QueryMetadata, message: str | None) -> str:
    def yes_no(flag):
        return "Yes" if flag else "No"

    lines = [
        "**Query Results Summary:**",
        f"- Rows returned: {metadata.row_count}",
        f"- Total limit: {metadata.requested_limit}",
        f"- Partial results: {yes_no(metadata.is_partial)}",
        f"- Has more results: {yes_no(metadata.has_more_results)}",
    ]
    if metadata.reduced_for_response_size:
        lines.append(
            f"- Reduced for response size: showing {metadata.row_count} of "
            f"{metadata.original_rows_available} rows "
            f"(limit {metadata.global_char_limit} characters)"
        )
    if message:
        lines.append(f"- Note: {message}")
    return "\n".join(lines)


def format_as_markdown_table(
    result: QueryResult,
    max_column_width: int | None = None,
    show_metadata: bool = True,
) -> str:
    """Render rows as a padded pipe table followed by a metadata summary."""
    summary = f"\n\n{_metadata_summary(result.metadata, result.message)}" if show_metadata else ""

    if not result.data:
        return f"*No results returned*{summary}"

    columns = [str(c) for c in result.data[0].keys()]
    if not columns:
        return f"*No columns found in results*{summary}"

    header = [format_cell_value(c) for c in columns]
    body = [
        [format_cell_value(row.get(c), max_column_width) for c in result.data[0].keys()]
        for row in result.data
    ]
    widths = [
        max([3, len(header[i])] + [len(cells[i]) for cells in body])
        for i in range(len(columns))
    ]

    def line(cells):
        return "| " + " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)) + " |"

    lines = [line(header), line(["-" * w for w in widths])]
    lines.extend(line(cells) for cells in body)
    return "\n".join(lines) + summary


def format_query_result(
    result: QueryResult,
    fmt: ResponseFormat | str = ResponseFormat.JSON,
    max_column_width: int | None = None,
    show_metadata: bool = True,
) -> str:
    fmt = ResponseFormat.parse(fmt)
    if fmt is ResponseFormat.MARKDOWN:
        return format_as_markdown_table(result, max_column_width, show_metadata)
    return format_as_json(result, max_column_width)
