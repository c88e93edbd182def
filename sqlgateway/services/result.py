from typing import Any, Dict

from sqlgateway.errors import UpstreamHTTPError
from sqlgateway.models.schemas import StatementResult


def has_data(payload: Dict[str, Any]) -> bool:
    """True when a SQL API response body carries a result set (an empty one counts)."""
    return payload.get("data") is not None


def normalize_result(payload: Dict[str, Any]) -> StatementResult:
    """Convert a SQL API response body into the ``{columns, rows, rowCount}`` envelope.

    Column descriptors are passed through as reported in
    ``resultSetMetaData.rowType`` so any type metadata survives. Upstream
    counters such as ``numRows`` are ignored; the row count is always the
    length of ``rows``.
    """
    meta = payload.get("resultSetMetaData") or {}
    row_type = (meta.get("rowType") or []) if isinstance(meta, dict) else None
    data = payload.get("data") or []

    if not isinstance(row_type, list) or not all(isinstance(col, dict) for col in row_type):
        raise UpstreamHTTPError(
            "Snowflake returned malformed column metadata (resultSetMetaData.rowType)"
        )
    if not isinstance(data, list) or not all(isinstance(row, list) for row in data):
        raise UpstreamHTTPError("Snowflake returned malformed row data (expected a list of rows)")

    columns = [dict(col) for col in row_type]
    rows = [list(row) for row in data]
    return StatementResult(columns=columns, rows=rows)
