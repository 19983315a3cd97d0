"""
Read-only queries against watched source tables.

Table and column names are validated and quoted before interpolation; values
are always bound as parameters.
"""

from __future__ import annotations

from typing import Any

from core import db
from core.identifiers import quote_identifier


async def fetch_rows_after(table_name: str, watermark: int, limit: int) -> list[dict[str, Any]]:
    """
    Rows with id above the watermark, oldest first, at most `limit` of them.
    """
    table = quote_identifier(table_name)
    return await db.fetch_all(
        f"""
        SELECT *
        FROM {table}
        WHERE id > $1
        ORDER BY id ASC
        LIMIT $2
        """,
        watermark,
        limit,
    )


async def fetch_metric_projection(table_name: str, column: str) -> list[dict[str, Any]]:
    """
    Full (id, value) projection of a metric-tracked table.

    This scans the whole table on every cycle, so metric tracking is only
    suitable for small tables.
    """
    table = quote_identifier(table_name)
    col = quote_identifier(column, kind="metric column")
    return await db.fetch_all(
        f"""
        SELECT id, {col} AS value
        FROM {table}
        ORDER BY id ASC
        """
    )


async def fetch_row(table_name: str, row_id: int) -> dict[str, Any] | None:
    table = quote_identifier(table_name)
    return await db.fetch_one(f"SELECT * FROM {table} WHERE id = $1", row_id)


async def max_id(table_name: str) -> int:
    table = quote_identifier(table_name)
    row = await db.fetch_one(f"SELECT COALESCE(MAX(id), 0) AS max_id FROM {table}")
    return int((row or {}).get("max_id") or 0)
