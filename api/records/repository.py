"""
Generic row persistence (raw SQL).

Every table/column name reaching this module has already passed
`core.identifiers`; `quote_identifier` re-checks before interpolating.
Values are always bound parameters.

Comparisons against query-string values cast the column to text, since
those values arrive untyped.
"""

from __future__ import annotations

import json
from typing import Any

from core import db, settings
from core.identifiers import quote_identifier

from .schemas import ByNumericId, LookupKey


def token_column() -> str:
    return settings.env_str("TOKEN_COLUMN", "guid")


def _param(value: Any) -> Any:
    """
    asyncpg does not automatically encode Python dicts/lists for json columns.
    We pass JSON as a string.
    """
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=True)
    return value


def _key_clause(key: LookupKey, placeholder: str) -> tuple[str, Any]:
    if isinstance(key, ByNumericId):
        return f'"id" = {placeholder}', key.value
    col = quote_identifier(token_column(), kind="token column")
    return f"{col}::text = {placeholder}", key.value


async def ping() -> dict[str, Any] | None:
    return await db.fetch_one("SELECT 1 + 1 AS result")


async def list_rows(table_name: str, *, limit: int | None = None, offset: int = 0) -> list[dict[str, Any]]:
    table = quote_identifier(table_name)
    if limit is None:
        return await db.fetch_all(f"SELECT * FROM {table} OFFSET $1", offset)
    return await db.fetch_all(f"SELECT * FROM {table} LIMIT $1 OFFSET $2", limit, offset)


async def find_by_field(table_name: str, field: str, value: str) -> dict[str, Any] | None:
    table = quote_identifier(table_name)
    col = quote_identifier(field, kind="field name")
    return await db.fetch_one(f"SELECT * FROM {table} WHERE {col}::text = $1 LIMIT 1", value)


async def get_row(table_name: str, key: LookupKey) -> dict[str, Any] | None:
    table = quote_identifier(table_name)
    clause, value = _key_clause(key, "$1")
    return await db.fetch_one(f"SELECT * FROM {table} WHERE {clause} LIMIT 1", value)


async def insert_row(table_name: str, data: dict[str, Any]) -> dict[str, Any]:
    table = quote_identifier(table_name)
    columns = [quote_identifier(c, kind="column name") for c in data]
    placeholders = [f"${i}" for i in range(1, len(columns) + 1)]
    row = await db.fetch_one(
        f"""
        INSERT INTO {table} ({", ".join(columns)})
        VALUES ({", ".join(placeholders)})
        RETURNING *
        """,
        *[_param(v) for v in data.values()],
    )
    if row is None:
        raise RuntimeError(f"Failed to insert into {table_name}.")
    return row


async def update_row(table_name: str, key: LookupKey, data: dict[str, Any]) -> dict[str, Any] | None:
    """
    Update one row; returns the updated row, or None when nothing matched.
    """
    table = quote_identifier(table_name)
    assignments = [
        f"{quote_identifier(c, kind='column name')} = ${i}" for i, c in enumerate(data, start=1)
    ]
    clause, key_value = _key_clause(key, f"${len(assignments) + 1}")
    return await db.fetch_one(
        f"""
        UPDATE {table}
        SET {", ".join(assignments)}
        WHERE {clause}
        RETURNING *
        """,
        *[_param(v) for v in data.values()],
        key_value,
    )


async def delete_row(table_name: str, key: LookupKey) -> int:
    table = quote_identifier(table_name)
    clause, value = _key_clause(key, "$1")
    return await db.fetch_status(f"DELETE FROM {table} WHERE {clause}", value)


async def delete_where(table_name: str, conditions: dict[str, str]) -> int:
    """
    Delete rows matching every `column = value` condition (junction tables).
    """
    if not conditions:
        raise ValueError("delete_where requires at least one condition.")
    table = quote_identifier(table_name)
    clauses = [
        f"{quote_identifier(c, kind='field name')}::text = ${i}" for i, c in enumerate(conditions, start=1)
    ]
    return await db.fetch_status(
        f"DELETE FROM {table} WHERE {' AND '.join(clauses)}",
        *conditions.values(),
    )
