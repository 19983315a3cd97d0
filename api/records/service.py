"""
CRUD passthrough "service layer".

This file contains logic that is independent of FastAPI's routing layer:
- Validate table and column names before any SQL is built
- Unwrap payloads sent by automation tools
- Map database errors to client-visible HTTP errors
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg
from fastapi import HTTPException

from core.identifiers import is_valid_identifier

from . import repository
from .schemas import ByNumericId, LookupKey, parse_lookup_key

logger = logging.getLogger(__name__)


def validate_table_name(table_name: str) -> str:
    if not is_valid_identifier(table_name):
        raise HTTPException(status_code=400, detail="Invalid table name")
    return table_name


def validate_field_name(field: str) -> str:
    if not is_valid_identifier(field):
        raise HTTPException(status_code=400, detail="Invalid field name")
    return field


def lookup_key(raw: str) -> LookupKey:
    try:
        return parse_lookup_key(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _maybe_json(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value


def extract_payload(body: Any) -> Any:
    """
    Accept the shapes automation tools send:
    - {"body": {"$": "<json string>"}}
    - {"body": "<json string>"} or {"body": {...}}
    - the bare object
    """
    if isinstance(body, dict) and "body" in body:
        inner = body["body"]
        if isinstance(inner, dict) and "$" in inner:
            return _maybe_json(inner["$"])
        if inner:
            return _maybe_json(inner)
    return body


def prepare_write_payload(body: Any, *, table_name: str, action: str) -> dict[str, Any]:
    """
    Resolve the payload into a non-empty column->value mapping.

    Client-supplied `id` is dropped so inserts use the sequence and updates
    cannot rewrite a primary key.
    """
    data = extract_payload(body)
    if not isinstance(data, dict):
        logger.warning("invalid_payload table=%s action=%s type=%s", table_name, action, type(data).__name__)
        raise HTTPException(
            status_code=400,
            detail="Invalid data format: Failed to extract a valid JSON object from request",
        )

    data = dict(data)
    if "id" in data:
        logger.warning("payload_id_removed table=%s action=%s id=%s", table_name, action, data["id"])
        data.pop("id")

    if not data:
        raise HTTPException(status_code=400, detail=f"No {action} data provided")

    for column in data:
        if not is_valid_identifier(column):
            raise HTTPException(status_code=400, detail=f"Invalid column name: {column!r}")
    return data


@asynccontextmanager
async def db_errors(table_name: str, action: str) -> AsyncIterator[None]:
    """
    Translate asyncpg errors into HTTP errors for the client.
    """
    try:
        yield
    except asyncpg.UndefinedTableError as exc:
        raise HTTPException(status_code=404, detail=f"Table not found: {table_name}") from exc
    except asyncpg.UndefinedColumnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (asyncpg.DataError, asyncpg.IntegrityConstraintViolationError, ValueError) as exc:
        # Invalid input for a bound parameter, constraint violations.
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except asyncpg.PostgresError as exc:
        logger.exception("database_error table=%s action=%s", table_name, action)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


async def list_rows(table_name: str, *, limit: int | None = None, offset: int = 0) -> list[dict[str, Any]]:
    validate_table_name(table_name)
    async with db_errors(table_name, "select"):
        return await repository.list_rows(table_name, limit=limit, offset=offset)


async def search(table_name: str, field: str | None, value: str | None) -> dict[str, Any] | None:
    validate_table_name(table_name)
    if not field or not value:
        raise HTTPException(status_code=400, detail="Both field and value query params are required")
    validate_field_name(field)
    async with db_errors(table_name, "search"):
        return await repository.find_by_field(table_name, field, value)


async def get_row(table_name: str, raw_key: str) -> dict[str, Any] | None:
    validate_table_name(table_name)
    key = lookup_key(raw_key)
    async with db_errors(table_name, "select"):
        return await repository.get_row(table_name, key)


async def insert(table_name: str, body: Any) -> dict[str, Any]:
    validate_table_name(table_name)
    data = prepare_write_payload(body, table_name=table_name, action="insert")
    async with db_errors(table_name, "insert"):
        row = await repository.insert_row(table_name, data)
    logger.info("row_inserted table=%s id=%s", table_name, row.get("id"))
    return row


async def update(table_name: str, raw_key: str, body: Any) -> dict[str, Any]:
    validate_table_name(table_name)
    key = lookup_key(raw_key)
    data = prepare_write_payload(body, table_name=table_name, action="update")
    async with db_errors(table_name, "update"):
        row = await repository.update_row(table_name, key, data)
    if row is None:
        raise HTTPException(status_code=404, detail="Record not found")
    logger.info("row_updated table=%s key=%s", table_name, key)
    return row


async def delete(table_name: str, raw_key: str) -> dict[str, Any]:
    validate_table_name(table_name)
    key = lookup_key(raw_key)
    async with db_errors(table_name, "delete"):
        deleted = await repository.delete_row(table_name, key)
    if deleted == 0:
        raise HTTPException(status_code=404, detail="Record not found")
    return {
        "message": "Record deleted successfully",
        "identifier": "id" if isinstance(key, ByNumericId) else repository.token_column(),
        "value": key.value,
    }


async def delete_where(table_name: str, conditions: dict[str, str]) -> dict[str, Any]:
    validate_table_name(table_name)
    if not conditions:
        raise HTTPException(status_code=400, detail="At least one query parameter is required")
    for field in conditions:
        validate_field_name(field)

    async with db_errors(table_name, "delete"):
        deleted = await repository.delete_where(table_name, conditions)
    if deleted == 0:
        raise HTTPException(status_code=404, detail="No matching records found")
    return {"message": "Record(s) deleted successfully", "affectedRows": deleted}
