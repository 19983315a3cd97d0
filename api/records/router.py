"""
FastAPI router for the generic table endpoints.

Route order matters: `/search` and `/where` must be registered before the
`/{id_or_token}` catch-alls.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, HTTPException, Query, Request

from tracking import runtime as tracking_runtime

from . import repository
from . import service

router = APIRouter()


@router.get("/api/test")
async def test_connection() -> dict:
    try:
        result = await repository.ping()
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"message": "Database connection successful", "result": result}


@router.get("/api/tables/{table_name}")
async def list_rows(
    table_name: str,
    limit: int | None = Query(default=None, ge=1, le=10000),
    offset: int = Query(0, ge=0),
) -> list[dict[str, Any]]:
    return await service.list_rows(table_name, limit=limit, offset=offset)


@router.get("/api/tables/{table_name}/search")
async def search(
    table_name: str,
    field: str | None = Query(default=None, max_length=100),
    value: str | None = Query(default=None),
) -> dict[str, Any] | None:
    """
    First row where `field` equals `value`, or null.
    """
    return await service.search(table_name, field, value)


@router.get("/api/tables/{table_name}/{id_or_token}")
async def get_row(table_name: str, id_or_token: str) -> dict[str, Any]:
    row = await service.get_row(table_name, id_or_token)
    return row or {}


@router.post("/api/tables/{table_name}")
async def insert_row(
    table_name: str,
    background_tasks: BackgroundTasks,
    body: Any = Body(default=None),
) -> dict[str, Any]:
    row = await service.insert(table_name, body)

    # Notify after the HTTP response is sent; failures never reach the client.
    if table_name in tracking_runtime.watched_table_names():
        background_tasks.add_task(tracking_runtime.on_row_inserted, table_name, row)

    return row


@router.put("/api/tables/{table_name}/{id_or_token}")
async def update_row(
    table_name: str,
    id_or_token: str,
    body: Any = Body(default=None),
) -> dict[str, Any]:
    return await service.update(table_name, id_or_token, body)


@router.delete("/api/tables/{table_name}/where")
async def delete_where(table_name: str, request: Request) -> dict[str, Any]:
    """
    e.g. DELETE /api/tables/blog_post_tags/where?post_id=76&tag_id=5
    """
    conditions = dict(request.query_params)
    return await service.delete_where(table_name, conditions)


@router.delete("/api/tables/{table_name}/{id_or_token}")
async def delete_row(table_name: str, id_or_token: str) -> dict[str, Any]:
    return await service.delete(table_name, id_or_token)
