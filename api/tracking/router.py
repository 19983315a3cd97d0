"""
Tracking admin and health endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, HTTPException, Query
from fastapi.responses import JSONResponse

from core import db
from core.identifiers import is_valid_identifier

from . import runtime
from .repository import WatchedTableNotFound
from .schemas import ResetTrackingRequest

router = APIRouter()

logger = logging.getLogger(__name__)


def _watched_table_or_400(table_name: str) -> str:
    if not is_valid_identifier(table_name):
        raise HTTPException(status_code=400, detail="Invalid table name")
    return table_name


@router.get("/api/tracking-status")
async def tracking_status() -> dict:
    return await runtime.tracking_service().tracking_status()


@router.post("/api/force-check")
async def force_check(table: str | None = Query(default=None, max_length=100)) -> dict:
    """
    Run a detection cycle now. Waits behind a cycle that is already running.
    """
    if table is not None:
        _watched_table_or_400(table)

    service = runtime.tracking_service()
    if table is None:
        outcomes = await service.run_cycle(wait=True)
    else:
        try:
            watched = service.table(table)
        except WatchedTableNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        outcome = await service.run_table_cycle(watched, wait=True)
        outcomes = [outcome] if outcome is not None else []

    return {
        "status": "check completed",
        "outcomes": [o.as_dict() for o in outcomes],
        "watermarks": service.mirror.watermarks(),
    }


@router.post("/api/reset-tracking/{table_name}")
async def reset_tracking(
    table_name: str,
    request: ResetTrackingRequest | None = Body(default=None),
) -> dict:
    _watched_table_or_400(table_name)
    reset_to = request.reset_to_id if request is not None else None

    try:
        reset_to = await runtime.tracking_service().reset_watermark(table_name, reset_to)
    except WatchedTableNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return {
        "message": f"Tracking for {table_name} reset to ID {reset_to}",
        "resetToId": reset_to,
    }


@router.get("/health")
async def health():
    try:
        await db.fetch_one("SELECT 1 AS ok")
    except Exception as exc:
        logger.warning("health_db_unreachable error=%s", exc)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "error": str(exc)})

    try:
        tracking = runtime.tracking_service().health()
    except RuntimeError:
        tracking = {"isInitialCheckComplete": False}

    return {"status": "healthy", **tracking}
