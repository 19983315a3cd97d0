"""
Change detection for watched tables.

by-id tables:
    one bounded range query per cycle (`id > watermark ORDER BY id LIMIT n`),
    so a large backlog drains over several cycles.

by-metric-column tables:
    full (id, value) projection diffed against the in-memory snapshot. A row
    missing from the snapshot counts as new, with a previous value of 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from . import sources as sources_module
from .config import DEFAULT_BATCH_LIMIT, WatchedTable
from .mirror import WatermarkMirror

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricChange:
    column: str
    previous: Any
    new: Any
    difference: Any

    def as_dict(self) -> dict[str, Any]:
        return {
            f"previous_{self.column}": self.previous,
            f"new_{self.column}": self.new,
            "difference": self.difference,
        }


@dataclass(frozen=True)
class ChangeEvent:
    table_name: str
    row_id: int
    payload: dict[str, Any]
    change: MetricChange | None = None

    @property
    def sink_table_name(self) -> str:
        if self.change is None:
            return self.table_name
        return f"{self.table_name}_{self.change.column}_change"

    def webhook_body(self) -> dict[str, Any]:
        details = dict(self.payload)
        if self.change is not None:
            details["_change_details"] = self.change.as_dict()
        return {"tableName": self.sink_table_name, "recordDetails": details}


@dataclass(frozen=True)
class Detection:
    events: list[ChangeEvent] = field(default_factory=list)
    # Highest row id observed by a metric scan; None for by-id tables.
    high_water: int | None = None


def _difference(previous: Any, new: Any) -> Any:
    try:
        return (new or 0) - (previous or 0)
    except TypeError:
        return None


class ChangeDetector:
    def __init__(
        self,
        *,
        mirror: WatermarkMirror,
        sources: Any = sources_module,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
    ) -> None:
        if batch_limit <= 0:
            raise ValueError("batch_limit must be > 0")
        self.mirror = mirror
        self.sources = sources
        self.batch_limit = batch_limit

    async def detect(self, table: WatchedTable) -> Detection:
        if table.tracks_metric:
            return await self.detect_metric_changes(table)
        return Detection(events=await self.detect_new_rows(table))

    async def detect_new_rows(self, table: WatchedTable) -> list[ChangeEvent]:
        watermark = self.mirror.get(table.name)
        rows = await self.sources.fetch_rows_after(table.name, watermark, self.batch_limit)
        events = [
            ChangeEvent(table_name=table.name, row_id=int(row["id"]), payload=dict(row))
            for row in rows
        ]
        # The query already orders by id; keep the invariant even for odd drivers.
        events.sort(key=lambda e: e.row_id)
        if events:
            logger.info(
                "rows_detected table=%s count=%s after_id=%s",
                table.name,
                len(events),
                watermark,
            )
        return events

    async def detect_metric_changes(self, table: WatchedTable) -> Detection:
        column = table.metric_column or ""
        projection = await self.sources.fetch_metric_projection(table.name, column)
        snapshot = self.mirror.snapshot(table.name)

        events: list[ChangeEvent] = []
        observed: list[int] = []
        for entry in projection:
            row_id = int(entry["id"])
            value = entry["value"]
            observed.append(row_id)

            seen = row_id in snapshot
            if seen and snapshot.get(row_id) == value:
                continue

            row = await self.sources.fetch_row(table.name, row_id)
            if row is None:
                # Deleted between the projection and the lookup.
                continue

            previous = snapshot.get(row_id) if seen else 0
            difference = _difference(previous, value) if seen else value
            events.append(
                ChangeEvent(
                    table_name=table.name,
                    row_id=row_id,
                    payload=dict(row),
                    change=MetricChange(
                        column=column,
                        previous=previous,
                        new=value,
                        difference=difference,
                    ),
                )
            )

        snapshot.retain(observed)
        # Rows that are gone or back at their recorded value need no retry.
        self.mirror.retain_attempts(table.name, [e.row_id for e in events])
        if events:
            logger.info("metric_changes_detected table=%s column=%s count=%s", table.name, column, len(events))
        return Detection(events=events, high_water=max(observed, default=0))

    async def seed_snapshot(self, table: WatchedTable) -> int:
        """
        Record current metric values without emitting events. Returns row count.
        """
        projection = await self.sources.fetch_metric_projection(table.name, table.metric_column or "")
        self.mirror.snapshot(table.name).replace({int(e["id"]): e["value"] for e in projection})
        logger.info("metric_snapshot_seeded table=%s rows=%s", table.name, len(projection))
        return len(projection)
