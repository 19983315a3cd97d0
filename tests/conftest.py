"""Shared fakes for the tracking tests: no database or network needed."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

import pytest

from notifications.templates import TemplateContext
from tracking.config import MODE_BY_METRIC, WatchedTable
from tracking.detector import ChangeEvent
from tracking.dispatcher import NotificationDispatcher, SinkResult
from tracking.repository import WatchedTableNotFound
from tracking.service import TrackingService


class FakeTrackingStore:
    """In-memory stand-in for `tracking.repository` with the same contract."""

    def __init__(self, watermarks: Optional[dict[str, int]] = None, *, sources: Any = None) -> None:
        self.sources = sources
        self.watermarks: dict[str, int] = dict(watermarks or {})
        self.check_times: dict[str, int] = {}
        self.history: dict[str, list[int]] = {k: [v] for k, v in self.watermarks.items()}
        self.fail_advance = False

    def _touch(self, table_name: str) -> None:
        self.check_times[table_name] = self.check_times.get(table_name, 0) + 1

    def _set(self, table_name: str, value: int) -> None:
        self.watermarks[table_name] = value
        self.history.setdefault(table_name, []).append(value)

    async def ensure_schema(self) -> None:
        return None

    async def register_table(self, table_name: str) -> bool:
        if table_name in self.watermarks:
            return False
        # One step: a failing max id read leaves nothing registered.
        start = await self.sources.max_id(table_name) if self.sources is not None else 0
        self._set(table_name, start)
        return True

    async def get_watermark(self, table_name: str) -> int:
        if table_name not in self.watermarks:
            raise WatchedTableNotFound(table_name)
        return self.watermarks[table_name]

    async def advance_watermark(self, table_name: str, new_id: int) -> bool:
        if self.fail_advance:
            raise ConnectionError("tracking store unavailable")
        current = await self.get_watermark(table_name)
        if new_id < current:
            return False
        self._set(table_name, new_id)
        self._touch(table_name)
        return True

    async def touch_check_time(self, table_name: str) -> None:
        await self.get_watermark(table_name)
        self._touch(table_name)

    async def reset_watermark(self, table_name: str, new_id: int) -> None:
        await self.get_watermark(table_name)
        self._set(table_name, new_id)
        self._touch(table_name)

    async def list_tracking_state(self) -> list[dict[str, Any]]:
        return [
            {"table_name": name, "last_processed_id": value, "last_check_time": None}
            for name, value in sorted(self.watermarks.items())
        ]


class FakeSources:
    """In-memory stand-in for `tracking.sources`."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[int, dict[str, Any]]] = {}
        self.failing: set[str] = set()
        self.range_queries: list[tuple[str, int, int]] = []

    def add_rows(self, table_name: str, rows: list[dict[str, Any]]) -> None:
        table = self.tables.setdefault(table_name, {})
        for row in rows:
            table[int(row["id"])] = dict(row)

    def add_ids(self, table_name: str, ids: range | list[int]) -> None:
        self.add_rows(table_name, [{"id": i, "name": f"row {i}"} for i in ids])

    def _table(self, table_name: str) -> dict[int, dict[str, Any]]:
        if table_name in self.failing:
            raise ConnectionError(f"cannot reach {table_name}")
        return self.tables.setdefault(table_name, {})

    async def fetch_rows_after(self, table_name: str, watermark: int, limit: int) -> list[dict[str, Any]]:
        self.range_queries.append((table_name, watermark, limit))
        table = self._table(table_name)
        return [dict(table[i]) for i in sorted(table) if i > watermark][:limit]

    async def fetch_metric_projection(self, table_name: str, column: str) -> list[dict[str, Any]]:
        table = self._table(table_name)
        return [{"id": i, "value": table[i].get(column)} for i in sorted(table)]

    async def fetch_row(self, table_name: str, row_id: int) -> Optional[dict[str, Any]]:
        row = self._table(table_name).get(row_id)
        return dict(row) if row is not None else None

    async def max_id(self, table_name: str) -> int:
        return max(self._table(table_name), default=0)


class ScriptedSink:
    """Sink that fails a configurable number of times per row id."""

    def __init__(self, name: str = "webhook", failures: Optional[dict[int, int]] = None) -> None:
        self.name = name
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, int]] = []
        self.delivered: list[tuple[str, int]] = []
        self.events: list[ChangeEvent] = []

    async def deliver(self, table: WatchedTable, event: ChangeEvent) -> SinkResult:
        self.calls.append((table.name, event.row_id))
        self.events.append(event)
        remaining = self.failures.get(event.row_id, 0)
        if remaining != 0:
            # Negative counts mean "fail forever".
            if remaining > 0:
                self.failures[event.row_id] = remaining - 1
            return SinkResult(sink=self.name, ok=False, error="scripted failure")
        self.delivered.append((table.name, event.row_id))
        return SinkResult(sink=self.name, ok=True)

    def attempts_for(self, row_id: int) -> int:
        return sum(1 for _, rid in self.calls if rid == row_id)


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[Any] = []

    async def send(self, email: Any) -> str:
        self.sent.append(email)
        return f"<msg-{len(self.sent)}@test>"


def by_id(name: str = "form_submits", **kwargs: Any) -> WatchedTable:
    return WatchedTable(name=name, **kwargs)


def by_metric(name: str = "blog_posts", column: str = "view_count") -> WatchedTable:
    return WatchedTable(name=name, mode=MODE_BY_METRIC, metric_column=column)


def make_service(
    tables: list[WatchedTable],
    *,
    store: FakeTrackingStore,
    sources: FakeSources,
    sinks: list[Any],
    batch_limit: int = 50,
    max_attempts: int = 0,
    seed_metrics: bool = True,
) -> TrackingService:
    return TrackingService(
        tables,
        dispatcher=NotificationDispatcher(sinks),
        store=store,
        sources=sources,
        batch_limit=batch_limit,
        max_attempts=max_attempts,
        seed_metrics=seed_metrics,
    )


def fixed_context(**kwargs: Any) -> TemplateContext:
    return TemplateContext(
        today=date(2024, 3, 1),
        admin_email="admin@example.com",
        admin_bcc=("audit@example.com",),
        post_title=kwargs.get("post_title"),
    )


@pytest.fixture
def store(sources: "FakeSources") -> FakeTrackingStore:
    return FakeTrackingStore(sources=sources)


@pytest.fixture
def sources() -> FakeSources:
    return FakeSources()


@pytest.fixture
def sink() -> ScriptedSink:
    return ScriptedSink()
