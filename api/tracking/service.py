"""
Change-tracking business logic.

One cycle per watched table moves through IDLE -> DETECTING -> DISPATCHING ->
ADVANCING -> IDLE:

1) detect a batch ordered by id, starting at the mirror's watermark
2) dispatch every event in order; a failed row does not stop later rows
3) advance the watermark to the last row of the contiguous settled prefix
   (settled = delivered, or abandoned after MAX_DELIVERY_ATTEMPTS)
4) persist the new watermark, or at least touch last_check_time

A row that fails is re-fetched next cycle because the watermark never passed
it. Later rows in the same batch that succeeded are re-delivered as well:
delivery is at-least-once, never at-most-once.

Cycles for the same table are serialized with a per-table lock. The poller
skips a table whose cycle is still running; admin calls wait for it.

A table whose watermark could not be loaded at boot (unreadable source table,
transient error) is hydrated at the start of its next cycle instead; the other
tables are unaffected.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from . import repository as repository_module
from . import sources as sources_module
from .config import DEFAULT_BATCH_LIMIT, DEFAULT_MAX_DELIVERY_ATTEMPTS, WatchedTable
from .detector import ChangeDetector, Detection
from .dispatcher import NotificationDispatcher
from .mirror import WatermarkMirror
from .repository import WatchedTableNotFound

logger = logging.getLogger(__name__)

IDLE = "IDLE"
DETECTING = "DETECTING"
DISPATCHING = "DISPATCHING"
ADVANCING = "ADVANCING"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CycleOutcome:
    table_name: str
    ok: bool
    detected: int = 0
    delivered: int = 0
    failed: int = 0
    abandoned: int = 0
    watermark: int | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "table": self.table_name,
            "ok": self.ok,
            "detected": self.detected,
            "delivered": self.delivered,
            "failed": self.failed,
            "abandoned": self.abandoned,
            "watermark": self.watermark,
            "error": self.error,
        }


class TrackingService:
    def __init__(
        self,
        tables: list[WatchedTable],
        *,
        dispatcher: NotificationDispatcher,
        store: Any = repository_module,
        sources: Any = sources_module,
        mirror: WatermarkMirror | None = None,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        max_attempts: int = DEFAULT_MAX_DELIVERY_ATTEMPTS,
        seed_metrics: bool = True,
    ) -> None:
        self.tables = {t.name: t for t in tables}
        self.dispatcher = dispatcher
        self.store = store
        self.sources = sources
        self.detector = ChangeDetector(
            mirror=mirror or WatermarkMirror(),
            sources=sources,
            batch_limit=batch_limit,
        )
        self.max_attempts = max_attempts
        self.seed_metrics = seed_metrics

        self.boot_complete = False
        self.states = {name: IDLE for name in self.tables}
        self.last_cycle_started_at: datetime | None = None
        self.last_cycle_finished_at: datetime | None = None
        self.last_cycle_ok: bool | None = None
        self.closing = False
        self._locks = {name: asyncio.Lock() for name in self.tables}

    @property
    def mirror(self) -> WatermarkMirror:
        return self.detector.mirror

    def watched_table_names(self) -> list[str]:
        return list(self.tables)

    def table(self, table_name: str) -> WatchedTable:
        try:
            return self.tables[table_name]
        except KeyError:
            raise WatchedTableNotFound(f"Table {table_name!r} is not watched.") from None

    async def boot(self) -> None:
        """
        Create the tracking table, then register and hydrate every watched table.

        Only the tracking table itself is fatal. A table that cannot be
        registered or read stays un-hydrated; its cycles retry hydration and
        are skipped until it succeeds.
        """
        await self.store.ensure_schema()

        for table in self.tables.values():
            try:
                await self._hydrate(table)
            except Exception:
                logger.exception("tracking_hydrate_failed table=%s", table.name)

        self.boot_complete = True

    async def _hydrate(self, table: WatchedTable) -> None:
        # A new table starts at its current max id, so existing rows are not new.
        registered = await self.store.register_table(table.name)
        watermark = await self.store.get_watermark(table.name)
        if table.tracks_metric and self.seed_metrics:
            await self.detector.seed_snapshot(table)

        # Hydrate last: a partial failure above leaves the table un-hydrated.
        self.mirror.hydrate(table.name, watermark)
        logger.info(
            "tracking_%s table=%s watermark=%s",
            "registered" if registered else "hydrated",
            table.name,
            watermark,
        )

    def pending_tables(self) -> list[str]:
        """
        Watched tables whose watermark could not be loaded yet.
        """
        return [name for name in self.tables if not self.mirror.is_hydrated(name)]

    async def run_cycle(self, *, wait: bool = False) -> list[CycleOutcome]:
        """
        One detection cycle over every watched table; failures are isolated per table.
        """
        if not self.boot_complete:
            return []

        self.last_cycle_started_at = _utc_now()
        outcomes: list[CycleOutcome] = []
        for table in self.tables.values():
            outcome = await self.run_table_cycle(table, wait=wait)
            if outcome is not None:
                outcomes.append(outcome)

        self.last_cycle_finished_at = _utc_now()
        self.last_cycle_ok = all(o.ok for o in outcomes)
        return outcomes

    async def run_table_cycle(self, table: WatchedTable, *, wait: bool = False) -> CycleOutcome | None:
        if self.closing:
            return None
        lock = self._locks[table.name]
        if lock.locked() and not wait:
            logger.info("cycle_skipped table=%s reason=in_flight", table.name)
            return None
        async with lock:
            # Queued behind a cycle that was still running when shutdown began.
            if self.closing:
                return None
            return await self._cycle(table)

    async def _cycle(self, table: WatchedTable) -> CycleOutcome:
        if not self.mirror.is_hydrated(table.name):
            try:
                await self._hydrate(table)
            except Exception as exc:
                logger.warning("cycle_skipped table=%s reason=not_hydrated error=%s", table.name, exc)
                return CycleOutcome(
                    table_name=table.name,
                    ok=False,
                    error=f"{type(exc).__name__}: {exc}",
                )

        start_watermark = self.mirror.get(table.name)

        self.states[table.name] = DETECTING
        try:
            detection = await self.detector.detect(table)
        except Exception as exc:
            # Bad connection, pool timeout, dropped table: retry next cycle.
            logger.exception("detection_failed table=%s", table.name)
            self.states[table.name] = IDLE
            return CycleOutcome(
                table_name=table.name,
                ok=False,
                watermark=start_watermark,
                error=f"{type(exc).__name__}: {exc}",
            )

        self.states[table.name] = DISPATCHING
        outcome = await self._dispatch(table, detection, start_watermark)

        self.states[table.name] = ADVANCING
        outcome = await self._advance(table, detection, start_watermark, outcome)

        self.states[table.name] = IDLE
        return outcome

    async def _dispatch(self, table: WatchedTable, detection: Detection, start_watermark: int) -> CycleOutcome:
        candidate = start_watermark
        blocked = False
        delivered = failed = abandoned = 0

        for event in detection.events:
            report = await self.dispatcher.deliver(table, event)
            settled = report.ok
            if report.ok:
                delivered += 1
            else:
                failed += 1
                attempts = self.mirror.record_failure(table.name, event.row_id)
                if self.max_attempts and attempts >= self.max_attempts:
                    logger.error(
                        "delivery_abandoned table=%s row_id=%s attempts=%s sinks=%s",
                        table.name,
                        event.row_id,
                        attempts,
                        ",".join(report.failed_sinks()),
                    )
                    abandoned += 1
                    settled = True
                else:
                    logger.warning(
                        "delivery_deferred table=%s row_id=%s attempts=%s sinks=%s",
                        table.name,
                        event.row_id,
                        attempts,
                        ",".join(report.failed_sinks()),
                    )

            if settled:
                self.mirror.clear_attempts(table.name, event.row_id)
                if event.change is not None:
                    self.mirror.snapshot(table.name).record(event.row_id, event.change.new)

            if not table.tracks_metric:
                if settled and not blocked:
                    candidate = event.row_id
                elif not settled:
                    blocked = True

        if table.tracks_metric and detection.high_water is not None:
            candidate = max(candidate, detection.high_water)

        return CycleOutcome(
            table_name=table.name,
            ok=failed == abandoned,
            detected=len(detection.events),
            delivered=delivered,
            failed=failed,
            abandoned=abandoned,
            watermark=candidate,
        )

    async def _advance(
        self,
        table: WatchedTable,
        detection: Detection,
        start_watermark: int,
        outcome: CycleOutcome,
    ) -> CycleOutcome:
        candidate = outcome.watermark if outcome.watermark is not None else start_watermark
        try:
            if candidate > start_watermark:
                if await self.store.advance_watermark(table.name, candidate):
                    self.mirror.advance(table.name, candidate)
                    if not table.tracks_metric:
                        # Includes failed rows deleted before they ever settled.
                        self.mirror.prune_attempts(table.name, up_to=candidate)
                    logger.info(
                        "watermark_advanced table=%s from=%s to=%s",
                        table.name,
                        start_watermark,
                        candidate,
                    )
                else:
                    # Someone (e.g. an admin reset) holds a higher value; follow the store.
                    self.mirror.reset(
                        table.name,
                        await self.store.get_watermark(table.name),
                        keep_attempts=True,
                    )
                    await self.store.touch_check_time(table.name)
            else:
                await self.store.touch_check_time(table.name)
        except Exception as exc:
            # Rows stay below the watermark and will be delivered again.
            logger.exception("watermark_persist_failed table=%s candidate=%s", table.name, candidate)
            return CycleOutcome(
                table_name=table.name,
                ok=False,
                detected=outcome.detected,
                delivered=outcome.delivered,
                failed=outcome.failed,
                abandoned=outcome.abandoned,
                watermark=self.mirror.get(table.name),
                error=f"{type(exc).__name__}: {exc}",
            )

        return CycleOutcome(
            table_name=table.name,
            ok=outcome.ok,
            detected=outcome.detected,
            delivered=outcome.delivered,
            failed=outcome.failed,
            abandoned=outcome.abandoned,
            watermark=self.mirror.get(table.name),
        )

    async def on_row_inserted(self, table_name: str, row: dict[str, Any]) -> CycleOutcome | None:
        """
        Hook for the CRUD layer after a successful insert.

        Tables configured with notify_on_insert run a cycle right away (queued
        behind any in-flight cycle); others are left to the poller. Either way
        delivery goes through the same watermark protocol, so a row is never
        sent twice because both paths saw it.
        """
        table = self.tables.get(table_name)
        if table is None or not self.boot_complete:
            return None
        if not table.notify_on_insert:
            logger.debug("insert_deferred_to_poller table=%s row_id=%s", table_name, row.get("id"))
            return None
        return await self.run_table_cycle(table, wait=True)

    async def reset_watermark(self, table_name: str, reset_to: int | None = None) -> int:
        """
        Administrative reset. `None` means "skip to the current max id".
        """
        table = self.table(table_name)
        async with self._locks[table.name]:
            if not self.mirror.is_hydrated(table.name):
                await self.store.register_table(table.name)
            if reset_to is None:
                reset_to = await self.sources.max_id(table.name)
            await self.store.reset_watermark(table.name, reset_to)
            self.mirror.reset(table.name, reset_to)
            if table.tracks_metric:
                if self.seed_metrics:
                    await self.detector.seed_snapshot(table)
                else:
                    self.mirror.snapshot(table.name).clear()
        logger.warning("watermark_reset table=%s to=%s", table.name, reset_to)
        return reset_to

    async def tracking_status(self) -> dict[str, Any]:
        return {
            "trackingRecords": await self.store.list_tracking_state(),
            "inMemoryWatermarks": self.mirror.watermarks(),
            "states": dict(self.states),
            "isInitialCheckComplete": self.boot_complete,
            "pendingTables": self.pending_tables(),
        }

    async def shutdown(self, *, grace_s: float) -> bool:
        """
        Refuse new cycles and wait up to `grace_s` for in-flight ones.

        Covers every cycle source (poller, insert hook, force-check, reset), so
        the pool is not closed between dispatch and watermark persistence.
        Returns False when the grace period ran out.
        """
        self.closing = True

        async def drained(lock: asyncio.Lock) -> None:
            async with lock:
                pass

        try:
            await asyncio.wait_for(
                asyncio.gather(*(drained(lock) for lock in self._locks.values())),
                timeout=grace_s,
            )
        except asyncio.TimeoutError:
            busy = [name for name, lock in self._locks.items() if lock.locked()]
            logger.warning("shutdown_grace_expired grace_s=%s busy_tables=%s", grace_s, ",".join(busy))
            return False
        return True

    def health(self) -> dict[str, Any]:
        return {
            "isInitialCheckComplete": self.boot_complete,
            "lastCycleStartedAt": self.last_cycle_started_at,
            "lastCycleFinishedAt": self.last_cycle_finished_at,
            "lastCycleCompleted": (
                self.last_cycle_finished_at is not None
                and self.last_cycle_started_at is not None
                and self.last_cycle_finished_at >= self.last_cycle_started_at
            ),
            "lastCycleOk": self.last_cycle_ok,
            "watermarks": self.mirror.watermarks(),
            "pendingTables": self.pending_tables(),
            "sinks": self.dispatcher.configured_sinks(),
        }
