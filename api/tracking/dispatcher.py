"""
Notification dispatch.

`NotificationDispatcher.deliver` runs every sink for one change event
concurrently and returns a per-sink report. Sinks never raise: a failure is
logged and reported so the caller can withhold the watermark for that row.

Sinks:
- WebhookSink: POST {"tableName", "recordDetails"} with a bounded timeout
- EmailSink: render the table's email template and send it over SMTP

A sink that is not configured (no webhook URL, no SMTP, no template for the
table) reports `skipped`, which counts as success.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from fastapi.encoders import jsonable_encoder

from core import webhook
from core.mailer import Mailer, MailerError
from notifications import templates

from . import sources as sources_module
from .config import WatchedTable
from .detector import ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_COMMENT_PARENT_TABLE = "blog_posts"


@dataclass(frozen=True)
class SinkResult:
    sink: str
    ok: bool
    skipped: bool = False
    error: str | None = None


@dataclass(frozen=True)
class DeliveryReport:
    event: ChangeEvent
    results: tuple[SinkResult, ...]

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    def failed_sinks(self) -> list[str]:
        return [r.sink for r in self.results if not r.ok]


class Sink(Protocol):
    name: str

    async def deliver(self, table: WatchedTable, event: ChangeEvent) -> SinkResult:
        ...


class WebhookSink:
    name = "webhook"

    def __init__(
        self,
        url: str | None,
        *,
        timeout_s: float = webhook.DEFAULT_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = (url or "").strip() or None
        self.timeout_s = timeout_s
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.url is not None

    async def deliver(self, table: WatchedTable, event: ChangeEvent) -> SinkResult:
        if self.url is None:
            return SinkResult(sink=self.name, ok=True, skipped=True)

        body = jsonable_encoder(event.webhook_body())
        try:
            status = await webhook.post_json(
                self.url,
                body,
                timeout_s=self.timeout_s,
                client=self.client,
            )
        except webhook.WebhookError as exc:
            logger.warning(
                "webhook_failed table=%s row_id=%s error=%s",
                event.sink_table_name,
                event.row_id,
                exc,
            )
            return SinkResult(sink=self.name, ok=False, error=str(exc))

        logger.info("webhook_sent table=%s row_id=%s status=%s", event.sink_table_name, event.row_id, status)
        return SinkResult(sink=self.name, ok=True)


class EmailSink:
    name = "email"

    def __init__(
        self,
        mailer: Mailer | None,
        *,
        sources: Any = sources_module,
        comment_parent_table: str = DEFAULT_COMMENT_PARENT_TABLE,
        context_factory: Any = templates.context_from_env,
    ) -> None:
        self.mailer = mailer
        self.sources = sources
        self.comment_parent_table = comment_parent_table
        self.context_factory = context_factory

    @property
    def enabled(self) -> bool:
        return self.mailer is not None

    async def _post_title(self, row: dict[str, Any]) -> str | None:
        post_id = row.get("post_id")
        if post_id is None:
            return None
        try:
            post = await self.sources.fetch_row(self.comment_parent_table, int(post_id))
        except Exception:
            # The title is cosmetic; the template falls back to "Unknown Post".
            logger.warning("post_title_lookup_failed post_id=%s", post_id, exc_info=True)
            return None
        return str(post["title"]) if post and post.get("title") else None

    async def deliver(self, table: WatchedTable, event: ChangeEvent) -> SinkResult:
        # Metric changes only go to the webhook.
        if self.mailer is None or not table.email_template or event.change is not None:
            return SinkResult(sink=self.name, ok=True, skipped=True)

        post_title = None
        if table.email_template in templates.NEEDS_POST_TITLE:
            post_title = await self._post_title(event.payload)

        try:
            email = templates.render(
                table.email_template,
                event.payload,
                self.context_factory(post_title=post_title),
            )
        except ValueError as exc:
            logger.warning("email_skipped table=%s row_id=%s reason=%s", table.name, event.row_id, exc)
            return SinkResult(sink=self.name, ok=True, skipped=True, error=str(exc))

        try:
            message_id = await self.mailer.send(email)
        except MailerError as exc:
            logger.warning("email_failed table=%s row_id=%s error=%s", table.name, event.row_id, exc)
            return SinkResult(sink=self.name, ok=False, error=str(exc))

        logger.info(
            "email_sent table=%s row_id=%s template=%s message_id=%s",
            table.name,
            event.row_id,
            table.email_template,
            message_id,
        )
        return SinkResult(sink=self.name, ok=True)


class NotificationDispatcher:
    def __init__(self, sinks: list[Sink]) -> None:
        self.sinks = list(sinks)

    def configured_sinks(self) -> dict[str, bool]:
        return {s.name: bool(getattr(s, "enabled", True)) for s in self.sinks}

    async def _deliver_one(self, sink: Sink, table: WatchedTable, event: ChangeEvent) -> SinkResult:
        try:
            return await sink.deliver(table, event)
        except Exception as exc:
            logger.exception("sink_crashed sink=%s table=%s row_id=%s", sink.name, table.name, event.row_id)
            return SinkResult(sink=sink.name, ok=False, error=f"{type(exc).__name__}: {exc}")

    async def deliver(self, table: WatchedTable, event: ChangeEvent) -> DeliveryReport:
        results = await asyncio.gather(*(self._deliver_one(s, table, event) for s in self.sinks))
        return DeliveryReport(event=event, results=tuple(results))
