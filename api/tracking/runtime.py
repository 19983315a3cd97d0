"""
Process-wide tracking runtime.

Owns the TrackingService and its Poller. FastAPI starts it after the DB pool
is up and stops it before the pool closes (see `api/main.py`).
"""

from __future__ import annotations

import logging
from typing import Any

from core import webhook
from core.mailer import Mailer, smtp_settings_from_env

from . import config
from .dispatcher import EmailSink, NotificationDispatcher, WebhookSink
from .poller import Poller
from .service import TrackingService

logger = logging.getLogger(__name__)

_service: TrackingService | None = None
_poller: Poller | None = None


def build_service() -> TrackingService:
    tables = config.watched_tables_from_env()

    url = webhook.webhook_url()
    if url is None:
        logger.warning("WEBHOOK_URL is not set; webhook notifications are disabled.")

    smtp = smtp_settings_from_env()
    if smtp is None:
        logger.warning("SMTP is not configured (SMTP_HOST, SMTP_USER, SMTP_PASS); email notifications are disabled.")

    dispatcher = NotificationDispatcher(
        [
            WebhookSink(url, timeout_s=webhook.webhook_timeout_s()),
            EmailSink(Mailer(smtp) if smtp is not None else None),
        ]
    )
    return TrackingService(
        tables,
        dispatcher=dispatcher,
        batch_limit=config.batch_limit(),
        max_attempts=config.max_delivery_attempts(),
        seed_metrics=config.metric_seed_on_boot(),
    )


async def start() -> TrackingService:
    global _service, _poller
    if _service is not None:
        return _service

    service = build_service()
    await service.boot()

    poller = Poller(
        service,
        interval_s=config.poll_interval_s(),
        grace_s=config.shutdown_grace_s(),
    )
    poller.start()

    _service, _poller = service, poller
    logger.info("tracking_started tables=%s", ",".join(service.watched_table_names()))
    return service


async def stop() -> None:
    """
    Stop polling, then wait for cycles started elsewhere (insert hook,
    force-check) so none is left between dispatch and watermark persistence
    when the pool closes.
    """
    global _service, _poller
    if _poller is not None:
        await _poller.stop()
    if _service is not None:
        await _service.shutdown(grace_s=config.shutdown_grace_s())
    _service, _poller = None, None


def tracking_service() -> TrackingService:
    if _service is None:
        raise RuntimeError("Tracking is not started. Call runtime.start() on startup.")
    return _service


def watched_table_names() -> list[str]:
    return _service.watched_table_names() if _service is not None else []


async def on_row_inserted(table_name: str, row: dict[str, Any]) -> None:
    """
    BackgroundTasks entrypoint.

    This should never raise to the request path; we just log failures.
    """
    if _service is None:
        return
    try:
        await _service.on_row_inserted(table_name, row)
    except Exception:
        logger.exception("insert_hook_failed table=%s row_id=%s", table_name, row.get("id"))
