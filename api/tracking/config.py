"""
Watched-table configuration.

WATCHED_TABLES format (comma-separated):
- `form_submits`            -> by-id: notify for rows with id above the watermark
- `blog_posts:view_count`   -> by-metric-column: notify when `view_count` changes

EMAIL_TEMPLATES format: `table=template,...` (see `notifications/templates.py`).
NOTIFY_ON_INSERT_TABLES: tables whose CRUD inserts run a cycle immediately
instead of waiting for the next poll tick.
"""

from __future__ import annotations

from dataclasses import dataclass

from core import settings
from core.identifiers import validate_identifier

MODE_BY_ID = "by-id"
MODE_BY_METRIC = "by-metric-column"

DEFAULT_WATCHED_TABLES = "form_submits,subscribers,blog_comments,blog_posts:view_count"
DEFAULT_EMAIL_TEMPLATES = (
    "form_submits=inquiry_confirmation,"
    "subscribers=subscriber_welcome,"
    "blog_comments=comment_moderation"
)

DEFAULT_POLL_INTERVAL_S = 10.0
DEFAULT_BATCH_LIMIT = 50
DEFAULT_MAX_DELIVERY_ATTEMPTS = 10
DEFAULT_SHUTDOWN_GRACE_S = 5.0


@dataclass(frozen=True)
class WatchedTable:
    name: str
    mode: str = MODE_BY_ID
    metric_column: str | None = None
    email_template: str | None = None
    notify_on_insert: bool = False

    @property
    def tracks_metric(self) -> bool:
        return self.mode == MODE_BY_METRIC


def parse_watched_tables(
    raw: str,
    *,
    email_templates: dict[str, str] | None = None,
    notify_on_insert: set[str] | None = None,
) -> list[WatchedTable]:
    """
    Parse the WATCHED_TABLES string. Raises ValueError on bad names or duplicates.
    """
    email_templates = email_templates or {}
    notify_on_insert = notify_on_insert or set()

    tables: list[WatchedTable] = []
    seen: set[str] = set()
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue

        name, _, column = item.partition(":")
        name = validate_identifier(name.strip())
        if name in seen:
            raise ValueError(f"Table {name!r} is listed twice in WATCHED_TABLES.")
        seen.add(name)

        column = column.strip()
        if column:
            tables.append(
                WatchedTable(
                    name=name,
                    mode=MODE_BY_METRIC,
                    metric_column=validate_identifier(column, kind="metric column"),
                    email_template=email_templates.get(name),
                    notify_on_insert=name in notify_on_insert,
                )
            )
        else:
            tables.append(
                WatchedTable(
                    name=name,
                    email_template=email_templates.get(name),
                    notify_on_insert=name in notify_on_insert,
                )
            )
    return tables


def parse_email_templates(raw: str) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for item in raw.split(","):
        table, sep, template = item.partition("=")
        if not sep or not table.strip() or not template.strip():
            continue
        mapping[table.strip()] = template.strip()
    return mapping


def watched_tables_from_env() -> list[WatchedTable]:
    return parse_watched_tables(
        settings.env_str("WATCHED_TABLES", DEFAULT_WATCHED_TABLES),
        email_templates=parse_email_templates(
            settings.env_str("EMAIL_TEMPLATES", DEFAULT_EMAIL_TEMPLATES)
        ),
        notify_on_insert=set(settings.env_list("NOTIFY_ON_INSERT_TABLES")),
    )


def poll_interval_s() -> float:
    value = settings.env_float("POLL_INTERVAL_S", DEFAULT_POLL_INTERVAL_S)
    return value if value > 0 else DEFAULT_POLL_INTERVAL_S


def batch_limit() -> int:
    value = settings.env_int("POLL_BATCH_LIMIT", DEFAULT_BATCH_LIMIT)
    return value if value > 0 else DEFAULT_BATCH_LIMIT


def max_delivery_attempts() -> int:
    # 0 means "retry forever".
    return max(0, settings.env_int("MAX_DELIVERY_ATTEMPTS", DEFAULT_MAX_DELIVERY_ATTEMPTS))


def metric_seed_on_boot() -> bool:
    return settings.env_bool("METRIC_SEED_ON_BOOT", True)


def shutdown_grace_s() -> float:
    return max(0.0, settings.env_float("SHUTDOWN_GRACE_S", DEFAULT_SHUTDOWN_GRACE_S))
