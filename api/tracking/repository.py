"""
Tracking store persistence (raw SQL).

One row per watched table in `webhook_processed_records`:
- table_name (primary key)
- last_processed_id: highest row id already delivered (the watermark)
- last_check_time: last poll attempt, touched even when nothing was found

The watermark only moves forward through `advance_watermark`; the conditional
UPDATE makes a regression a no-op even when two writers race.
`reset_watermark` is the administrative escape hatch.

A table gets its row from `register_table`, which seeds it with the source
table's current max id in the same statement.
"""

from __future__ import annotations

import logging
from typing import Any

from core import db
from core.identifiers import quote_identifier

TRACKING_TABLE = "webhook_processed_records"

logger = logging.getLogger(__name__)


class WatchedTableNotFound(LookupError):
    pass


async def ensure_schema() -> None:
    """
    Create the tracking table. Failure here is fatal at boot.
    """
    await db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {TRACKING_TABLE} (
          table_name varchar(100) PRIMARY KEY,
          last_processed_id bigint NOT NULL DEFAULT 0,
          last_check_time timestamptz NOT NULL DEFAULT now()
        )
        """
    )


async def register_table(table_name: str) -> bool:
    """
    Register a watched table at its current max id.

    The tracking row and its starting watermark are written by one statement,
    so a failed registration leaves no row behind and pre-existing source rows
    are never treated as new. Existing rows are left untouched. Returns True
    when this call created the row.
    """
    source = quote_identifier(table_name)
    row = await db.fetch_one(
        f"""
        INSERT INTO {TRACKING_TABLE} (table_name, last_processed_id)
        SELECT $1, COALESCE(MAX(id), 0)
        FROM {source}
        ON CONFLICT (table_name) DO NOTHING
        RETURNING last_processed_id
        """,
        table_name,
    )
    return row is not None


async def get_watermark(table_name: str) -> int:
    row = await db.fetch_one(
        f"""
        SELECT last_processed_id
        FROM {TRACKING_TABLE}
        WHERE table_name = $1
        """,
        table_name,
    )
    if row is None:
        raise WatchedTableNotFound(f"Table {table_name!r} is not registered for tracking.")
    return int(row["last_processed_id"])


async def advance_watermark(table_name: str, new_id: int) -> bool:
    """
    Move the watermark to `new_id` unless that would move it backwards.

    Returns False (and logs a warning) when the store already holds a higher
    value.
    """
    row = await db.fetch_one(
        f"""
        UPDATE {TRACKING_TABLE}
        SET last_processed_id = $2,
            last_check_time = now()
        WHERE table_name = $1
          AND last_processed_id <= $2
        RETURNING last_processed_id
        """,
        table_name,
        new_id,
    )
    if row is not None:
        return True

    current = await get_watermark(table_name)
    logger.warning(
        "watermark_regression_rejected table=%s stored=%s requested=%s",
        table_name,
        current,
        new_id,
    )
    return False


async def touch_check_time(table_name: str) -> None:
    await db.execute(
        f"""
        UPDATE {TRACKING_TABLE}
        SET last_check_time = now()
        WHERE table_name = $1
        """,
        table_name,
    )


async def reset_watermark(table_name: str, new_id: int) -> None:
    """
    Administrative override: set the watermark regardless of monotonicity.
    """
    row = await db.fetch_one(
        f"""
        UPDATE {TRACKING_TABLE}
        SET last_processed_id = $2,
            last_check_time = now()
        WHERE table_name = $1
        RETURNING table_name
        """,
        table_name,
        new_id,
    )
    if row is None:
        raise WatchedTableNotFound(f"Table {table_name!r} is not registered for tracking.")


async def list_tracking_state() -> list[dict[str, Any]]:
    return await db.fetch_all(
        f"""
        SELECT table_name, last_processed_id, last_check_time
        FROM {TRACKING_TABLE}
        ORDER BY table_name
        """
    )
