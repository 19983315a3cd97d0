"""
In-memory mirror of the tracking store.

Holds, per watched table:
- the watermark (hydrated from the store at boot, written back after each
  successful advancement)
- the metric snapshot for metric-tracked tables (never persisted)
- failed delivery attempt counters per row id

The store stays the durability boundary; this cache only saves a round trip
per cycle and is reconciled at boot.
"""

from __future__ import annotations

from typing import Any, Iterable

from .repository import WatchedTableNotFound

_MISSING = object()


class MetricSnapshot:
    """
    Last observed metric value per row id. A missing id means "never seen".
    """

    def __init__(self) -> None:
        self._values: dict[int, Any] = {}

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, row_id: object) -> bool:
        return row_id in self._values

    def get(self, row_id: int, default: Any = _MISSING) -> Any:
        if default is _MISSING:
            return self._values[row_id]
        return self._values.get(row_id, default)

    def record(self, row_id: int, value: Any) -> None:
        self._values[row_id] = value

    def replace(self, values: dict[int, Any]) -> None:
        self._values = dict(values)

    def retain(self, row_ids: Iterable[int]) -> None:
        """
        Forget rows that no longer exist in the source table.
        """
        keep = set(row_ids)
        self._values = {k: v for k, v in self._values.items() if k in keep}

    def clear(self) -> None:
        self._values.clear()

    def as_dict(self) -> dict[int, Any]:
        return dict(self._values)


class WatermarkMirror:
    def __init__(self) -> None:
        self._watermarks: dict[str, int] = {}
        self._snapshots: dict[str, MetricSnapshot] = {}
        self._attempts: dict[tuple[str, int], int] = {}

    def hydrate(self, table_name: str, watermark: int) -> None:
        self._watermarks[table_name] = int(watermark)
        self._snapshots.setdefault(table_name, MetricSnapshot())

    def is_hydrated(self, table_name: str) -> bool:
        return table_name in self._watermarks

    def get(self, table_name: str) -> int:
        try:
            return self._watermarks[table_name]
        except KeyError:
            raise WatchedTableNotFound(f"Table {table_name!r} has no hydrated watermark.") from None

    def advance(self, table_name: str, new_id: int) -> bool:
        """
        Monotonic update; returns False when `new_id` is below the cached value.
        """
        current = self.get(table_name)
        if new_id < current:
            return False
        self._watermarks[table_name] = int(new_id)
        return True

    def reset(self, table_name: str, new_id: int, *, keep_attempts: bool = False) -> None:
        self._watermarks[table_name] = int(new_id)
        self._snapshots.setdefault(table_name, MetricSnapshot())
        if not keep_attempts:
            self.clear_table_attempts(table_name)

    def snapshot(self, table_name: str) -> MetricSnapshot:
        return self._snapshots.setdefault(table_name, MetricSnapshot())

    def record_failure(self, table_name: str, row_id: int) -> int:
        key = (table_name, row_id)
        self._attempts[key] = self._attempts.get(key, 0) + 1
        return self._attempts[key]

    def failed_attempts(self, table_name: str, row_id: int) -> int:
        return self._attempts.get((table_name, row_id), 0)

    def clear_attempts(self, table_name: str, row_id: int) -> None:
        self._attempts.pop((table_name, row_id), None)

    def clear_table_attempts(self, table_name: str) -> None:
        for key in [k for k in self._attempts if k[0] == table_name]:
            del self._attempts[key]

    def prune_attempts(self, table_name: str, *, up_to: int) -> None:
        """
        Drop counters for rows at or below `up_to` (already passed by the watermark).
        """
        for key in [k for k in self._attempts if k[0] == table_name and k[1] <= up_to]:
            del self._attempts[key]

    def retain_attempts(self, table_name: str, row_ids: Iterable[int]) -> None:
        keep = set(row_ids)
        for key in [k for k in self._attempts if k[0] == table_name and k[1] not in keep]:
            del self._attempts[key]

    def watermarks(self) -> dict[str, int]:
        return dict(self._watermarks)
