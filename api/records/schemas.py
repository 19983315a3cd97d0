"""
Row lookup keys for the CRUD endpoints.

A path segment like `/api/tables/posts/42` or `/api/tables/posts/abc-123` is
resolved once, at the boundary, into either a numeric id or a token lookup.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_NUMERIC = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class ByNumericId:
    value: int


@dataclass(frozen=True)
class ByToken:
    value: str


LookupKey = Union[ByNumericId, ByToken]


def parse_lookup_key(raw: str) -> LookupKey:
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("Record identifier is empty.")
    if _NUMERIC.fullmatch(raw):
        return ByNumericId(int(raw))
    return ByToken(raw)
