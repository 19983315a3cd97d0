"""
SQL identifier rules.

Table and column names cannot be bound as parameters, so every name that ends
up interpolated into SQL must pass `validate_identifier` first.
"""

from __future__ import annotations

import re

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z0-9_]+")


class InvalidIdentifier(ValueError):
    pass


def is_valid_identifier(name: str | None) -> bool:
    return bool(name) and IDENTIFIER_PATTERN.fullmatch(name) is not None


def validate_identifier(name: str | None, *, kind: str = "table name") -> str:
    if not is_valid_identifier(name):
        raise InvalidIdentifier(f"Invalid {kind}: {name!r}")
    return str(name)


def quote_identifier(name: str, *, kind: str = "table name") -> str:
    """
    Validate and double-quote a Postgres identifier.
    """
    return '"' + validate_identifier(name, kind=kind) + '"'
