"""
Plumbing imported by both the CRUD gateway and the change tracker.

Holds the asyncpg pool, environment accessors, table/column name validation,
and the outbound webhook and SMTP clients. Nothing here knows which tables
are watched; queries against them live in `records/` and `tracking/`.
"""
