"""
pgstate - PostgreSQL-backed key-value state store.

This package implements a state store component on top of a single
PostgreSQL table:
- Get/Set/Delete by key with optimistic concurrency (ETags)
- Atomic multi-key transactions (deletes first, then upserts)
- A small HTTP API and server entry point for host runtimes

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Runtime   │────▶│  HTTP API   │────▶│ PostgreSQLStore │
    │   (SDK)     │     │  (aiohttp)  │     │                 │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                                                     ▼
                                            ┌─────────────────┐
                                            │ PostgresDBAccess│
                                            │ (psycopg pool)  │
                                            └────────┬────────┘
                                                     │
                                                     ▼
                                            ┌─────────────────┐
                                            │   PostgreSQL    │
                                            │  "state" table  │
                                            └─────────────────┘

Invariants:
    - ETags are the row's xmin, rendered as decimal text
    - Every keyed mutation affects exactly one row or fails
    - Transactions are all-or-nothing

How to change safely:
    - Never compute ETags in Python; always read them back from the row
    - Keep the row-count check on every mutation path
"""

from ._version import __version__

__all__ = ["__version__"]
