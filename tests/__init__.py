"""
pgstate Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (live PostgreSQL)
"""
