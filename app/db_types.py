"""Database-agnostic type definitions for SQLAlchemy models.

Production runs on PostgreSQL; the test suite runs on SQLite through
aiosqlite, so models use these aliases instead of dialect types directly.
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Stored natively on PostgreSQL, as CHAR(32) hex on SQLite
UUIDType = PG_UUID
