"""Database package: declarative base, engine and session factory helpers."""

from app.db.base import Base, create_engine, create_session_factory, create_tables, dialect_insert

__all__ = [
    "Base",
    "create_engine",
    "create_session_factory",
    "create_tables",
    "dialect_insert",
]
