"""Persistence backends."""

from .backends import DatabaseBackend, PostgresBackend, SQLiteBackend, create_backend
from .database import get_database, reset_database

__all__ = [
    "DatabaseBackend",
    "PostgresBackend",
    "SQLiteBackend",
    "create_backend",
    "get_database",
    "reset_database",
]
