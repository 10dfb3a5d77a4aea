"""Database layer for bulkgate application."""

from bulkgate.database.base import Database
from bulkgate.database.factories import create_database, create_sqlite_database

__all__ = ["Database", "create_database", "create_sqlite_database"]
