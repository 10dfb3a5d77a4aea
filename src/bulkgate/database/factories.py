"""Database factory functions for creating database instances."""

import os
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from bulkgate.database.sqlalchemy_db import SQLAlchemyDatabase

DEFAULT_DB_DIR = Path.home() / ".bulkgate"


def resolve_database_url(location: Optional[str] = None) -> str:
    """Turn a database location into a SQLAlchemy URL.

    The location is taken from the argument, then the BULKGATE_DB_PATH
    environment variable, then ~/.bulkgate/bulkgate.db. A full URL such as
    ``postgresql://user@host/db`` is passed through; anything else is a path
    to a SQLite file.
    """
    location = location or os.environ.get("BULKGATE_DB_PATH")
    if location is None:
        DEFAULT_DB_DIR.mkdir(exist_ok=True)
        location = str(DEFAULT_DB_DIR / "bulkgate.db")

    if "://" in location:
        try:
            make_url(location)
        except ArgumentError as e:
            raise ValueError(f"Invalid database URL '{location}': {e}")
        return location
    return f"sqlite:///{location}"


def create_database(location: Optional[str] = None) -> SQLAlchemyDatabase:
    """Create a database for a SQLite path or any SQLAlchemy URL."""
    return SQLAlchemyDatabase(resolve_database_url(location))


def create_sqlite_database(database_path: Optional[str] = None) -> SQLAlchemyDatabase:
    """Create a SQLite database instance.

    Args:
        database_path: Path to SQLite database file. If None, checks BULKGATE_DB_PATH
            environment variable, then defaults to ~/.bulkgate/bulkgate.db

    Returns:
        SQLAlchemyDatabase instance configured for SQLite
    """
    url = resolve_database_url(database_path)
    if make_url(url).get_backend_name() != "sqlite":
        raise ValueError(f"Not a SQLite database: {url}")
    return SQLAlchemyDatabase(url)
