"""Database connection management and initialization."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from sqlite3 import Connection

from beartype import beartype

from swap_indexer.database.models import INDEXES, TABLE_SCHEMAS
from swap_indexer.utils.config import DB_PATH


@beartype
def get_connection(db_path: Path = DB_PATH, read_only: bool = False) -> Connection:
    """
    Create and return a database connection usable from worker threads.

    Args:
        db_path: SQLite database file
        read_only: Open the file with mode=ro so writes fail at the driver
    """
    if read_only:
        conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True, check_same_thread=False)
    else:
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@beartype
def initialize_database(db_path: Path = DB_PATH) -> None:
    """Initialize the database with required tables and indexes."""
    # Ensure database directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(db_path)
    try:
        cursor = conn.cursor()

        for table_sql in TABLE_SCHEMAS:
            cursor.execute(table_sql)

        for index_sql in INDEXES:
            cursor.execute(index_sql)

        conn.commit()
    finally:
        conn.close()


@beartype
def database_exists(db_path: Path = DB_PATH) -> bool:
    """Check if the database file exists."""
    return db_path.exists()
