"""Construction of the configured event store."""

from __future__ import annotations

from pathlib import Path

from swap_indexer.database.connection import database_exists
from swap_indexer.database.interfaces import EventStore
from swap_indexer.database.repository import SQLiteEventStore
from swap_indexer.database.rest_store import PostgRESTEventStore
from swap_indexer.errors import StoreError
from swap_indexer.utils.config import DB_PATH, STORE_BACKEND, SUPABASE_ANON_KEY, SUPABASE_URL


def open_store(
    write_credentials: str | None,
    backend: str = STORE_BACKEND,
    db_path: Path = DB_PATH,
    base_url: str = SUPABASE_URL,
    read_key: str | None = SUPABASE_ANON_KEY,
) -> EventStore:
    """
    Open the event store for the configured backend.

    Without write credentials the store is opened read-only; the PostgREST
    backend then authenticates with ``read_key``.

    Raises:
        StoreError: If the backend is unknown or a read-only SQLite file is missing
    """
    read_only = not write_credentials
    if backend == "sqlite":
        if read_only and not database_exists(db_path):
            raise StoreError(f"Database {db_path} does not exist")
        return SQLiteEventStore(db_path, read_only=read_only)
    if backend == "postgrest":
        return PostgRESTEventStore(base_url, api_key=write_credentials or read_key, read_only=read_only)
    raise StoreError(f"Unknown store backend: {backend!r}")
