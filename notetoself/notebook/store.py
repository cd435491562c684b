"""Persistent notebook store backed by PostgreSQL via asyncpg.

Layout: notebooks(id, name UNIQUE) and cells(id, notebook_id -> notebooks.id, text).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from notetoself.config import DEFAULT_PLACEHOLDER_TEXT, DatabaseConfig
from notetoself.core import AlreadyExistsError, NotFoundError, StoreError, ValidationError
from notetoself.notebook.notebook import Notebook, TextCell
from notetoself.notebook.records import cell_record, cell_records, notebook_record, to_notebook, to_text_cell

logger = logging.getLogger("notetoself.notebook")

SCHEMA_STATEMENTS = (
    "CREATE TABLE IF NOT EXISTS notebooks ("
    "id INTEGER GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY, "
    "name TEXT NOT NULL UNIQUE)",
    "CREATE TABLE IF NOT EXISTS cells ("
    "id INTEGER GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY, "
    "notebook_id INTEGER NOT NULL REFERENCES notebooks (id) ON DELETE CASCADE, "
    "text TEXT NOT NULL)",
    "CREATE INDEX IF NOT EXISTS cells_notebook_id_idx ON cells (notebook_id)",
)

INSERT_NOTEBOOK = "INSERT INTO notebooks (name) VALUES ($1) ON CONFLICT (name) DO NOTHING RETURNING id"
SELECT_NOTEBOOK_ID = "SELECT id FROM notebooks WHERE name = $1"
SELECT_NOTEBOOK = "SELECT id, name FROM notebooks WHERE id = $1"
SELECT_CELLS = "SELECT id, notebook_id, text FROM cells WHERE notebook_id = $1 ORDER BY id"
UPSERT_NOTEBOOK = "INSERT INTO notebooks (id, name) VALUES ($1, $2) ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name"
UPSERT_CELL = (
    "INSERT INTO cells (id, notebook_id, text) VALUES ($1, $2, $3) "
    "ON CONFLICT (id) DO UPDATE SET notebook_id = EXCLUDED.notebook_id, text = EXCLUDED.text"
)
DELETE_STALE_CELLS = "DELETE FROM cells WHERE notebook_id = $1 AND NOT (id = ANY($2::int[]))"
INSERT_CELL = "INSERT INTO cells (notebook_id, text) VALUES ($1, $2) RETURNING id, notebook_id, text"
DELETE_CELL = "DELETE FROM cells WHERE id = $1 RETURNING id"
DELETE_OWNED_CELL = "DELETE FROM cells WHERE id = $1 AND notebook_id = $2 RETURNING id"
UPDATE_CELL_TEXT = "UPDATE cells SET text = $2 WHERE id = $1"
UPDATE_OWNED_CELL_TEXT = "UPDATE cells SET text = $2 WHERE id = $1 AND notebook_id = $3"
SELECT_FOREIGN_CELLS = "SELECT id FROM cells WHERE id = ANY($1::int[]) AND notebook_id <> $2 ORDER BY id"

# Rows upserted with explicit ids do not move the identity sequence; push it
# past the largest submitted id, never backwards.
SYNC_NOTEBOOK_IDS = (
    "SELECT setval(pg_get_serial_sequence('notebooks', 'id')::regclass, $1::bigint) "
    "WHERE $1::bigint > COALESCE(pg_sequence_last_value(pg_get_serial_sequence('notebooks', 'id')::regclass), 0)"
)
SYNC_CELL_IDS = (
    "SELECT setval(pg_get_serial_sequence('cells', 'id')::regclass, $1::bigint) "
    "WHERE $1::bigint > COALESCE(pg_sequence_last_value(pg_get_serial_sequence('cells', 'id')::regclass), 0)"
)


def clean_name(name: str) -> str:
    """Normalize a notebook name, rejecting blank ones."""
    name = name.strip()
    if not name:
        raise ValidationError("Notebook name must not be empty")
    return name


def _affected(status: str) -> int:
    """Row count from a command tag such as 'DELETE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class NotebookStore:
    """Maps notebook identity to its cells. Every call holds one pooled connection."""

    def __init__(
        self,
        pool: Any,
        *,
        acquire_timeout_seconds: float = 10,
        placeholder_text: str = DEFAULT_PLACEHOLDER_TEXT,
    ) -> None:
        self._pool = pool
        self._acquire_timeout = acquire_timeout_seconds
        self._placeholder_text = placeholder_text

    @classmethod
    async def connect(
        cls, config: DatabaseConfig, *, placeholder_text: str = DEFAULT_PLACEHOLDER_TEXT
    ) -> NotebookStore:
        """Create the connection pool described by config."""
        if not config.dsn:
            raise StoreError("No database configured", hint="Run `notetoself init <dsn>` or set DATABASE_URL")
        try:
            pool = await asyncpg.create_pool(
                config.dsn,
                min_size=config.min_size,
                max_size=config.max_size,
                command_timeout=config.command_timeout_seconds,
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreError(f"Connection failed: {e}", retryable=True) from e
        logger.info("Connected pool (max %d connections)", config.max_size)
        return cls(pool, acquire_timeout_seconds=config.acquire_timeout_seconds, placeholder_text=placeholder_text)

    async def close(self) -> None:
        await self._pool.close()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        """Acquire a connection for one call and map driver failures to StoreError."""
        try:
            async with self._pool.acquire(timeout=self._acquire_timeout) as conn:
                yield conn
        except TimeoutError as e:
            raise StoreError("Timed out waiting for the database", hint="Retry the request", retryable=True) from e
        except asyncpg.exceptions.QueryCanceledError as e:
            raise StoreError(f"Query cancelled: {e}", hint="Retry the request", retryable=True) from e
        except asyncpg.PostgresError as e:
            raise StoreError(f"Database error: {e}") from e
        except (asyncpg.InterfaceError, OSError) as e:
            raise StoreError(f"Database unavailable: {e}", retryable=True) from e

    async def init_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        async with self._connection() as conn, conn.transaction():
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        logger.info("Schema ready")

    async def create(self, name: str) -> int:
        """Insert an empty notebook and return its id."""
        name = clean_name(name)
        async with self._connection() as conn:
            notebook_id = await conn.fetchval(INSERT_NOTEBOOK, name)
        if notebook_id is None:
            raise AlreadyExistsError("That notebook already exists!", hint="Open it instead")
        logger.info("Created notebook %s (%r)", notebook_id, name)
        return notebook_id

    async def find_by_name(self, name: str) -> int | None:
        async with self._connection() as conn:
            return await conn.fetchval(SELECT_NOTEBOOK_ID, clean_name(name))

    async def foreign_cells(self, notebook_id: int, cell_ids: list[int]) -> list[int]:
        """Ids among cell_ids that currently belong to some other notebook."""
        if not cell_ids:
            return []
        async with self._connection() as conn:
            rows = await conn.fetch(SELECT_FOREIGN_CELLS, cell_ids, notebook_id)
        return [r["id"] for r in rows]

    async def load(self, notebook_id: int) -> Notebook | None:
        """Read a notebook and all of its cells in one transaction."""
        async with self._connection() as conn, conn.transaction(readonly=True):
            row = await conn.fetchrow(SELECT_NOTEBOOK, notebook_id)
            if row is None:
                return None
            cell_rows = await conn.fetch(SELECT_CELLS, notebook_id)
        return to_notebook(notebook_record(row), [cell_record(r) for r in cell_rows])

    async def save(self, notebook: Notebook) -> None:
        """Make the stored notebook match the snapshot exactly.

        Upserts the name and every submitted cell, then deletes the notebook's
        cells that the snapshot omits. All three steps share one transaction.
        """
        name = clean_name(notebook.name)
        ids = notebook.cell_ids()
        if len(ids) != len(set(ids)):
            raise ValidationError(f"Notebook {notebook.id} has duplicate cell ids")

        rows = [(r.id, r.notebook_id, r.text) for r in cell_records(notebook)]
        async with self._connection() as conn, conn.transaction():
            await conn.execute(UPSERT_NOTEBOOK, notebook.id, name)
            await conn.execute(SYNC_NOTEBOOK_IDS, notebook.id)
            if rows:
                await conn.executemany(UPSERT_CELL, rows)
                await conn.execute(SYNC_CELL_IDS, max(ids))
            status = await conn.execute(DELETE_STALE_CELLS, notebook.id, ids)
        logger.info("Saved notebook %s (%d cells, %d removed)", notebook.id, len(rows), _affected(status))

    async def add_cell(self, notebook_id: int) -> TextCell:
        """Attach a new placeholder cell to a notebook."""
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(INSERT_CELL, notebook_id, self._placeholder_text)
            except asyncpg.exceptions.ForeignKeyViolationError as e:
                raise NotFoundError(f"Couldn't find a notebook with id {notebook_id}!") from e
        cell = to_text_cell(cell_record(row))
        logger.info("Added cell %s to notebook %s", cell.id, notebook_id)
        return cell

    async def delete_cell(self, cell_id: int, *, notebook_id: int | None = None) -> bool:
        """Remove one cell, return True if a row was removed.

        With notebook_id, only a cell owned by that notebook is removed.
        """
        async with self._connection() as conn:
            if notebook_id is None:
                deleted = await conn.fetchval(DELETE_CELL, cell_id)
            else:
                deleted = await conn.fetchval(DELETE_OWNED_CELL, cell_id, notebook_id)
        if deleted is None:
            logger.info("Cell %s already gone", cell_id)
            return False
        logger.info("Deleted cell %s", cell_id)
        return True

    async def update_cell_text(self, cell_id: int, text: str, *, notebook_id: int | None = None) -> None:
        """Replace a cell's text. A missing cell is left alone."""
        async with self._connection() as conn:
            if notebook_id is None:
                await conn.execute(UPDATE_CELL_TEXT, cell_id, text)
            else:
                await conn.execute(UPDATE_OWNED_CELL_TEXT, cell_id, text, notebook_id)


_store: NotebookStore | None = None


def get_store() -> NotebookStore:
    """Get the module-level store set at startup."""
    if _store is None:
        raise StoreError("Store not initialised", retryable=True)
    return _store


def set_store(store: NotebookStore) -> None:
    global _store  # noqa: PLW0603
    _store = store


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _store  # noqa: PLW0603
    _store = None
