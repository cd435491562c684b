"""Shared test fixtures: an in-memory stand-in for an asyncpg pool.

`FakePool` understands exactly the statements issued by `NotebookStore` and
gives transactions real rollback, so store semantics can be tested without a
running PostgreSQL.
"""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import pytest

from notetoself.notebook import store as sql
from notetoself.notebook.store import NotebookStore

Row = dict[str, Any]


class FakeState:
    def __init__(self) -> None:
        self.notebooks: dict[int, str] = {}
        self.cells: dict[int, tuple[int, str]] = {}
        self.next_notebook_id = 1
        self.next_cell_id = 1


class FakeConnection:
    def __init__(self, pool: FakePool) -> None:
        self._pool = pool
        self._handlers: dict[str, Callable[..., tuple[list[Row], str]]] = {
            sql.INSERT_NOTEBOOK: self._insert_notebook,
            sql.SELECT_NOTEBOOK_ID: self._select_notebook_id,
            sql.SELECT_NOTEBOOK: self._select_notebook,
            sql.SELECT_CELLS: self._select_cells,
            sql.UPSERT_NOTEBOOK: self._upsert_notebook,
            sql.UPSERT_CELL: self._upsert_cell,
            sql.DELETE_STALE_CELLS: self._delete_stale_cells,
            sql.INSERT_CELL: self._insert_cell,
            sql.DELETE_CELL: self._delete_cell,
            sql.DELETE_OWNED_CELL: self._delete_cell,
            sql.UPDATE_CELL_TEXT: self._update_cell_text,
            sql.UPDATE_OWNED_CELL_TEXT: self._update_cell_text,
            sql.SELECT_FOREIGN_CELLS: self._select_foreign_cells,
            sql.SYNC_NOTEBOOK_IDS: self._sync_notebook_ids,
            sql.SYNC_CELL_IDS: self._sync_cell_ids,
        }
        for statement in sql.SCHEMA_STATEMENTS:
            self._handlers[statement] = lambda: ([], "CREATE")

    @property
    def state(self) -> FakeState:
        return self._pool.state

    def _run(self, query: str, *args: Any) -> tuple[list[Row], str]:
        self._pool.statements.append(query)
        failure = self._pool.fail_on.get(query)
        if failure is not None:
            raise failure
        return self._handlers[query](*args)

    async def execute(self, query: str, *args: Any) -> str:
        return self._run(query, *args)[1]

    async def executemany(self, query: str, args: list[tuple[Any, ...]]) -> None:
        for row in args:
            self._run(query, *row)

    async def fetch(self, query: str, *args: Any) -> list[Row]:
        return self._run(query, *args)[0]

    async def fetchrow(self, query: str, *args: Any) -> Row | None:
        rows = self._run(query, *args)[0]
        return rows[0] if rows else None

    async def fetchval(self, query: str, *args: Any) -> Any:
        row = await self.fetchrow(query, *args)
        return next(iter(row.values())) if row else None

    @asynccontextmanager
    async def transaction(self, readonly: bool = False) -> AsyncIterator[None]:
        saved = copy.deepcopy(self._pool.state)
        try:
            yield
        except BaseException:
            # Sequences are not transactional.
            saved.next_notebook_id = self._pool.state.next_notebook_id
            saved.next_cell_id = self._pool.state.next_cell_id
            self._pool.state = saved
            self._pool.rollbacks += 1
            raise

    def _check_notebook(self, notebook_id: int) -> None:
        if notebook_id not in self.state.notebooks:
            raise asyncpg.exceptions.ForeignKeyViolationError(f"notebook {notebook_id} does not exist")

    def _insert_notebook(self, name: str) -> tuple[list[Row], str]:
        if name in self.state.notebooks.values():
            return [], "INSERT 0 0"
        notebook_id = self.state.next_notebook_id
        self.state.next_notebook_id += 1
        if notebook_id in self.state.notebooks:
            raise asyncpg.exceptions.UniqueViolationError("duplicate key value violates notebooks_pkey")
        self.state.notebooks[notebook_id] = name
        return [{"id": notebook_id}], "INSERT 0 1"

    def _select_notebook_id(self, name: str) -> tuple[list[Row], str]:
        rows = [{"id": i} for i, n in self.state.notebooks.items() if n == name]
        return rows, f"SELECT {len(rows)}"

    def _select_notebook(self, notebook_id: int) -> tuple[list[Row], str]:
        if notebook_id not in self.state.notebooks:
            return [], "SELECT 0"
        return [{"id": notebook_id, "name": self.state.notebooks[notebook_id]}], "SELECT 1"

    def _select_cells(self, notebook_id: int) -> tuple[list[Row], str]:
        rows = [
            {"id": cell_id, "notebook_id": owner, "text": text}
            for cell_id, (owner, text) in sorted(self.state.cells.items())
            if owner == notebook_id
        ]
        return rows, f"SELECT {len(rows)}"

    def _upsert_notebook(self, notebook_id: int, name: str) -> tuple[list[Row], str]:
        for other_id, other_name in self.state.notebooks.items():
            if other_name == name and other_id != notebook_id:
                raise asyncpg.exceptions.UniqueViolationError("duplicate key value violates notebooks_name_key")
        self.state.notebooks[notebook_id] = name
        return [], "INSERT 0 1"

    def _upsert_cell(self, cell_id: int, notebook_id: int, text: str) -> tuple[list[Row], str]:
        self._check_notebook(notebook_id)
        self.state.cells[cell_id] = (notebook_id, text)
        return [], "INSERT 0 1"

    def _select_foreign_cells(self, cell_ids: list[int], notebook_id: int) -> tuple[list[Row], str]:
        rows = [
            {"id": cell_id}
            for cell_id, (owner, _) in sorted(self.state.cells.items())
            if cell_id in cell_ids and owner != notebook_id
        ]
        return rows, f"SELECT {len(rows)}"

    def _sync_notebook_ids(self, value: int) -> tuple[list[Row], str]:
        if value < self.state.next_notebook_id:
            return [], "SELECT 0"
        self.state.next_notebook_id = value + 1
        return [{"setval": value}], "SELECT 1"

    def _sync_cell_ids(self, value: int) -> tuple[list[Row], str]:
        if value < self.state.next_cell_id:
            return [], "SELECT 0"
        self.state.next_cell_id = value + 1
        return [{"setval": value}], "SELECT 1"

    def _delete_stale_cells(self, notebook_id: int, keep: list[int]) -> tuple[list[Row], str]:
        stale = [i for i, (owner, _) in self.state.cells.items() if owner == notebook_id and i not in keep]
        for cell_id in stale:
            del self.state.cells[cell_id]
        return [], f"DELETE {len(stale)}"

    def _insert_cell(self, notebook_id: int, text: str) -> tuple[list[Row], str]:
        self._check_notebook(notebook_id)
        cell_id = self.state.next_cell_id
        self.state.next_cell_id += 1
        if cell_id in self.state.cells:
            raise asyncpg.exceptions.UniqueViolationError("duplicate key value violates cells_pkey")
        self.state.cells[cell_id] = (notebook_id, text)
        return [{"id": cell_id, "notebook_id": notebook_id, "text": text}], "INSERT 0 1"

    def _delete_cell(self, cell_id: int, notebook_id: int | None = None) -> tuple[list[Row], str]:
        existing = self.state.cells.get(cell_id)
        if existing is None or (notebook_id is not None and existing[0] != notebook_id):
            return [], "DELETE 0"
        del self.state.cells[cell_id]
        return [{"id": cell_id}], "DELETE 1"

    def _update_cell_text(self, cell_id: int, text: str, notebook_id: int | None = None) -> tuple[list[Row], str]:
        existing = self.state.cells.get(cell_id)
        if existing is None or (notebook_id is not None and existing[0] != notebook_id):
            return [], "UPDATE 0"
        self.state.cells[cell_id] = (existing[0], text)
        return [], "UPDATE 1"


class FakePool:
    def __init__(self) -> None:
        self.state = FakeState()
        self.statements: list[str] = []
        self.fail_on: dict[str, BaseException] = {}
        self.exhausted = False
        self.in_use = 0
        self.acquired = 0
        self.rollbacks = 0
        self.closed = False

    @asynccontextmanager
    async def acquire(self, *, timeout: float | None = None) -> AsyncIterator[FakeConnection]:
        if self.exhausted:
            raise TimeoutError
        self.in_use += 1
        self.acquired += 1
        try:
            yield FakeConnection(self)
        finally:
            self.in_use -= 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def pool() -> FakePool:
    return FakePool()


@pytest.fixture
def store(pool: FakePool) -> NotebookStore:
    return NotebookStore(pool, acquire_timeout_seconds=1)
