"""Store-level rows and their mapping to the wire model.

Rows carry server-only fields (a cell's owning notebook) that never leave the
server. Handlers only ever see `Notebook` / `TextCell`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from notetoself.notebook.notebook import Notebook, TextCell


class NotebookRecord(BaseModel):
    id: int
    name: str


class CellRecord(BaseModel):
    id: int
    notebook_id: int
    text: str


def notebook_record(row: Mapping[str, Any]) -> NotebookRecord:
    return NotebookRecord(id=row["id"], name=row["name"])


def cell_record(row: Mapping[str, Any]) -> CellRecord:
    return CellRecord(id=row["id"], notebook_id=row["notebook_id"], text=row["text"])


def to_text_cell(record: CellRecord) -> TextCell:
    return TextCell(id=record.id, text=record.text)


def to_notebook(record: NotebookRecord, cells: Iterable[CellRecord]) -> Notebook:
    """Build the wire notebook from its row and the rows of the cells it owns."""
    return Notebook(id=record.id, name=record.name, cells=[to_text_cell(c) for c in cells])


def cell_records(notebook: Notebook) -> list[CellRecord]:
    """Attach ownership to every cell of a submitted snapshot."""
    return [CellRecord(id=c.id, notebook_id=notebook.id, text=c.text) for c in notebook.cells]
