"""Client-visible notebook model: the shape exchanged over the API."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

# Ids are PostgreSQL INTEGER identity values.
MAX_ID = 2**31 - 1

RowId = Annotated[int, Field(ge=1, le=MAX_ID)]


class TextCell(BaseModel):
    id: RowId
    text: str


class Notebook(BaseModel):
    id: RowId
    name: str
    cells: list[TextCell] = Field(default_factory=list)

    def cell_ids(self) -> list[int]:
        return [cell.id for cell in self.cells]

    def get_cell(self, cell_id: int) -> TextCell | None:
        for cell in self.cells:
            if cell.id == cell_id:
                return cell
        return None

    def add_cell(self, cell: TextCell) -> None:
        self.cells.append(cell)

    def set_text(self, cell_id: int, text: str) -> bool:
        """Replace a cell's text in place, return True if found."""
        cell = self.get_cell(cell_id)
        if cell is None:
            return False
        cell.text = text
        return True

    def delete_cell(self, cell_id: int) -> bool:
        """Remove a cell by ID, return True if found."""
        for i, cell in enumerate(self.cells):
            if cell.id == cell_id:
                self.cells.pop(i)
                return True
        return False
