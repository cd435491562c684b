"""Editing-session client for the note-to-self API.

The session keeps the opened notebook in memory. Local edits mark it dirty;
`save` pushes the whole snapshot and only clears the dirty flag once the
server confirms, so a failed save never drops unsaved edits.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from notetoself.core import NoteToSelfError
from notetoself.notebook.notebook import Notebook, TextCell

logger = logging.getLogger("notetoself.client")


class RequestFailedError(NoteToSelfError):
    """The server rejected a request or could not be reached."""

    code = "REQUEST_FAILED"

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        if code:
            self.code = code


class SaveFailedError(RequestFailedError):
    code = "SAVE_FAILED"


def _raise_for_error(response: httpx.Response, error_cls: type[RequestFailedError] = RequestFailedError) -> None:
    if response.is_success:
        return
    try:
        body = response.json().get("error", {})
    except ValueError:
        body = {}
    raise error_cls(
        body.get("message", f"HTTP {response.status_code}"),
        status_code=response.status_code,
        code=body.get("code"),
    )


class NotebookSession:
    """One user's editing session on one notebook."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client
        self.snapshot: Notebook | None = None
        self.dirty = False

    @property
    def notebook(self) -> Notebook:
        if self.snapshot is None:
            raise RequestFailedError("No notebook opened in this session")
        return self.snapshot

    async def open(self, name: str) -> Notebook:
        """Select an existing notebook by name and load it."""
        resp = await self._client.post("/api/notebooks/select", json={"name": name})
        _raise_for_error(resp)
        return await self._fetch(resp.json()["id"])

    async def create(self, name: str) -> Notebook:
        """Create a notebook and load it."""
        resp = await self._client.post("/api/notebooks", json={"name": name})
        _raise_for_error(resp)
        return await self._fetch(resp.json()["id"])

    async def _fetch(self, notebook_id: int) -> Notebook:
        resp = await self._client.get(f"/api/notebooks/{notebook_id}")
        _raise_for_error(resp)
        self.snapshot = Notebook.model_validate(resp.json())
        self.dirty = False
        logger.info("Loaded notebook %s (%d cells)", notebook_id, len(self.snapshot.cells))
        return self.snapshot

    async def add_cell(self) -> TextCell:
        """Create a cell on the server and append it to the snapshot."""
        resp = await self._client.post(f"/api/notebooks/{self.notebook.id}/cells")
        _raise_for_error(resp)
        cell = TextCell.model_validate(resp.json())
        self.notebook.add_cell(cell)
        return cell

    def set_text(self, cell_id: int, text: str) -> bool:
        found = self.notebook.set_text(cell_id, text)
        if found:
            self.dirty = True
        return found

    def delete_cell(self, cell_id: int) -> bool:
        found = self.notebook.delete_cell(cell_id)
        if found:
            self.dirty = True
        return found

    async def update_text(self, cell_id: int, text: str) -> None:
        """Edit one cell locally and write just that cell."""
        self.set_text(cell_id, text)
        resp = await self._client.patch(f"/api/notebooks/{self.notebook.id}/cells/{cell_id}", json={"text": text})
        _raise_for_error(resp)

    async def save(self) -> None:
        """Push the full snapshot. On failure the snapshot stays dirty."""
        notebook = self.notebook
        payload: dict[str, Any] = notebook.model_dump()
        try:
            resp = await self._client.put(f"/api/notebooks/{notebook.id}", json=payload)
        except httpx.HTTPError as e:
            logger.warning("Save of notebook %s failed: %s", notebook.id, e)
            raise SaveFailedError(f"Save failed: {e}") from e
        _raise_for_error(resp, SaveFailedError)
        self.dirty = False
        logger.info("Saved notebook %s", notebook.id)

    async def close(self) -> None:
        resp = await self._client.post("/api/notebooks/close")
        _raise_for_error(resp)
        self.snapshot = None
        self.dirty = False
