"""FastAPI server for note-to-self."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Cookie, Depends, FastAPI, Path, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from notetoself.config import load_config
from notetoself.core import (
    AlreadyExistsError,
    ForbiddenError,
    NoteToSelfError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from notetoself.notebook.access import NotebookAccess, SessionRegistry, require_access
from notetoself.notebook.notebook import MAX_ID, Notebook, TextCell
from notetoself.notebook.store import NotebookStore, get_store, reset_store, set_store

logger = logging.getLogger("notetoself.server")

SESSION_COOKIE = "notetoself_session"

_config = load_config()
_sessions = SessionRegistry(
    ttl_seconds=_config.server.session_ttl_seconds, max_sessions=_config.server.max_sessions
)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Open the store from config on startup and close it on shutdown."""
    config = load_config()
    store: NotebookStore | None = None
    try:
        store = await NotebookStore.connect(config.database, placeholder_text=config.placeholder_text)
        await store.init_schema()
        set_store(store)
    except StoreError as e:
        logger.warning("Store unavailable at startup: %s", e.message)
    yield
    if store is not None:
        await store.close()
        reset_store()


app = FastAPI(title="note-to-self", version="0.1.0", lifespan=_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_config.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS: dict[type[NoteToSelfError], int] = {
    NotFoundError: 404,
    AlreadyExistsError: 409,
    ForbiddenError: 403,
    ValidationError: 400,
}


@app.exception_handler(NoteToSelfError)
async def _handle_error(request: Request, exc: NoteToSelfError) -> JSONResponse:
    status = _STATUS.get(type(exc), 500)
    if isinstance(exc, StoreError):
        status = 503 if exc.retryable else 500
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    content: dict[str, Any] = {"error": exc.to_diag().model_dump(exclude_none=True)}
    if isinstance(exc, ForbiddenError):
        content["redirect"] = exc.redirect
    return JSONResponse(status_code=status, content=content)


@app.exception_handler(RequestValidationError)
async def _handle_invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(part) for part in first.get("loc", ()))
    error = ValidationError(f"{where}: {first.get('msg', 'invalid request')}")
    return JSONResponse(status_code=400, content={"error": error.to_diag().model_dump(exclude_none=True)})


def get_sessions() -> SessionRegistry:
    return _sessions


def notebook_access(
    notebook_id: int,
    sessions: Annotated[SessionRegistry, Depends(get_sessions)],
    session: Annotated[str | None, Cookie(alias=SESSION_COOKIE)] = None,
) -> NotebookAccess:
    return require_access(sessions, session, notebook_id)


def _open_session(response: Response, sessions: SessionRegistry, notebook_id: int, token: str | None) -> dict[str, Any]:
    token = sessions.open(notebook_id, token)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        secure=_config.server.cookie_secure,
    )
    return {"id": notebook_id, "redirect": f"/notebook/{notebook_id}"}


@app.get("/api/health")
async def health() -> dict[str, Any]:
    return {"ok": True}


class NotebookNameRequest(BaseModel):
    name: str


@app.post("/api/notebooks/select")
async def select_notebook(
    request: NotebookNameRequest,
    response: Response,
    sessions: Annotated[SessionRegistry, Depends(get_sessions)],
    session: Annotated[str | None, Cookie(alias=SESSION_COOKIE)] = None,
) -> dict[str, Any]:
    logger.info("POST /api/notebooks/select name=%r", request.name)
    notebook_id = await get_store().find_by_name(request.name)
    if notebook_id is None:
        raise NotFoundError("That notebook doesn't exist!", hint="Create it instead")
    return _open_session(response, sessions, notebook_id, session)


@app.post("/api/notebooks", status_code=201)
async def create_notebook(
    request: NotebookNameRequest,
    response: Response,
    sessions: Annotated[SessionRegistry, Depends(get_sessions)],
    session: Annotated[str | None, Cookie(alias=SESSION_COOKIE)] = None,
) -> dict[str, Any]:
    logger.info("POST /api/notebooks name=%r", request.name)
    notebook_id = await get_store().create(request.name)
    return _open_session(response, sessions, notebook_id, session)


@app.post("/api/notebooks/close")
async def close_session(
    response: Response,
    sessions: Annotated[SessionRegistry, Depends(get_sessions)],
    session: Annotated[str | None, Cookie(alias=SESSION_COOKIE)] = None,
) -> dict[str, Any]:
    sessions.close(session)
    response.delete_cookie(SESSION_COOKIE)
    return {"ok": True}


@app.get("/api/notebooks/{notebook_id}")
async def get_notebook(access: Annotated[NotebookAccess, Depends(notebook_access)]) -> Notebook:
    notebook = await get_store().load(access.notebook_id)
    if notebook is None:
        raise NotFoundError(f"Couldn't find a notebook with id {access.notebook_id}!")
    return notebook


@app.put("/api/notebooks/{notebook_id}")
async def save_notebook(
    notebook: Notebook, access: Annotated[NotebookAccess, Depends(notebook_access)]
) -> dict[str, Any]:
    access.check(notebook.id)
    logger.info("PUT /api/notebooks/%s (%d cells)", notebook.id, len(notebook.cells))
    store = get_store()
    foreign = await store.foreign_cells(notebook.id, notebook.cell_ids())
    if foreign:
        raise ForbiddenError(f"Cells {foreign} belong to another notebook", hint="Reload the notebook and save again")
    await store.save(notebook)
    return {"ok": True}


@app.post("/api/notebooks/{notebook_id}/cells", status_code=201)
async def add_cell(access: Annotated[NotebookAccess, Depends(notebook_access)]) -> TextCell:
    return await get_store().add_cell(access.notebook_id)


CellId = Annotated[int, Path(ge=1, le=MAX_ID)]


@app.delete("/api/notebooks/{notebook_id}/cells/{cell_id}")
async def delete_cell(cell_id: CellId, access: Annotated[NotebookAccess, Depends(notebook_access)]) -> dict[str, Any]:
    deleted = await get_store().delete_cell(cell_id, notebook_id=access.notebook_id)
    return {"deleted": deleted}


class UpdateCellRequest(BaseModel):
    text: str


@app.patch("/api/notebooks/{notebook_id}/cells/{cell_id}")
async def update_cell(
    cell_id: CellId, request: UpdateCellRequest, access: Annotated[NotebookAccess, Depends(notebook_access)]
) -> dict[str, Any]:
    await get_store().update_cell_text(cell_id, request.text, notebook_id=access.notebook_id)
    return {"ok": True}
