"""CLI entry points: `notetoself init`, `start`, `create` and `show`."""

from __future__ import annotations

import asyncio
from typing import NoReturn

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from notetoself.config import load_config, save_config
from notetoself.core import NoteToSelfError
from notetoself.notebook.notebook import Notebook
from notetoself.notebook.store import NotebookStore

app = typer.Typer(name="notetoself", help="Personal notebooks of editable text cells.")
console = Console()


def _fail(error: NoteToSelfError) -> NoReturn:
    console.print(f"[red]Error:[/red] {error.message}")
    if error.hint:
        console.print(f"  Hint: {error.hint}")
    raise typer.Exit(1)


async def _open_store() -> NotebookStore:
    config = load_config()
    return await NotebookStore.connect(config.database, placeholder_text=config.placeholder_text)


@app.command()
def init(
    dsn: str = typer.Argument(help="PostgreSQL connection string"),
    pool_max: int = typer.Option(5, "--pool-max", help="Maximum pooled connections"),
) -> None:
    """Save the database connection and create the notebook tables."""
    load_dotenv()
    config = load_config()
    config.database.dsn = dsn
    config.database.max_size = pool_max
    save_config(config)

    async def _init() -> None:
        store = await NotebookStore.connect(config.database)
        try:
            await store.init_schema()
        finally:
            await store.close()

    try:
        asyncio.run(_init())
    except NoteToSelfError as e:
        _fail(e)
    console.print("[green]Schema ready. Run [bold]notetoself start[/bold] to launch the server.[/green]")


@app.command()
def create(name: str = typer.Argument(help="Notebook name")) -> None:
    """Create an empty notebook."""
    load_dotenv()

    async def _create() -> int:
        store = await _open_store()
        try:
            return await store.create(name)
        finally:
            await store.close()

    try:
        notebook_id = asyncio.run(_create())
    except NoteToSelfError as e:
        _fail(e)
    console.print(f"[green]Created notebook [bold]{name}[/bold] (id {notebook_id})[/green]")


@app.command()
def show(name: str = typer.Argument(help="Notebook name")) -> None:
    """Print a notebook's cells."""
    load_dotenv()

    async def _show() -> Notebook | None:
        store = await _open_store()
        try:
            notebook_id = await store.find_by_name(name)
            if notebook_id is None:
                return None
            return await store.load(notebook_id)
        finally:
            await store.close()

    try:
        notebook = asyncio.run(_show())
    except NoteToSelfError as e:
        _fail(e)
    if notebook is None:
        console.print(f"[red]Error:[/red] That notebook doesn't exist: {name}")
        raise typer.Exit(1)

    t = Table(title=f"{notebook.name} ({len(notebook.cells)} cells)", show_lines=True)
    t.add_column("Cell", style="cyan")
    t.add_column("Text")
    for cell in notebook.cells:
        t.add_row(str(cell.id), cell.text)
    console.print(t)


@app.command()
def start(
    port: int | None = typer.Option(None, "--port", "-p", help="Port to serve on"),
    host: str | None = typer.Option(None, "--host", help="Interface to bind"),
) -> None:
    """Start the note-to-self server."""
    import logging

    import uvicorn

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    config = load_config()
    if not config.database.dsn:
        console.print("[red]No database configured. Run [bold]notetoself init[/bold] or set DATABASE_URL.[/red]")
        raise typer.Exit(1)

    host = host or config.server.host
    port = port or config.server.port
    console.print(f"[bold]Starting note-to-self on http://{host}:{port}...[/bold]")
    uvicorn.run("notetoself.server:app", host=host, port=port, reload=False)


def main() -> None:
    app()
