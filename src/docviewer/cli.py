"""Command line interface for DocViewer."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from docviewer.config import ViewerConfig, find_config_file, load_config_file, validate_config
from docviewer.engine import DocViewerEngine
from docviewer.errors import DocViewerError, render_message
from docviewer.models import Document, LoadState, NavigationNode, NodeKind, SearchHit, TocEntry

console = Console()
app = typer.Typer(help="DocViewer - browse and search markdown documentation")

STATE_STYLES = {
    LoadState.LOADED: "green",
    LoadState.FAILED: "red",
    LoadState.LOADING: "yellow",
    LoadState.NOT_LOADED: "dim",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except (DocViewerError, OSError) as exc:
        console.print(f"[red]Unable to read documentation source: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _raw_config(config_path: Optional[Path], docs: Optional[Path]) -> Tuple[Dict[str, Any], Path]:
    """Raw configuration plus the directory relative paths are resolved against."""
    if config_path is not None:
        if not config_path.is_file():
            raise typer.BadParameter(f"Config file not found: {config_path}")
        return load_config_file(config_path), config_path.parent

    base_dir = docs if docs is not None else Path.cwd()
    found = find_config_file(base_dir)
    if found is not None:
        return load_config_file(found), found.parent
    if docs is None:
        raise typer.BadParameter(
            f"No config file found in {base_dir}; pass --config or --docs"
        )
    return {"container": "cli", "source": {"type": "local", "basePath": str(docs)}}, Path.cwd()


def _resolve_config(config_path: Optional[Path], docs: Optional[Path]) -> ViewerConfig:
    try:
        raw, base_dir = _raw_config(config_path, docs)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Unable to read configuration: {exc}") from exc

    source = raw.get("source")
    if isinstance(source, dict) and source.get("type") == "local":
        base_path = source.get("basePath")
        if isinstance(base_path, str) and base_path and not Path(base_path).expanduser().is_absolute():
            raw = {**raw, "source": {**source, "basePath": str((base_dir / base_path).resolve())}}

    result = validate_config(raw)
    if isinstance(result, list):
        for issue in result:
            console.print(f"[red]{escape(str(issue))}[/red]")
        raise typer.BadParameter(f"Invalid configuration ({len(result)} issue(s))")
    return result


async def _load_everything(config: ViewerConfig) -> Tuple[List[Document], Dict[str, int]]:
    async with DocViewerEngine(config, instance_id="cli") as engine:
        documents = await engine.load_all()
        return documents, engine.cache_stats()


async def _search(config: ViewerConfig, query: str, limit: int) -> List[SearchHit]:
    async with DocViewerEngine(config, instance_id="cli") as engine:
        await engine.load_all()
        return engine.query(query, limit=limit)


async def _navigation(config: ViewerConfig) -> List[NavigationNode]:
    async with DocViewerEngine(config, instance_id="cli") as engine:
        return engine.navigation


def _add_branch(tree: Tree, nodes: List[NavigationNode]) -> None:
    for node in nodes:
        if node.kind is NodeKind.CATEGORY:
            _add_branch(tree.add(f"[bold]{escape(node.title)}[/bold]"), node.children)
        else:
            tree.add(f"{escape(node.title)} [dim]({node.document_id})[/dim]")


@app.command()
def index(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Viewer config file (JSON)"),
    docs: Optional[Path] = typer.Option(None, "--docs", help="Folder with markdown files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Load every document of the configured source and report its state."""
    _setup_logging(verbose)
    config = _resolve_config(config_path, docs)

    documents, stats = _run(_load_everything(config))
    if not documents:
        console.print("[yellow]No documents found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Document")
    table.add_column("Title")
    table.add_column("State")
    table.add_column("Detail")

    for document in documents:
        style = STATE_STYLES[document.state]
        detail = ""
        if document.last_error is not None:
            detail = f"{document.last_error.kind.value}: {render_message(document.last_error)}"
        table.add_row(document.id, escape(document.title), f"[{style}]{document.state.value}[/{style}]", detail)

    console.print(table)
    loaded = sum(1 for doc in documents if doc.state is LoadState.LOADED)
    failed = sum(1 for doc in documents if doc.state is LoadState.FAILED)
    console.print(f"Loaded: {loaded}, failed: {failed}, cached: {stats['size']}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Viewer config file (JSON)"),
    docs: Optional[Path] = typer.Option(None, "--docs", help="Folder with markdown files"),
    limit: int = typer.Option(10, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Full-text search over the configured documents."""
    _setup_logging(verbose)
    config = _resolve_config(config_path, docs)
    if not config.search.enabled:
        raise typer.BadParameter("Search is disabled in this configuration")

    results = _run(_search(config, query, limit))
    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Snippet")

    for result in results:
        table.add_row(f"{result.score:.4f}", escape(result.title or result.document_id), escape(result.snippet[:180]))

    console.print(table)


@app.command()
def nav(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Viewer config file (JSON)"),
    docs: Optional[Path] = typer.Option(None, "--docs", help="Folder with markdown files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Print the navigation tree."""
    _setup_logging(verbose)
    config = _resolve_config(config_path, docs)
    nodes = _run(_navigation(config))
    if not nodes:
        console.print("[yellow]No documents found.[/yellow]")
        return
    tree = Tree("[bold]Documentation[/bold]")
    _add_branch(tree, nodes)
    console.print(tree)


async def _toc(config: ViewerConfig, document_id: str, max_depth: int) -> List[TocEntry]:
    async with DocViewerEngine(config, instance_id="cli") as engine:
        return await engine.toc(document_id, max_depth=max_depth)


def _add_headings(tree: Tree, entries: List[TocEntry]) -> None:
    for entry in entries:
        _add_headings(tree.add(f"{escape(entry.title)} [dim]#{entry.id}[/dim]"), entry.children)


@app.command()
def toc(
    document_id: str = typer.Argument(..., help="Document id (see the index command)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Viewer config file (JSON)"),
    docs: Optional[Path] = typer.Option(None, "--docs", help="Folder with markdown files"),
    max_depth: int = typer.Option(3, "--max-depth", min=1, max=6, help="Deepest heading level shown"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Print the table of contents of one document."""
    _setup_logging(verbose)
    config = _resolve_config(config_path, docs)
    entries = _run(_toc(config, document_id, max_depth))
    if not entries:
        console.print("[yellow]No headings found.[/yellow]")
        return
    tree = Tree(f"[bold]{escape(document_id)}[/bold]")
    _add_headings(tree, entries)
    console.print(tree)


@app.command()
def web(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Viewer config file (JSON)"),
    docs: Optional[Path] = typer.Option(None, "--docs", help="Folder with markdown files"),
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the JSON web API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - optional extra
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from docviewer.web.app import create_app

    config = _resolve_config(config_path, docs)
    console.print(f"Starting web API on http://{host}:{port}")
    uvicorn.run(
        create_app(DocViewerEngine(config, instance_id="web")),
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
