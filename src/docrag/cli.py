"""Command line interface for DocRAG."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from docrag.config import AppConfig
from docrag.errors import DocRagError
from docrag.index.indexer import find_documents
from docrag.providers import Services, build_services, open_settings
from docrag.settings import KNOWN_SETTINGS, SettingsResolver

console = Console()
app = typer.Typer(help="DocRAG - document ingestion and retrieval-augmented answers")
settings_app = typer.Typer(help="Inspect and edit runtime settings")
app.add_typer(settings_app, name="settings")


def _setup_logging(verbose: bool, level: int = logging.INFO) -> None:
    level = logging.DEBUG if verbose else level
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
    logging.getLogger().setLevel(level)


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _load_config(db: Optional[Path]) -> AppConfig:
    config = AppConfig.from_env()
    if db is not None:
        config.db_path = db
    return config


def _services(config: AppConfig, verbose: bool = False) -> Services:
    _ensure_db_parent(config.resolve_db_path(Path.cwd()))
    try:
        services = build_services(config, base_dir=Path.cwd())
    except DocRagError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc
    # --verbose wins over the resolved log_level setting.
    _setup_logging(verbose, services.config.logging_level())
    return services


def _print_failure(exc: DocRagError) -> None:
    console.print(
        f"[red]Could not produce an answer[/red] (reason: {exc.reason.value}, "
        f"stage: {exc.stage.value if exc.stage else '-'})"
    )


@app.command()
def ingest(
    inputs: List[Path] = typer.Argument(
        ..., help="Files or directories to ingest.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Upload, chunk, embed and index documents."""
    _setup_logging(verbose)
    config = _load_config(db)

    paths = find_documents(inputs)
    if not paths:
        console.print("[yellow]No supported documents found.[/yellow]")
        return

    services = _services(config, verbose)
    try:
        console.print(f"Indexing into [bold]{config.resolve_db_path(Path.cwd())}[/bold]...")
        stats = services.indexer.index(paths)
    finally:
        services.close()

    for result in stats.results:
        if not result.success:
            console.print(
                f"[red]Document {result.document_id} failed[/red] at {result.stage}: "
                f"{result.reason} ({result.error})"
            )
    console.print(f"Indexed: {stats.indexed}, failed: {stats.failed}, skipped: {stats.skipped}")
    if stats.failed:
        raise typer.Exit(code=1)


@app.command()
def ask(
    query: str = typer.Argument(..., help="Question to answer from the indexed documents"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Answer a question from the indexed documents, citing sources."""
    _setup_logging(verbose)
    services = _services(_load_config(db), verbose)
    try:
        answer = services.searcher.answer(query)
    except DocRagError as exc:
        _print_failure(exc)
        raise typer.Exit(code=1) from exc
    finally:
        services.close()

    console.print(answer.answer)
    if not answer.sources:
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Chunk")
    table.add_column("Excerpt")
    for source in answer.sources:
        excerpt = source.content.replace("\n", " ")[:180]
        table.add_row(f"{source.score:.4f}", source.title, source.chunk_id, excerpt)
    console.print(table)
    if answer.context is not None and answer.context.degraded:
        console.print(
            f"[yellow]Context trimmed to the token budget: {answer.context.dropped} chunk(s) "
            f"dropped, truncated={answer.context.truncated}[/yellow]"
        )


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    top_k: int = typer.Option(5, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a semantic search without generating an answer."""
    _setup_logging(verbose)
    services = _services(_load_config(db), verbose)
    try:
        hits = services.searcher.search(query, top_k=top_k)
    except DocRagError as exc:
        _print_failure(exc)
        raise typer.Exit(code=1) from exc
    finally:
        services.close()

    if not hits:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Chunk")
    table.add_column("Snippet")
    for hit in hits:
        snippet = hit.text.replace("\n", " ")
        table.add_row(f"{hit.score:.4f}", hit.title, str(hit.chunk_index), snippet[:180])
    console.print(table)


@app.command()
def documents(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List stored documents and their processing status."""
    services = _services(_load_config(db))
    try:
        docs = services.store.list_documents()
    finally:
        services.close()

    if not docs:
        console.print("[yellow]No documents stored.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Failure")
    for doc in docs:
        failure = doc.metadata.get("failure") or {}
        detail = f"{failure.get('stage')}: {failure.get('reason')}" if failure else ""
        table.add_row(str(doc.id), doc.title, doc.status.value, detail)
    console.print(table)


@app.command()
def delete(
    doc_id: int = typer.Argument(..., help="ID of the document to delete"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Delete a document, its chunks and its stored upload."""
    services = _services(_load_config(db))
    try:
        deleted = services.indexer.delete(doc_id)
    finally:
        services.close()

    if not deleted:
        console.print(f"[red]Document {doc_id} not found.[/red]")
        raise typer.Exit(code=1)
    console.print(f"Deleted document {doc_id}.")


@settings_app.command("list")
def settings_list(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show every known setting with its effective value and source."""
    config = _load_config(db)
    store = open_settings(config, Path.cwd())
    try:
        resolver = SettingsResolver(store)
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key")
        table.add_column("Category")
        table.add_column("Value")
        table.add_column("Source")
        for key, spec in KNOWN_SETTINGS.items():
            value, layer = resolver.resolve(key)
            table.add_row(key, spec.category, str(value), layer)
        console.print(table)
    finally:
        store.close()


@settings_app.command("get")
def settings_get(
    key: str = typer.Argument(..., help="Setting key"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Print a stored setting."""
    store = open_settings(_load_config(db), Path.cwd())
    try:
        setting = store.get(key)
    finally:
        store.close()
    if setting is None:
        console.print(f"[red]Setting not found: {key}[/red]")
        raise typer.Exit(code=1)
    console.print(f"{setting.key} = {setting.value} [dim]({setting.category})[/dim]")


@settings_app.command("set")
def settings_set(
    key: str = typer.Argument(..., help="Setting key"),
    value: str = typer.Argument(..., help="New value"),
    category: Optional[str] = typer.Option(None, help="Category for new settings"),
    description: Optional[str] = typer.Option(None, help="Description"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Create or update a setting."""
    spec = KNOWN_SETTINGS.get(key)
    store = open_settings(_load_config(db), Path.cwd())
    try:
        setting = store.set(
            key,
            value,
            description=description or (spec.description if spec else None),
            category=category or (spec.category if spec else "general"),
        )
    finally:
        store.close()
    console.print(f"Saved {setting.key} = {setting.value}")


@settings_app.command("init")
def settings_init(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Create any missing default settings."""
    config = _load_config(db)
    store = open_settings(config, Path.cwd())
    try:
        added = store.initialize_defaults(config)
    finally:
        store.close()
    console.print(f"Initialized {added} default setting(s).")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(4000, help="Server port"),
) -> None:
    """Start the JSON API server."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from docrag.web.app import app as web_app

    console.print(f"Starting API on http://{host}:{port}")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")
