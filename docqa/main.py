"""
Document Q&A - CLI Entry Point
-------------------------------
Typer commands over the ingestion and query pipelines.

Usage:
    python -m docqa.main ingest contract.pdf scan.png --context legal
    python -m docqa.main ask "When does the agreement expire?" --context legal
    python -m docqa.main ask "..." --provider gemini --model gemini-1.5-pro --json
    python -m docqa.main chat --context pensions      # Interactive Q&A
    python -m docqa.main documents                    # List stored documents
    python -m docqa.main show <document-id>           # Document details + chunks
    python -m docqa.main remove <document-id>
    python -m docqa.main models --provider openai
    python -m docqa.main contexts
"""
from __future__ import annotations

import sys

# Windows cp1252 terminal fix: force UTF-8 so OCR output with unusual glyphs
# does not crash the Rich console renderer.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from docqa.config import AppConfig, load_config
from docqa.generation.providers import ProviderConfigError, create_provider
from docqa.schemas import IngestionReport, ProgressStatus, QueryResult, UploadedFile
from docqa.serving.pipeline import RAGPipeline
from docqa.storage.store import StoreError
from docqa.utils.helpers import ensure_dirs, format_datetime, truncate_text
from docqa.utils.logger import setup_logger

app = typer.Typer(
    name="docqa",
    help="Document Q&A - ask questions about your PDFs, Word files, scans and notes",
    add_completion=False,
)
console = Console()

CONFIG_OPTION = typer.Option("config/config.yaml", "--config", "-c", help="Path to config YAML")


# --- Helpers ------------------------------------------------------------------

def _bootstrap(config_path: str) -> tuple[AppConfig, RAGPipeline]:
    cfg = load_config(config_path)
    setup_logger(log_level=cfg.logging.level, log_file=cfg.logging.file)
    if cfg.storage.path:
        ensure_dirs(Path(cfg.storage.path).parent)
    try:
        return cfg, RAGPipeline.from_config(cfg)
    except StoreError as exc:
        _fail(str(exc))


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _read_upload(path: Path) -> UploadedFile:
    stat = path.stat()
    return UploadedFile(
        name=path.name,
        data=path.read_bytes(),
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )


# --- Commands -----------------------------------------------------------------

@app.command()
def ingest(
    files: list[Path] = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="Files to ingest"
    ),
    context: Optional[str] = typer.Option(
        None, "--context", help="Project context to tag the documents with"
    ),
    tag: Optional[list[str]] = typer.Option(
        None, "--tag", "-t", help="Free-form tag (repeatable)"
    ),
    config: str = CONFIG_OPTION,
) -> None:
    """
    Extract, chunk and embed files into the document store.

    \b
    Supported: .pdf  .docx  .png/.jpg/.gif/.bmp/.tif (OCR)  anything else as UTF-8 text
    """
    cfg, pipeline = _bootstrap(config)
    if context and cfg.get_context(context) is None:
        console.print(f"[yellow]Context {context!r} is not configured; tagging anyway.[/yellow]")

    uploads = [_read_upload(p) for p in files]
    report = asyncio.run(_ingest_async(pipeline, uploads, context, tag or []))
    _print_report(report)
    if report.failed and not report.processed:
        raise typer.Exit(1)


async def _ingest_async(
    pipeline: RAGPipeline,
    uploads: list[UploadedFile],
    context: Optional[str],
    tags: list[str],
) -> IngestionReport:
    with Progress(
        TextColumn("[cyan]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting...", total=100)

        def on_progress(status: ProgressStatus) -> None:
            progress.update(task, completed=status.progress, description=truncate_text(status.message, 60))

        ingestion = pipeline.ingestion(progress=on_progress)
        return await ingestion.process_files(uploads, context_id=context, tags=tags)


def _print_report(report: IngestionReport) -> None:
    for item in report.processed:
        console.print(f"[green][OK][/green] {item.name} [dim]{item.document_id}[/dim]")
    for item in report.failed:
        console.print(f"[red][FAILED][/red] {item.name}: {item.error}")
    console.print(
        f"\n[bold]{len(report.processed)}[/bold] processed, "
        f"[bold]{len(report.failed)}[/bold] failed"
    )


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about your documents"),
    context: Optional[str] = typer.Option(None, "--context", help="Only search this context"),
    provider: Optional[str] = typer.Option(
        None, "--provider", "-p", help="openai | gemini | anthropic (default from config)"
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model id for the provider"),
    json_out: bool = typer.Option(False, "--json", help="Print result as JSON"),
    config: str = CONFIG_OPTION,
) -> None:
    """Answer a single question from the stored documents."""
    _, pipeline = _bootstrap(config)
    try:
        result = asyncio.run(_ask_async(pipeline, question, context, provider, model))
    except ProviderConfigError as exc:
        _fail(str(exc))

    if json_out:
        console.print_json(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)


async def _ask_async(
    pipeline: RAGPipeline,
    question: str,
    context: Optional[str],
    provider: Optional[str],
    model: Optional[str],
) -> QueryResult:
    async with create_provider(pipeline.config.llm, kind=provider, model=model) as llm:
        return await pipeline.answer(question, context_id=context, provider=llm)


@app.command()
def chat(
    context: Optional[str] = typer.Option(None, "--context", help="Only search this context"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="openai | gemini | anthropic"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model id for the provider"),
    config: str = CONFIG_OPTION,
) -> None:
    """Interactive question loop."""
    cfg, pipeline = _bootstrap(config)
    active_context = cfg.get_context(context)

    console.print()
    console.print(
        Panel(
            "[bold cyan]Document Q&A[/bold cyan]\n"
            f"[white]{active_context.name if active_context else 'All documents'}[/white]",
            box=box.DOUBLE_EDGE,
            expand=False,
        )
    )
    if active_context and active_context.example_questions:
        console.print("[dim]Try:[/dim]")
        for example in active_context.example_questions:
            console.print(f"  [dim]- {example}[/dim]")
    console.print("[dim]Type 'exit', 'quit', or press Ctrl+C to quit.[/dim]\n")

    try:
        asyncio.run(_chat_async(pipeline, context, provider, model))
    except ProviderConfigError as exc:
        _fail(str(exc))


async def _chat_async(
    pipeline: RAGPipeline,
    context: Optional[str],
    provider: Optional[str],
    model: Optional[str],
) -> None:
    async with create_provider(pipeline.config.llm, kind=provider, model=model) as llm:
        while True:
            try:
                raw = console.input("[bold cyan]You[/bold cyan] > ").strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye.[/dim]")
                break

            if not raw:
                continue
            if raw.lower() in {"exit", "quit", "q"}:
                console.print("[dim]Goodbye.[/dim]")
                break

            with console.status("[cyan]Thinking...[/cyan]"):
                result = await pipeline.answer(raw, context_id=context, provider=llm)
            _print_result(result)


def _print_result(result: QueryResult) -> None:
    """Render a QueryResult to the terminal using Rich."""
    console.print()
    console.print(
        Panel(
            Markdown(result.answer),
            title="[bold green]Answer[/bold green]",
            border_style="green",
            expand=True,
        )
    )

    if result.sources:
        table = Table(
            "No.", "Document", "Page", "Excerpt", "Score",
            box=box.SIMPLE,
            show_header=True,
            header_style="bold dim",
        )
        for i, source in enumerate(result.sources, start=1):
            page = source.metadata.get("page_number")
            table.add_row(
                str(i),
                truncate_text(source.document_name, 40),
                str(page) if page else "-",
                truncate_text(" ".join(source.content.split()), 70),
                f"{source.score:.2f}",
            )
        console.print(table)

    console.print(
        f"[dim]"
        f"{result.provider}/{result.model}  "
        f"retrieve={result.retrieval_ms:.0f}ms  "
        f"generate={result.generation_ms:.0f}ms  "
        f"total={result.total_ms / 1000:.1f}s"
        f"[/dim]\n"
    )


@app.command()
def documents(
    context: Optional[str] = typer.Option(None, "--context", help="Only documents in this context"),
    config: str = CONFIG_OPTION,
) -> None:
    """List stored documents."""
    _, pipeline = _bootstrap(config)
    docs = asyncio.run(pipeline.store.get_documents())
    if context is not None:
        docs = [d for d in docs if d.context == context]

    if not docs:
        console.print("[yellow]No documents stored. Run: python -m docqa.main ingest <files>[/yellow]")
        return

    table = Table("ID", "Name", "Type", "Context", "Size", "Uploaded", box=box.SIMPLE, header_style="bold dim")
    for doc in docs:
        table.add_row(
            doc.id,
            truncate_text(doc.name, 40),
            doc.type.value,
            doc.context or "-",
            f"{doc.metadata.get('size', 0):,}",
            format_datetime(doc.upload_date),
        )
    console.print(table)


@app.command()
def show(
    document_id: str = typer.Argument(..., help="Document id"),
    config: str = CONFIG_OPTION,
) -> None:
    """Show one document with its chunks."""
    _, pipeline = _bootstrap(config)
    doc = asyncio.run(pipeline.store.get_document(document_id))
    if doc is None:
        _fail(f"Document not found: {document_id}")
    chunks = asyncio.run(pipeline.store.get_chunks(document_id))

    console.print()
    console.print(f"[bold]{doc.name}[/bold] [dim]{doc.id}[/dim]")
    console.print(f"  Type     : {doc.type.value}")
    console.print(f"  Context  : {doc.context or '-'}")
    console.print(f"  Uploaded : {format_datetime(doc.upload_date)}")
    console.print(f"  Chars    : {len(doc.raw_content or doc.content):,}")
    console.print(f"  Chunks   : {len(chunks)}\n")

    for i, chunk in enumerate(chunks, start=1):
        page = chunk.metadata.page_number
        header = f"#{i} {chunk.metadata.chunk_type.value}" + (f" | page {page}" if page else "")
        console.print(Panel(truncate_text(chunk.content, 400), title=header, title_align="left", expand=True))


@app.command()
def remove(
    document_id: str = typer.Argument(..., help="Document id"),
    config: str = CONFIG_OPTION,
) -> None:
    """Delete a document together with its chunks and embeddings."""
    _, pipeline = _bootstrap(config)
    if not asyncio.run(pipeline.store.remove_document(document_id)):
        _fail(f"Document not found: {document_id}")
    console.print(f"[green][OK] Removed {document_id}[/green]")


@app.command()
def models(
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="openai | gemini | anthropic"),
    config: str = CONFIG_OPTION,
) -> None:
    """List the models a provider offers (static defaults when listing fails)."""
    cfg, pipeline = _bootstrap(config)
    try:
        available = asyncio.run(pipeline.fetch_models(provider))
    except ProviderConfigError as exc:
        _fail(str(exc))

    kind = available[0].provider if available else cfg.llm.provider
    selected = cfg.llm.for_kind(kind).model
    table = Table("Model", "Name", "", box=box.SIMPLE, header_style="bold dim")
    for m in available:
        table.add_row(m.id, m.name, "[green]selected[/green]" if m.id == selected else "")
    console.print(table)


@app.command()
def contexts(config: str = CONFIG_OPTION) -> None:
    """List configured project contexts."""
    cfg = load_config(config)
    for ctx in cfg.contexts:
        console.print(f"[bold cyan]{ctx.id}[/bold cyan]  {ctx.name} [dim]- {ctx.description}[/dim]")
        for example in ctx.example_questions:
            console.print(f"    [dim]{example}[/dim]")


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
