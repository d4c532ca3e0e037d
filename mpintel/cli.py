"""mpintel CLI - quote ingestion and price lookups from the terminal.

Commands:
- init: Initialize database schema
- upload: Store a quote document and queue it for extraction
- status: Show a document's status history
- show-quote: Show a draft quote with its validation warnings
- approve: Approve a reviewed quote
- rematch: Re-run material matching for a verified quote
- sweep: Expire stale extractions and re-enqueue stuck normalizations
- search: Search verified material prices
- web serve: Run the HTTP API
"""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from mpintel.config import get_config
from mpintel.core.logging import configure_logging
from mpintel.core.queue import LocalDispatcher
from mpintel.db.connection import close_db, get_session, get_session_factory, init_db
from mpintel.exceptions import PipelineError
from mpintel.ingestion.lifecycle import DocumentLifecycleController
from mpintel.ingestion.storage import LocalObjectStorage
from mpintel.matching.orchestrator import NormalizationOrchestrator
from mpintel.models import PriceSearchFilters, WarningSeverity
from mpintel.reporting.price_queries import search_verified_prices
from mpintel.review.repository import fetch_draft_quote
from mpintel.review.service import ReviewService
from mpintel.worker import (
    build_context,
    build_notifier,
    create_dispatcher,
    lifecycle_from_ctx,
    requeue_unnormalized_quotes,
)

app = typer.Typer(
    name="mpintel",
    help="mpintel - Supplier quote ingestion and material price intelligence",
    no_args_is_help=True,
)

web_cli = typer.Typer(help="Web API")
app.add_typer(web_cli, name="web")

console = Console()


def _run(coro):
    """Run a command coroutine, reporting pipeline errors without a traceback."""

    async def _wrapped():
        try:
            return await coro
        finally:
            await close_db()

    config = get_config()
    configure_logging(config.log_level, config.log_format)
    try:
        return asyncio.run(_wrapped())
    except PipelineError as exc:
        console.print(f"[bold red]✗[/bold red] {exc}")
        raise typer.Exit(code=1) from exc


def _controller(config, dispatcher) -> DocumentLifecycleController:
    return DocumentLifecycleController(
        session_factory=get_session_factory(),
        storage=LocalObjectStorage(config.storage.root_dir),
        dispatcher=dispatcher,
        notifier=build_notifier(config),
        config=config,
    )


async def _finish(dispatcher) -> None:
    # In-process jobs must complete before the event loop closes
    if isinstance(dispatcher, LocalDispatcher):
        await dispatcher.drain()
    else:
        await dispatcher.close()


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    if drop:
        console.print("[yellow]Dropping existing tables...[/yellow]")
    _run(init_db(drop=drop))
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command()
def upload(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Quote document"),
    org_id: str | None = typer.Option(None, "--org", help="Organization ID"),
    uploaded_by: str | None = typer.Option(None, "--by", help="Uploader name"),
):
    """Store a quote document and queue it for extraction."""
    config = get_config()
    org_id = org_id or config.org_id
    content_type = mimetypes.guess_type(file.name)[0] or "application/octet-stream"

    async def _upload():
        dispatcher = create_dispatcher(config)
        controller = _controller(config, dispatcher)
        try:
            document = await controller.create_document(
                org_id=org_id,
                file_name=file.name,
                content=file.read_bytes(),
                content_type=content_type,
                uploaded_by=uploaded_by,
            )
            return await controller.get_document_status(document.id)
        finally:
            await _finish(dispatcher)

    document = _run(_upload())
    console.print(f"[bold green]✓[/bold green] Document {document.id}: {document.status}")
    if document.quote_id:
        console.print(f"  Quote: {document.quote_id}")
    if document.error_message:
        console.print(f"  [red]{document.error_message}[/red]")


@app.command()
def status(
    document_id: UUID = typer.Argument(..., help="Document ID"),
):
    """Show a document's status history."""
    config = get_config()

    async def _status():
        dispatcher = create_dispatcher(config)
        try:
            return await _controller(config, dispatcher).get_document_status(document_id)
        finally:
            await _finish(dispatcher)

    document = _run(_status())
    console.print(f"[bold]{document.file_name}[/bold] ({document.id})")
    console.print(f"  Status: [cyan]{document.status}[/cyan]")
    if document.quote_id:
        console.print(f"  Quote: {document.quote_id}")
    if document.error_message:
        console.print(f"  Error: [red]{document.error_message}[/red]")

    table = Table(title="History")
    table.add_column("#", justify="right")
    table.add_column("From")
    table.add_column("To")
    table.add_column("At")
    table.add_column("Detail", style="dim")
    for event in document.events:
        table.add_row(
            str(event.sequence),
            event.from_status or "-",
            event.to_status,
            event.created_at.isoformat(timespec="seconds"),
            event.detail or "",
        )
    console.print(table)


@app.command(name="show-quote")
def show_quote(
    quote_id: UUID = typer.Argument(..., help="Quote ID"),
):
    """Show a draft quote with its validation warnings."""

    async def _show():
        async with get_session() as session:
            return await fetch_draft_quote(session, quote_id)

    view = _run(_show())
    supplier = view.supplier.name if view.supplier else "[red]unknown[/red]"
    console.print(f"[bold]Quote {view.quote_number or view.quote_id}[/bold] from {supplier}")
    console.print(
        f"  Document: {view.document_status}  Confidence: {view.confidence_score:.2f}  "
        f"Verified: {'yes' if view.verified else 'no'}"
    )

    table = Table()
    table.add_column("Type")
    table.add_column("Description")
    table.add_column("Qty", justify="right")
    table.add_column("Unit")
    table.add_column("Unit Price", justify="right")
    table.add_column("Effective", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Material")
    for line in view.line_items:
        table.add_row(
            line.line_type,
            line.raw_description,
            str(line.quantity or ""),
            line.unit or "",
            str(line.unit_price or ""),
            str(line.effective_unit_price or ""),
            str(line.line_total or ""),
            line.material_name or "",
        )
    console.print(table)
    console.print(
        f"  Subtotal: {view.subtotal}  Delivery: {view.delivery_cost}  "
        f"Tax: {view.tax_amount}  Total: {view.total_amount}"
    )

    for warning in view.warnings:
        marker = "[red]✗[/red]" if warning.severity is WarningSeverity.BLOCKING else "[yellow]⚠[/yellow]"
        console.print(f"  {marker} {warning.check}: {warning.message}")


@app.command()
def approve(
    quote_id: UUID = typer.Argument(..., help="Quote ID"),
    approved_by: str = typer.Option(..., "--by", help="Approver name"),
):
    """Approve a reviewed quote and queue normalization."""
    config = get_config()

    async def _approve():
        dispatcher = create_dispatcher(config)
        service = ReviewService(get_session_factory(), dispatcher, config)
        try:
            return await service.approve_quote(quote_id, approved_by)
        finally:
            await _finish(dispatcher)

    outcome = _run(_approve())
    if outcome.already_verified:
        console.print(f"[yellow]Quote {quote_id} was already approved[/yellow]")
        return
    console.print(f"[bold green]✓[/bold green] Quote {quote_id} approved")
    if not outcome.normalization_enqueued:
        console.print("[yellow]⚠ Normalization not queued; the sweep will retry it[/yellow]")


@app.command()
def rematch(
    quote_id: UUID = typer.Argument(..., help="Quote ID"),
):
    """Re-run material matching for a verified quote."""

    async def _rematch():
        async with get_session() as session:
            return await NormalizationOrchestrator(session).normalize_quote(quote_id)

    summary = _run(_rematch())
    if summary.skipped:
        console.print(f"[yellow]Quote {quote_id} is not verified; nothing matched[/yellow]")
        return
    console.print(
        f"[bold green]✓[/bold green] {summary.matched}/{summary.material_lines} "
        f"material lines matched ({summary.unmatched} unmatched)"
    )


@app.command()
def sweep():
    """Expire stale extractions and re-enqueue stuck normalizations."""
    config = get_config()

    async def _sweep():
        dispatcher = create_dispatcher(config)
        ctx = build_context(config)
        ctx["dispatcher"] = dispatcher
        try:
            expired = await lifecycle_from_ctx(ctx).expire_stale_extractions()
            requeued = await requeue_unnormalized_quotes(ctx, dispatcher)
        finally:
            await _finish(dispatcher)
        return expired, requeued

    expired, requeued = _run(_sweep())
    console.print(f"  Expired extractions: {len(expired)}")
    console.print(f"  Re-enqueued normalizations: {len(requeued)}")


@app.command()
def search(
    query: str | None = typer.Argument(None, help="Description text"),
    org_id: str | None = typer.Option(None, "--org", help="Organization ID"),
    material_id: UUID | None = typer.Option(None, "--material", help="Material ID"),
    matched_only: bool = typer.Option(False, "--matched", help="Only catalog-linked lines"),
    limit: int = typer.Option(50, "--limit", help="Maximum rows"),
):
    """Search verified material prices."""
    org_id = org_id or get_config().org_id
    filters = PriceSearchFilters(
        query=query, material_id=material_id, matched_only=matched_only, limit=limit
    )

    async def _search():
        async with get_session() as session:
            return await search_verified_prices(session, org_id, filters)

    points = _run(_search())
    if not points:
        console.print("[yellow]No verified prices found[/yellow]")
        return

    table = Table(title=f"Verified prices ({len(points)})")
    table.add_column("Date")
    table.add_column("Supplier")
    table.add_column("Description")
    table.add_column("Material")
    table.add_column("Unit")
    table.add_column("Effective", justify="right")
    for point in points:
        table.add_row(
            str(point.quote_date or ""),
            point.supplier_name or "",
            point.raw_description,
            point.canonical_name or "[dim]unmatched[/dim]",
            point.unit or "",
            str(point.effective_unit_price),
        )
    console.print(table)


@web_cli.command("serve")
def web_serve(
    host: str = typer.Option("127.0.0.1", help="Bind host"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the FastAPI HTTP API."""
    import uvicorn

    typer.echo(f"Starting API on http://{host}:{port}")
    uvicorn.run("mpintel.web.app:app", host=host, port=port, reload=reload, workers=1)


if __name__ == "__main__":
    app()
