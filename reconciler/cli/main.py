"""Reconciler CLI.

Runs the manifest flows and the processing error tracker in-process
against the configured database.

Usage:
    reconciler manifest list              List manifests
    reconciler manifest submit <id>       Submit a draft for verification
    reconciler manifest confirm <id>      Confirm a manifest
    reconciler manifest release <id>      Release a manifest stuck in processing
    reconciler manifest process <id>      Run the flow for a manifest
    reconciler errors list                List processing errors
    reconciler errors retry <id>          Retry a processing error
    reconciler errors skip <id>           Skip a processing error
    reconciler errors sweep               Retry all pending errors
    reconciler config show                Show resolved configuration
    reconciler serve                      Run the HTTP API
"""

import asyncio
import logging
import sys
from typing import Optional

import typer
from rich.console import Console

from reconciler.cli.output import (
    format_batch_result,
    format_error_table,
    format_manifest_table,
    format_retry_outcome,
)
from reconciler.config import ReconcilerConfig, load_config
from reconciler.db.connection import get_db_context, init_db
from reconciler.db.models import (
    ManifestStatus,
    ManifestType,
    ProcessingErrorStatus,
    ProcessingErrorType,
)
from reconciler.errors import DomainError
from reconciler.services.manifest_service import ManifestService
from reconciler.services.payment_collection import PaymentCollectionFlow
from reconciler.services.processing_error_service import (
    ProcessingErrorService,
    load_retry_handlers,
)
from reconciler.services.repository import SqlAlchemyRepository
from reconciler.services.stornare import StornareFlow

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="reconciler",
    help="Courier manifest reconciliation for fiscal invoices",
    no_args_is_help=True,
)
manifest_app = typer.Typer(help="Confirm and process courier manifests")
errors_app = typer.Typer(help="Retry or skip processing errors")
config_app = typer.Typer(help="Configuration management")

app.add_typer(manifest_app, name="manifest")
app.add_typer(errors_app, name="errors")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None
_actor: str = "cli"


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to reconciler.yaml config file"
    ),
    actor: str = typer.Option("cli", "--actor", help="Identity recorded in audit entries"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Reconciler CLI."""
    global _config_path, _actor
    _config_path = config
    _actor = actor
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _load() -> ReconcilerConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration."""
    cfg = _load()

    console.print("[bold]Provider:[/bold]")
    console.print(f"  base_url: {cfg.provider.base_url}")
    console.print(f"  timeout_seconds: {cfg.provider.timeout_seconds}")
    console.print(f"  max_attempts: {cfg.provider.max_attempts}")
    console.print(f"  backoff_seconds: {cfg.provider.backoff_seconds}")

    console.print("\n[bold]Payment:[/bold]")
    console.print(f"  collect_type: {cfg.payment.collect_type}")

    console.print("\n[bold]Processing errors:[/bold]")
    console.print(f"  max_retries: {cfg.processing_errors.max_retries}")
    handlers = ", ".join(cfg.processing_errors.handlers) or "none"
    console.print(f"  handlers: {handlers}")

    console.print("\n[bold]API:[/bold]")
    console.print(f"  host: {cfg.api.host}")
    console.print(f"  port: {cfg.api.port}")
    console.print(f"  log_level: {cfg.api.log_level}")


# --- API server ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Run the HTTP API with uvicorn (settings from the api config section)."""
    import uvicorn

    cfg = _load()
    bind_host = host or cfg.api.host
    bind_port = port or cfg.api.port
    _log.info("API starting on %s:%d", bind_host, bind_port)
    uvicorn.run(
        "reconciler.api.main:app",
        host=bind_host,
        port=bind_port,
        workers=1,
        log_level=cfg.api.log_level,
        lifespan="on",
    )


# --- Manifest commands ---


@manifest_app.command("list")
def manifest_list(
    type: Optional[ManifestType] = typer.Option(None, "--type", "-t", help="Filter by type"),
    status: Optional[ManifestStatus] = typer.Option(
        None, "--status", "-s", help="Filter by status"
    ),
    limit: int = typer.Option(50, "--limit", help="Maximum manifests to show"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List manifests with item counts."""
    init_db()
    with get_db_context() as db:
        summaries = ManifestService(db).list_manifests(
            manifest_type=type, status=status, limit=limit
        )
        console.print(format_manifest_table(summaries, as_json=json_output))


@manifest_app.command("submit")
def manifest_submit(
    manifest_id: str = typer.Argument(..., help="Manifest ID"),
):
    """Submit a draft manifest for verification."""
    init_db()
    try:
        with get_db_context() as db:
            manifest = ManifestService(db).submit_for_verification(manifest_id)
            console.print(f"[green]Manifest {manifest.id} awaiting verification.[/green]")
    except DomainError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@manifest_app.command("confirm")
def manifest_confirm(
    manifest_id: str = typer.Argument(..., help="Manifest ID"),
):
    """Confirm a draft manifest so it can be processed."""
    init_db()
    try:
        with get_db_context() as db:
            manifest = ManifestService(db).confirm(manifest_id, _actor)
            console.print(f"[green]Manifest {manifest.id} confirmed.[/green]")
    except DomainError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@manifest_app.command("release")
def manifest_release(
    manifest_id: str = typer.Argument(..., help="Manifest ID"),
    min_age: int = typer.Option(
        30, "--min-age", min=0, help="Only release claims older than this many minutes"
    ),
):
    """Return a manifest stuck in processing to confirmed."""
    init_db()
    try:
        with get_db_context() as db:
            manifest = ManifestService(db).release_claim(
                manifest_id, _actor, min_age_minutes=min_age
            )
            console.print(
                f"[yellow]Manifest {manifest.id} released; it can be processed again.[/yellow]"
            )
    except DomainError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@manifest_app.command("process")
def manifest_process(
    manifest_id: str = typer.Argument(..., help="Manifest ID"),
    collect_type: Optional[str] = typer.Option(
        None, "--collect-type", help="Collection type for delivery manifests"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Cancel (return manifest) or mark paid (delivery manifest) every invoice."""
    cfg = _load()
    init_db()

    async def _run():
        with get_db_context() as db:
            manifest = ManifestService(db).get_manifest(manifest_id)
            if manifest is None:
                console.print(f"[red]Manifest {manifest_id} not found.[/red]")
                raise typer.Exit(1)

            repository = SqlAlchemyRepository(db)
            if manifest.type == ManifestType.return_.value:
                result = await StornareFlow(repository, config=cfg).process(
                    manifest_id, _actor
                )
            else:
                result = await PaymentCollectionFlow(repository, config=cfg).process(
                    manifest_id, _actor, collect_type=collect_type
                )
            console.print(format_batch_result(result, as_json=json_output))
            return result

    result = asyncio.run(_run())
    if result.total_processed == 0 and result.errors:
        raise typer.Exit(1)


# --- Processing error commands ---


def _error_service(db, cfg: ReconcilerConfig) -> ProcessingErrorService:
    return ProcessingErrorService(
        SqlAlchemyRepository(db), load_retry_handlers(cfg), cfg
    )


@errors_app.command("list")
def errors_list(
    status: Optional[ProcessingErrorStatus] = typer.Option(
        None, "--status", "-s", help="Filter by status"
    ),
    type: Optional[ProcessingErrorType] = typer.Option(
        None, "--type", "-t", help="Filter by error type"
    ),
    limit: int = typer.Option(50, "--limit", help="Maximum errors to show"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List processing errors with per-status totals."""
    cfg = _load()
    init_db()
    with get_db_context() as db:
        svc = _error_service(db, cfg)
        errors = svc.list_errors(status=status, error_type=type, limit=limit)
        console.print(format_error_table(errors, as_json=json_output))
        if not json_output:
            stats = svc.stats()
            console.print(
                "  ".join(f"{k}: {v}" for k, v in stats.items() if k != "total")
                + f"  (total {stats['total']})"
            )


@errors_app.command("retry")
def errors_retry(
    error_id: str = typer.Argument(..., help="Processing error ID"),
):
    """Retry the failed invoice or label creation."""
    cfg = _load()
    init_db()

    async def _run():
        with get_db_context() as db:
            outcome = await _error_service(db, cfg).retry(error_id, _actor)
            console.print(format_retry_outcome(outcome))

    try:
        asyncio.run(_run())
    except DomainError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@errors_app.command("skip")
def errors_skip(
    error_id: str = typer.Argument(..., help="Processing error ID"),
    note: Optional[str] = typer.Option(None, "--note", "-n", help="Reason for skipping"),
):
    """Skip a processing error (terminal)."""
    cfg = _load()
    init_db()
    try:
        with get_db_context() as db:
            _error_service(db, cfg).skip(error_id, _actor, note=note)
            console.print(f"[green]Error {error_id} skipped.[/green]")
    except DomainError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@errors_app.command("sweep")
def errors_sweep():
    """Retry every pending error that has retries left."""
    cfg = _load()
    init_db()

    async def _run():
        with get_db_context() as db:
            return await _error_service(db, cfg).retry_pending(_actor)

    outcomes = asyncio.run(_run())
    resolved = sum(1 for o in outcomes if o.success)
    console.print(f"Retried {len(outcomes)} error(s): {resolved} resolved.")
    for outcome in outcomes:
        if not outcome.success:
            console.print(format_retry_outcome(outcome))


if __name__ == "__main__":
    app()
