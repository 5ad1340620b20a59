"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich table output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean.
"""

import json

from rich.console import Console
from rich.table import Table

from reconciler.db.models import ProcessingError
from reconciler.errors import format_error_summary
from reconciler.services.batch_processor import BatchResult
from reconciler.services.manifest_service import ManifestSummary
from reconciler.services.processing_error_service import RetryOutcome

console = Console()

# Status color map
STATUS_COLORS = {
    "draft": "dim",
    "pending_verification": "yellow",
    "confirmed": "blue",
    "processing": "blue",
    "processed": "green",
    "pending": "yellow",
    "retrying": "blue",
    "resolved": "green",
    "failed": "red",
    "skipped": "dim",
    "error": "red",
}


def _colored(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _render(renderable) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_manifest_table(summaries: list[ManifestSummary], as_json: bool = False) -> str:
    """Format manifests with item counts as a Rich table or JSON.

    Args:
        summaries: Manifests to display.
        as_json: If True, return JSON string instead of Rich table.

    Returns:
        Formatted string output.
    """
    if as_json:
        return json.dumps(
            [
                {
                    "id": s.manifest.id,
                    "type": s.manifest.type,
                    "status": s.manifest.status,
                    "document_date": s.manifest.document_date,
                    "items": s.item_count,
                    "processed": s.processed_count,
                    "errors": s.error_count,
                }
                for s in summaries
            ],
            indent=2,
        )

    if not summaries:
        return "No manifests found."

    table = Table(title="Manifests", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Date")
    table.add_column("Items", justify="right")
    table.add_column("OK", justify="right", style="green")
    table.add_column("Err", justify="right", style="red")

    for s in summaries:
        table.add_row(
            s.manifest.id[:12],
            s.manifest.type,
            _colored(s.manifest.status),
            s.manifest.document_date,
            str(s.item_count),
            str(s.processed_count),
            str(s.error_count),
        )
    return _render(table)


def format_batch_result(result: BatchResult, as_json: bool = False) -> str:
    """Format a batch result with grouped errors."""
    if as_json:
        return json.dumps(result.to_dict(), indent=2)

    lines = [
        f"Processed: {result.total_processed}  "
        f"[green]Success: {result.success_count}[/green]  "
        f"[red]Errors: {result.error_count}[/red]  "
        f"[dim]Skipped: {result.skipped_count}[/dim]",
    ]
    if result.errors:
        lines.append("")
        lines.append(format_error_summary(result.to_reconciler_errors()))
    return "\n".join(lines)


def format_error_table(errors: list[ProcessingError], as_json: bool = False) -> str:
    """Format processing errors as a Rich table or JSON."""
    if as_json:
        return json.dumps(
            [
                {
                    "id": e.id,
                    "order_id": e.order_id,
                    "type": e.type,
                    "status": e.status,
                    "retry_count": e.retry_count,
                    "max_retries": e.max_retries,
                    "error_message": e.error_message,
                }
                for e in errors
            ],
            indent=2,
        )

    if not errors:
        return "No processing errors found."

    table = Table(title="Processing Errors", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Order")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Message")

    for e in errors:
        table.add_row(
            e.id[:12],
            e.order_id[:12],
            e.type,
            _colored(e.status),
            f"{e.retry_count}/{e.max_retries}",
            (e.error_message or "")[:80],
        )
    return _render(table)


def format_retry_outcome(outcome: RetryOutcome) -> str:
    if outcome.success:
        return f"[green]Resolved.[/green] {outcome.message}"
    return (
        f"[red]Retry failed:[/red] {outcome.message} "
        f"(status: {_colored(outcome.status.value)}, retries left: {outcome.retries_left})"
    )
