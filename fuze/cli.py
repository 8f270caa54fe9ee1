from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from fuze.config import get_settings
from fuze.reconcile import reconcile
from fuze.store import RecordStore, build_store

app = typer.Typer(help="FUZE submission portal: API server and extraction tooling")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=False)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_scalar(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    if value is None:
        return "-"
    return str(value)


def _render_table(title: str, rows: list[tuple[str, str]], *, border_style: str = "cyan") -> None:
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for metric, value in rows:
        table.add_row(metric, value)
    console.print(Panel(table, title=title, border_style=border_style))


def _store() -> RecordStore:
    return build_store(get_settings())


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, help="Bind address (default: FUZE_HOST)."),
    port: int | None = typer.Option(None, help="Port (default: FUZE_PORT)."),
    reload: bool = typer.Option(False, help="Auto-reload on code changes."),
) -> None:
    """Run the submission API."""
    import uvicorn
    settings = get_settings()
    uvicorn.run("fuze.app:app", host=host or settings.host, port=port or settings.port, reload=reload)


@app.command("reconcile")
def reconcile_command(
    ctx: typer.Context,
    ids: list[int] | None = typer.Option(None, "--id", help="Extract only these submission ids (repeatable)."),
    delay: float | None = typer.Option(None, help="Seconds between AI calls (default: FUZE_EXTRACTION_DELAY)."),
    concurrency: int | None = typer.Option(None, help="Extractions in flight (default: FUZE_EXTRACTION_CONCURRENCY)."),
    dry_run: bool = typer.Option(False, "--dry-run", help="List candidates without calling the AI."),
) -> None:
    """Extract structured fields for submissions that only have a transcript."""
    from fuze.extractor import LLMClient

    settings = get_settings()
    client = None if dry_run else LLMClient(
        provider=settings.llm_provider, model=settings.llm_model or None,
    )
    with _store() as store:
        report = asyncio.run(reconcile(
            store, client,
            delay=settings.extraction_delay if delay is None else delay,
            concurrency=concurrency or settings.extraction_concurrency,
            ids=ids or None,
            dry_run=dry_run,
            min_length=settings.transcript_min_length,
        ))

    payload = report.as_dict()
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    _render_table("reconcile", [
        ("candidates", str(len(report.candidates))),
        ("extracted", str(len(report.extracted))),
        ("failed", str(len(report.failed))),
        ("skipped", str(len(report.skipped))),
    ])
    if report.failed:
        _render_table(
            "reconcile · failures",
            [(str(k), v[:120]) for k, v in report.failed.items()],
            border_style="red",
        )
        raise typer.Exit(code=1)


@app.command("list")
def list_command(ctx: typer.Context) -> None:
    """Show all submissions, newest first."""
    with _store() as store:
        rows = store.list()

    if _wants_json(ctx):
        typer.echo(json.dumps(rows, indent=2, ensure_ascii=False, default=str))
        return

    table = Table(show_header=True, header_style="bold yellow", box=ROUNDED)
    for column in ("ID", "Company", "Technology", "TRL", "Score", "Recommendation", "Created"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            str(row["id"]),
            _format_scalar(row.get("company_name")),
            _format_scalar(row.get("technology_name")),
            _format_scalar(row.get("trl_level")),
            _format_scalar(row.get("capability_score")),
            _format_scalar(row.get("recommendation")),
            _format_scalar(row.get("created_at")),
        )
    console.print(Panel(table, title=f"submissions · {len(rows)}", border_style="yellow"))


@app.command("stats")
def stats_command(ctx: typer.Context) -> None:
    """Print aggregate statistics."""
    with _store() as store:
        stats = store.statistics()

    if _wants_json(ctx):
        typer.echo(json.dumps(stats, indent=2))
        return
    _render_table("statistics", [(k, _format_scalar(v)) for k, v in stats.items()])


def main() -> None:
    app()


if __name__ == "__main__":
    main()
