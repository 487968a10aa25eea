"""Mini README: Entry point CLI for the Site Funds service.

This script exposes a Typer CLI that starts the FastAPI application with
configurable host, port, and production flags, and prints balance summaries
of the demo ledger for quick checks without a browser. Settings come from
``SITEFUNDS_`` environment variables when available.
"""

from __future__ import annotations

import asyncio

import typer
import uvicorn

from sitefunds.balance import BalanceCalculator
from sitefunds.configuration import get_settings
from sitefunds.errors import PartialDataError, SummaryUnavailableError
from sitefunds.ledger import InMemoryLedgerStore
from sitefunds.logging_utils import configure_root_logger, level_for_environment

cli = typer.Typer(help="Launch and inspect the Site Funds balance service.")


@cli.command()
def run(
    host: str = typer.Option(None, help="Host interface to bind."),
    port: int = typer.Option(None, help="Port to listen on."),
    production: bool = typer.Option(
        False, help="Use production server settings (disable auto-reload)."
    ),
) -> None:
    """Start the FastAPI application using uvicorn."""

    settings = get_settings()
    effective_host = host or settings.interface_host
    effective_port = port or settings.interface_port
    configure_root_logger(level_for_environment(settings.environment))

    # Browsers cannot open 0.0.0.0, so point operators at localhost instead.
    browser_host = "127.0.0.1" if effective_host in {"0.0.0.0", "::"} else effective_host
    typer.echo(
        "Starting Site Funds on "
        f"{effective_host}:{effective_port}.\n"
        "API docs at "
        f"http://{browser_host}:{effective_port}/docs"
    )
    uvicorn.run(
        "sitefunds.interface.web_app:create_application",
        host=effective_host,
        port=effective_port,
        factory=True,
        reload=not production,
    )


@cli.command()
def summary(site_id: str = typer.Argument(..., help="Identifier of a demo site.")) -> None:
    """Compute and print the balance summary of a demo ledger site."""

    settings = get_settings()
    configure_root_logger(level_for_environment(settings.environment))
    store = InMemoryLedgerStore()
    store.seed_demo_data()
    calculator = BalanceCalculator(store, settings)
    try:
        result = asyncio.run(calculator.calculate(site_id))
    except SummaryUnavailableError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=1) from error

    for name, value in result.as_dict().items():
        if name in {"site_id", "complete", "missing", "unavailable_fields"}:
            continue
        label = name.replace("_", " ").capitalize()
        typer.echo(f"{label:<32} {'unavailable' if value is None else value}")
    try:
        result.raise_for_incomplete()
    except PartialDataError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=2) from error


if __name__ == "__main__":
    cli()
