"""
Statmail CLI - Command line interface for running jobs.

Usage:
    statmail --help                          Show all commands
    statmail send-reports                    Send reports due now
    statmail send-reports --at 2026-10-19T13:15:00Z --dry-run
    statmail serve                           Run the API with the hourly scheduler
"""

import asyncio

import typer

app = typer.Typer(
    name="statmail",
    help="Statmail CLI - email report job runner",
    no_args_is_help=True,
)


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command("send-reports")
def send_reports(
    at: str | None = typer.Option(
        None, "--at", help="Reference instant (ISO-8601). Defaults to now."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Log reports instead of sending; no ledger writes"
    ),
):
    """Send the weekly and monthly reports due at the reference instant."""
    from statmail.jobs.send_reports import main

    ok = asyncio.run(main(current_time=at, dry_run=dry_run))
    if not ok:
        _print_error("Report dispatch aborted: invalid reference instant or site timezone")
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
):
    """Run the API server; the hourly report schedule runs in-process."""
    import uvicorn

    uvicorn.run("statmail.main:app", host=host, port=port)


if __name__ == "__main__":
    app()
