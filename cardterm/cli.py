"""Typer CLI entrypoint."""

from __future__ import annotations

from pathlib import Path

import typer

from cardterm import server
from cardterm.api import open_terminal
from cardterm.core.action_log import configure_logging
from cardterm.core.errors import CardTerminalError

app = typer.Typer(help="Card dispenser terminal with RFID identification")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8080, "--port", help="HTTP port"),
    config_dir: Path | None = typer.Option(None, "--config-dir", help="Directory holding terminal.yaml / *.txt"),
    log_dir: Path | None = typer.Option(None, "--log-dir", help="Action log directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol bytes"),
) -> None:
    """Run the HTTP front end for issuing cards."""
    base = config_dir or Path.cwd()
    action_log = configure_logging(log_dir or base / "ActionLog", verbose=verbose)
    typer.echo(f"Action log: {action_log}")
    typer.echo(f"Listening on http://{host}:{port}/issue-card/")
    server.serve(open_terminal(config_dir), host=host, port=port)


@app.command("status")
def status(
    config_dir: Path | None = typer.Option(None, "--config-dir", help="Directory holding terminal.yaml / *.txt"),
) -> None:
    """Query the dispenser card-position sensor once."""
    try:
        card_status = open_terminal(config_dir).card_status()
    except CardTerminalError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo(f"status={int(card_status)} ({card_status.name.lower()})")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
