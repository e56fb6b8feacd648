from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from lfortran_lsp import __version__

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_PORT = 2087

app = typer.Typer(add_completion=False)


def configure_logging(level_name: str, log_file: Path | None = None) -> int:
    level = getattr(logging, level_name.strip().upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level: {level_name}")
    # stdout carries the protocol; logs go to stderr or a file.
    if log_file is not None:
        logging.basicConfig(level=level, format=LOG_FORMAT, filename=str(log_file), force=True)
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)
    return level


def _serve(*, tcp: bool, host: str, port: int) -> None:
    from lfortran_lsp.server import server, start

    if tcp:
        start(lambda: server.start_tcp(host, port))
    else:
        start()


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lfortran-lsp {__version__}")
        raise typer.Exit()


@app.command()
def main(
    stdio: bool = typer.Option(False, "--stdio", help="Serve over stdin/stdout (default)."),
    tcp: bool = typer.Option(False, "--tcp", help="Serve over TCP instead of stdio."),
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(DEFAULT_PORT, "--port"),
    log_level: str = typer.Option("warning", "--log-level"),
    log_file: Optional[Path] = typer.Option(None, "--log-file"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True
    ),
) -> None:
    """Run the LFortran language server."""
    if stdio and tcp:
        raise typer.BadParameter("--stdio and --tcp are mutually exclusive")
    configure_logging(log_level, log_file)
    logging.getLogger(__name__).info(
        "Starting lfortran-lsp %s over %s", __version__, "tcp" if tcp else "stdio"
    )
    _serve(tcp=tcp, host=host, port=port)
