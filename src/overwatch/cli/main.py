"""
Server lifecycle command and shared CLI setup.
"""

import os
from typing import Optional

import typer
from dotenv import load_dotenv

from overwatch.config import PROJECT_DIR
from overwatch.logger import setup_logging


def configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else os.getenv("OVERWATCH_LOG_LEVEL", "WARNING")
    setup_logging(level=level, log_file=os.getenv("OVERWATCH_LOG_FILE"))


def load_environment() -> None:
    load_dotenv(PROJECT_DIR / ".env")


def start(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on"),
):
    """Start the Overwatch server."""
    from overwatch.server import run

    typer.echo("Starting Overwatch server...")
    run(host=host, port=port)
