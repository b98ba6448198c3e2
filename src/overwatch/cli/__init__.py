"""
Overwatch CLI.

Commands:
- start:    run the server
- sessions: list sessions tracked by the running server
- scan:     trigger a reconciliation pass
- hook:     forward an agent hook event to the server
"""

import typer

from overwatch.cli.hook import hook
from overwatch.cli.main import configure_logging, load_environment, start
from overwatch.cli.sessions import scan, sessions

app = typer.Typer(help="Overwatch - live dashboard of running Claude sessions")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """
    Overwatch - live dashboard of running Claude sessions.
    """
    configure_logging(verbose)
    load_environment()


app.command()(start)
app.command()(sessions)
app.command()(scan)
app.command()(hook)

if __name__ == "__main__":
    app()
