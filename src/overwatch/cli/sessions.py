"""
CLI commands that query the running server.

Usage:
    overwatch sessions [--all]
    overwatch scan
"""

import typer

from overwatch.cli import _http


def sessions(
    show_all: bool = typer.Option(False, "--all", "-a", help="Include ended sessions"),
):
    """List sessions tracked by the running server."""
    data = _http._http_get("/sessions")
    rows = [s for s in data.get("sessions", []) if show_all or s.get("status") != "ended"]

    if not rows:
        typer.echo("No sessions.")
        return

    for s in rows:
        status = s.get("status", "?").upper()
        line = f"  {status:<8} {s.get('projectName', '?'):<24} {s.get('id')}"
        if s.get("lastTool"):
            line += f"  {s['lastTool']}"
        typer.echo(line)
        if s.get("pendingState"):
            message = s.get("pendingMessage") or ""
            typer.echo(f"           waiting: {s['pendingState']} {message[:80]}")


def scan():
    """Reconcile sessions against running processes now."""
    data = _http._http_post("/scan")
    if data.get("skipped"):
        typer.echo(f"Scan skipped: {data.get('reason', 'unknown reason')}")
        return
    typer.echo(
        f"Scan complete: {len(data.get('imported', []))} imported, "
        f"{len(data.get('ended', []))} ended"
    )
