"""
Shared HTTP helpers for CLI commands that talk to the running server.
"""

import os

import httpx
import typer


def get_server_url() -> str:
    """Get the server URL from environment or default."""
    url = os.getenv("OVERWATCH_SERVER_URL")
    if url:
        return url.rstrip("/")
    host = os.getenv("OVERWATCH_HOST", "localhost")
    if host == "0.0.0.0":
        host = "localhost"
    port = os.getenv("OVERWATCH_PORT", "3142")
    return f"http://{host}:{port}"


def _http_get(path: str, params: dict = None) -> dict:
    """Make a GET request to the running server."""
    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.get(url, params=params, timeout=10.0)
        resp.raise_for_status()
        return resp.json()
    except httpx.ConnectError:
        typer.echo("Cannot connect to Overwatch server. Is it running?")
        raise typer.Exit(code=1)
    except httpx.HTTPStatusError as e:
        typer.echo(f"Server error: {e.response.status_code}")
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(code=1)


def _http_post(path: str, data: dict = None) -> dict:
    """Make a POST request to the running server."""
    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.post(url, json=data or {}, timeout=30.0)
        resp.raise_for_status()
        return resp.json()
    except httpx.ConnectError:
        typer.echo("Cannot connect to Overwatch server. Is it running?")
        raise typer.Exit(code=1)
    except httpx.HTTPStatusError as e:
        typer.echo(f"Server error: {e.response.status_code}")
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(code=1)
