"""CLI entrypoint for Pet Context."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="petctx", help="Pet Context command-line interface")

DEFAULT_HOST = "http://127.0.0.1:8000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("PETCTX_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=60, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


@app.command()
def context(
    query: str = typer.Argument(..., help="Question to gather context for"),
    owner: Optional[str] = typer.Option(None, "--owner", help="Restrict journal entries to this owner"),
    subject: Optional[str] = typer.Option(None, "--subject", help="Restrict journal entries to this pet"),
    raw: bool = typer.Option(False, "--raw", help="Print the full JSON response"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Assemble the hybrid retrieval context for a question."""
    payload: dict[str, object] = {"query": query}
    if owner:
        payload["owner_id"] = owner
    if subject:
        payload["subject_id"] = subject
    resp = _request("POST", "/context", host=host, json=payload)
    body = resp.json()
    if raw:
        typer.echo(json.dumps(body, indent=2, ensure_ascii=False))
        return
    typer.echo(body["context"])
    for branch in body.get("branches", []):
        typer.echo(f"  {branch['name']}: {branch['status']} ({branch['count']} results, {branch['elapsed']:.2f}s)", err=True)


@app.command()
def publish(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON-lines file of change events"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Post every line of FILE to /events, one change event at a time."""
    counts: dict[str, int] = {}
    with file.expanduser().open("r", encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            resp = _request(
                "POST",
                "/events",
                host=host,
                data=line.encode("utf-8"),
                headers={"Content-Type": "application/json"},
            )
            state = resp.json()["state"]
            counts[state] = counts.get(state, 0) + 1
    typer.echo(json.dumps(counts, indent=2))


@app.command()
def replay(
    file: Path = typer.Argument(..., help="JSON-lines event log on the server's filesystem"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Number of sync workers"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Replay an event log from its last committed offset."""
    payload: dict[str, object] = {"path": str(file.expanduser().resolve())}
    if workers:
        payload["workers"] = workers
    resp = _request("POST", "/events/replay", host=host, json=payload)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum number of documents"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Search only the local document corpus."""
    params: dict[str, object] = {"q": query}
    if limit:
        params["limit"] = limit
    resp = _request("GET", "/corpus/search", host=host, params=params)
    typer.echo(json.dumps(resp.json(), indent=2, ensure_ascii=False))


@app.command()
def stats(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show vector index and source status."""
    resp = _request("GET", "/index/stats", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    app()
