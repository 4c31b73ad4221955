"""CLI entrypoint for Chat Archive."""

from __future__ import annotations

import json
import os
import time
from datetime import datetime
from typing import Any, Optional

import requests
import typer

app = typer.Typer(name="charc", help="Chat Archive command-line interface")
cursor_app = typer.Typer(name="cursor", help="Inspect or reset incremental sync positions")
folders_app = typer.Typer(name="folders", help="Group chats for scoped search")
app.add_typer(cursor_app, name="cursor")
app.add_typer(folders_app, name="folders")

DEFAULT_HOST = "http://127.0.0.1:5173"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("CHARC_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, timeout: float = 60, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=timeout, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def sync(
    chat_id: int = typer.Argument(..., help="Chat identifier"),
    method: Optional[str] = typer.Option(None, "--method", help="takeout or getMessage"),
    limit: int = typer.Option(0, "--limit", help="Stop after this many messages (0 = all)"),
    incremental: bool = typer.Option(False, "--incremental", help="Only fetch messages newer than the cursor"),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Messages per history page"),
    min_id: Optional[int] = typer.Option(None, "--min-id", help="Lowest message id to fetch"),
    max_id: Optional[int] = typer.Option(None, "--max-id", help="Highest message id to fetch"),
    since: Optional[datetime] = typer.Option(None, "--since", help="Skip messages older than this time"),
    until: Optional[datetime] = typer.Option(None, "--until", help="Skip messages newer than this time"),
    message_type: Optional[list[str]] = typer.Option(None, "--type", help="Restrict to message types"),
    wait_on_rate_limit: bool = typer.Option(
        False,
        "--wait-on-rate-limit",
        help="Sleep through platform-imposed waits and resume from where the walk stopped",
    ),
    max_waits: int = typer.Option(3, "--max-waits", help="Give up after this many rate-limit waits"),
    export_format: str = typer.Option("database", "--format", help="database or json"),
    export_path: Optional[str] = typer.Option(None, "--export-path", help="Directory for json exports"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Export a chat's history into the archive."""
    body: dict[str, Any] = {
        "chat_id": chat_id,
        "limit": limit,
        "incremental": incremental,
        "format": export_format,
    }
    if export_path:
        body["export_path"] = export_path
    if method:
        body["method"] = method
    if page_size:
        body["page_size"] = page_size
    if min_id:
        body["min_id"] = min_id
    if max_id:
        body["max_id"] = max_id
    if since:
        body["start_time"] = since.isoformat()
    if until:
        body["end_time"] = until.isoformat()
    if message_type:
        body["message_types"] = message_type

    waits = 0
    while True:
        data = _request("POST", "/sync", host=host, timeout=None, json=body).json()
        metadata = data.get("metadata") or {}
        if metadata.get("type") != "waiting" or not wait_on_rate_limit or waits >= max_waits:
            break
        waits += 1
        wait_seconds = int(metadata.get("waitSeconds") or 0)
        typer.echo(f"Rate limited; waiting {wait_seconds}s before resuming ({waits}/{max_waits})", err=True)
        time.sleep(wait_seconds)
        # Continue the interrupted walk where it stopped, within the same lower bound.
        body["resume_offset_id"] = int(metadata.get("lastOffsetId") or 0)
        if metadata.get("lowerBound"):
            body["min_id"] = int(metadata["lowerBound"])
        body["incremental"] = False
    data.pop("events", None)
    _echo(data)
    if data.get("status") == "failed":
        raise typer.Exit(code=1)


@app.command()
def embed(
    chat_id: int = typer.Argument(..., help="Chat identifier"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Texts per provider call"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Parallel writes per sub-batch (1-10)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Embed archived messages that lack vectors."""
    body: dict[str, Any] = {"chat_id": chat_id}
    if batch_size:
        body["batch_size"] = batch_size
    if concurrency:
        body["concurrency"] = concurrency
    data = _request("POST", "/embed", host=host, timeout=None, json=body).json()
    data.pop("events", None)
    _echo(data)
    if data.get("status") == "failed":
        raise typer.Exit(code=1)


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    chat_id: Optional[int] = typer.Option(None, "--chat", help="Restrict to one chat"),
    folder_id: Optional[int] = typer.Option(None, "--folder", help="Restrict to a folder's chats"),
    limit: int = typer.Option(20, "--limit", help="Number of results to return"),
    offset: int = typer.Option(0, "--offset", help="Results to skip"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Search the archive."""
    payload: dict[str, Any] = {"query": q, "limit": limit, "offset": offset}
    if chat_id is not None:
        payload["chat_id"] = chat_id
    if folder_id is not None:
        payload["folder_id"] = folder_id
    resp = _request("POST", "/search", host=host, json=payload)
    _echo(resp.json())


@app.command()
def chats(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List archived chats."""
    resp = _request("GET", "/chats", host=host)
    _echo(resp.json())


@cursor_app.command("show")
def show_cursor(
    chat_id: int = typer.Argument(..., help="Chat identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show the incremental sync position of a chat."""
    resp = _request("GET", f"/chats/{chat_id}/cursor", host=host)
    _echo(resp.json())


@cursor_app.command("clear")
def clear_cursor(
    chat_id: int = typer.Argument(..., help="Chat identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Reset a chat so the next sync starts from the newest message."""
    resp = _request("DELETE", f"/chats/{chat_id}/cursor", host=host)
    _echo(resp.json())


@folders_app.command("set")
def set_folder(
    folder_id: int = typer.Argument(..., help="Folder identifier"),
    title: str = typer.Option(..., "--title", help="Folder title"),
    chat_ids: list[int] = typer.Option(..., "--chat", help="Chat ids in the folder"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Create or replace a folder."""
    resp = _request("PUT", f"/folders/{folder_id}", host=host, json={"title": title, "chat_ids": chat_ids})
    _echo(resp.json())


if __name__ == "__main__":
    app()
