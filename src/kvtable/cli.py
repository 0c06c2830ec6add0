"""
CLI: ``kvtable`` — inspect and manipulate a table from the shell.

Global options select the backend and prefix; every command builds a
:class:`~kvtable.table.HashTable` through :func:`kvtable.factory.create_table`
and closes it on exit, so locks taken by ``kvtable lock`` never outlive
the command.
"""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from typing import Any, Iterator

import typer
from rich.console import Console
from rich.table import Table

from kvtable.errors import KVTableError
from kvtable.factory import create_table
from kvtable.logging import configure_logging
from kvtable.settings import BackendKind, HashTableSettings
from kvtable.table import KeyKind

app = typer.Typer(
    name="kvtable",
    help="kvtable — namespaced key-value table with negative caching and locks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


# ── Global options ───────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("kvtable")
        except PackageNotFoundError:
            from kvtable import __version__ as v
        typer.echo(f"kvtable {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    backend: BackendKind | None = typer.Option(None, "--backend", "-b", help="Backend driver."),
    url: str | None = typer.Option(None, "--url", "-u", help="Redis connection URL."),
    prefix: str | None = typer.Option(None, "--prefix", "-p", help="Key prefix."),
    json_out: bool = typer.Option(False, "--json", help="Emit JSON."),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """kvtable CLI — get, set, delete, clear and lock keys."""
    overrides: dict[str, Any] = {}
    if backend is not None:
        overrides["backend"] = backend
    if url is not None:
        overrides["redis_url"] = url
    if prefix is not None:
        overrides["prefix"] = prefix

    settings = HashTableSettings(**overrides)
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    ctx.obj = {"settings": settings, "json": json_out}


# ── Helpers ──────────────────────────────────────────────────────────────


@contextmanager
def _table(ctx: typer.Context) -> Iterator[Any]:
    """Open a table for one command, turning kvtable errors into exit code 1."""
    try:
        with create_table(ctx.obj["settings"]) as table:
            yield table
    except KVTableError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=1) from exc


def _output(ctx: typer.Context, data: dict[str, Any], *, title: str = "") -> None:
    if ctx.obj["json"]:
        console.print_json(json.dumps(data, default=str))
        return

    table = Table(title=title or None, show_lines=False, pad_edge=False)
    table.add_column("key", overflow="fold")
    table.add_column("value", overflow="fold")
    for key, value in data.items():
        table.add_row(key, "[dim](absent)[/dim]" if value is False else str(value))
    console.print(table)


def _fail(message: str) -> None:
    err_console.print(f"[bold red]Failed[/bold red]: {message}")
    raise typer.Exit(code=1)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("get")
def get_keys(
    ctx: typer.Context,
    keys: list[str] = typer.Argument(..., help="Keys to fetch."),
) -> None:
    """Fetch values."""
    with _table(ctx) as table:
        _output(ctx, table.get(keys), title="Values")


@app.command("exists")
def exists_keys(
    ctx: typer.Context,
    keys: list[str] = typer.Argument(..., help="Keys to check."),
) -> None:
    """Check which keys exist."""
    with _table(ctx) as table:
        _output(ctx, table.exists(keys), title="Existence")


@app.command("set")
def set_key(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    value: str = typer.Argument(...),
    expire: int | None = typer.Option(None, "--expire", "-e", help="Expiry in seconds."),
    replace: bool = typer.Option(False, "--replace", help="Only overwrite an existing key."),
) -> None:
    """Store a value."""
    with _table(ctx) as table:
        ok = table.set(key, value, expire=expire, replace=replace)
    if not ok:
        _fail(f"could not set {key}")
    console.print(f"[green]✓[/green] set {key}")


@app.command("delete")
def delete_keys(
    ctx: typer.Context,
    keys: list[str] = typer.Argument(..., help="Keys to delete."),
) -> None:
    """Delete keys. Fails if any of them did not exist."""
    with _table(ctx) as table:
        ok = table.delete(keys)
    if not ok:
        _fail("backend deleted fewer keys than requested")
    console.print(f"[green]✓[/green] deleted {len(keys)} key(s)")


@app.command("clear")
def clear_keys(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete every key under the prefix."""
    prefix = ctx.obj["settings"].prefix
    if not yes:
        typer.confirm(f"Delete every key under prefix {prefix!r}?", abort=True)
    with _table(ctx) as table:
        count = table.clear()
    console.print(f"[green]✓[/green] cleared {count} key(s) under {prefix!r}")


@app.command("hkey")
def show_hkey(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    lock: bool = typer.Option(False, "--lock", help="Show the lock key instead."),
) -> None:
    """Show the physical key a logical key maps to."""
    with _table(ctx) as table:
        typer.echo(table.hkey(key, KeyKind.LOCK if lock else KeyKind.DATA))


@app.command("lock")
def lock_key(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Give up after N seconds."),
    hold: float = typer.Option(0.0, "--hold", help="Seconds to hold the lock before releasing."),
) -> None:
    """Acquire a lock, hold it, then release it."""
    with _table(ctx) as table:
        if not table.acquire(key, timeout=timeout):
            _fail(f"timed out waiting for lock {key}")
        console.print(f"[green]✓[/green] locked {key}")
        if hold > 0:
            time.sleep(hold)
        table.unlock(key)
    console.print(f"[green]✓[/green] released {key}")


@app.command("unlock")
def unlock_key(
    ctx: typer.Context,
    key: str = typer.Argument(...),
) -> None:
    """Release a lock, whoever holds it (refused under strict unlock)."""
    with _table(ctx) as table:
        ok = table.unlock(key)
    if not ok:
        _fail(f"{key} is not held by this process")
    console.print(f"[green]✓[/green] released {key}")
