"""xennon CLI — inspect and edit a store from the shell.

Commands:
    xennon init [NAME]          create xennon.toml + the store directory
    xennon add JSON             add an object (or a list of objects)
    xennon get ID               print one item's fields
    xennon all                  print every item
    xennon only JSON [--strict] items matching every key/value
    xennon edit FILTER JSON     merge fields into the first match
    xennon delete FILTER        delete the first match
    xennon sweep FILTER         delete every match
    xennon empty --yes          delete everything
    xennon backup               snapshot to <name>--backup.json
    xennon restore              replace the store with the snapshot

FILTER is either an item id or a JSON object.  The store is located via the
nearest xennon.toml (see ``--dir``); scheduled backups are never started.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from xennon.config import init_config
from xennon.errors import XennonError
from xennon.store import XennonStore

if TYPE_CHECKING:
    from collections.abc import Iterator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _json_arg(text: str, what: str = "JSON") -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"{what} is not valid JSON: {exc}"
        raise click.BadParameter(msg) from exc


def _filter_arg(text: str) -> Any:
    """An item id, or a JSON object when text looks like one."""
    if text.lstrip().startswith("{"):
        flt = _json_arg(text, "FILTER")
        if not isinstance(flt, dict):
            raise click.BadParameter("FILTER must be an id or a JSON object")
        return flt
    return text


def _echo_json(value: Any) -> None:
    click.echo(json.dumps(value, indent=2, ensure_ascii=False))


@contextmanager
def _store(ctx: click.Context) -> Iterator[XennonStore]:
    try:
        store = XennonStore.open(ctx.obj["root"], backups={"enabled": False})
    except XennonError as exc:
        raise click.ClickException(str(exc)) from exc
    try:
        yield store
    except XennonError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        store.close()


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="xennon")
@click.option("--dir", "root", default=None, help="Directory to search for xennon.toml (default: cwd)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging to stderr")
@click.pass_context
def cli(ctx: click.Context, root: str | None, verbose: bool) -> None:
    """xennon — embedded JSON document store."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["root"] = root


@cli.command()
@click.argument("name", required=False)
@click.pass_context
def init(ctx: click.Context, name: str | None) -> None:
    """Create xennon.toml and the store file in the current project."""
    root_path = Path(ctx.obj["root"] or ".").resolve()
    try:
        config_path = init_config(root_path, name=name)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("xennon.toml already exists — skipping init")
    ctx.obj["root"] = str(root_path)
    with _store(ctx) as store:
        click.echo(f"Store  : {store.path}")
        click.echo(f"Items  : {len(store)}")


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("item_id")
@click.pass_context
def get(ctx: click.Context, item_id: str) -> None:
    """Print the fields of ITEM_ID."""
    with _store(ctx) as store:
        fields = store.get(item_id)
    if fields is None:
        raise click.ClickException(f"No item with id {item_id}")
    _echo_json(fields)


@cli.command(name="all")
@click.pass_context
def all_items(ctx: click.Context) -> None:
    """Print every item, in insertion order."""
    with _store(ctx) as store:
        _echo_json(store.all())


@cli.command()
@click.argument("fields")
@click.option("--strict", is_flag=True, help="Require identical types (30 != \"30\")")
@click.pass_context
def only(ctx: click.Context, fields: str, strict: bool) -> None:
    """Print items whose fields match every key/value in FIELDS."""
    query = _json_arg(fields, "FIELDS")
    if not isinstance(query, dict):
        raise click.BadParameter("FIELDS must be a JSON object")
    with _store(ctx) as store:
        _echo_json(store.only(query, strict=strict))


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("data")
@click.pass_context
def add(ctx: click.Context, data: str) -> None:
    """Add DATA (a JSON object or a list of them); prints the new id(s)."""
    items = _json_arg(data, "DATA")
    if not isinstance(items, (dict, list)):
        raise click.BadParameter("DATA must be a JSON object or array")
    with _store(ctx) as store:
        try:
            result = store.add(items).result()
        except TypeError as exc:
            raise click.BadParameter(str(exc)) from exc
    _echo_json(result)


@cli.command()
@click.argument("flt", metavar="FILTER")
@click.argument("patch")
@click.pass_context
def edit(ctx: click.Context, flt: str, patch: str) -> None:
    """Merge PATCH into the first item matching FILTER."""
    fields = _json_arg(patch, "PATCH")
    if not isinstance(fields, dict):
        raise click.BadParameter("PATCH must be a JSON object")
    with _store(ctx) as store:
        ok = store.edit(_filter_arg(flt), fields).result()
    if ok is None:
        raise click.ClickException("No matching item")
    click.echo("Edited")


@cli.command()
@click.argument("flt", metavar="FILTER")
@click.pass_context
def delete(ctx: click.Context, flt: str) -> None:
    """Delete the first item matching FILTER."""
    with _store(ctx) as store:
        ok = store.delete(_filter_arg(flt)).result()
    if ok is None:
        raise click.ClickException("No matching item")
    click.echo("Deleted")


@cli.command()
@click.argument("flt", metavar="FILTER")
@click.pass_context
def sweep(ctx: click.Context, flt: str) -> None:
    """Delete every item matching FILTER."""
    with _store(ctx) as store:
        n = store.sweep(_filter_arg(flt)).result()
    click.echo(f"Deleted {n} items")


@cli.command()
@click.option("--yes", is_flag=True, help="Confirm deleting every item")
@click.pass_context
def empty(ctx: click.Context, yes: bool) -> None:
    """Delete every item."""
    if not yes:
        click.confirm("Delete every item in the store?", abort=True)
    with _store(ctx) as store:
        store.empty().result()
    click.echo("Emptied")


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Snapshot the store to <name>--backup.json."""
    with _store(ctx) as store:
        path = store.backup().result()
    click.echo(f"Backup written to {path}")


@cli.command()
@click.pass_context
def restore(ctx: click.Context) -> None:
    """Replace the store with the last backup."""
    with _store(ctx) as store:
        store.restore().result()
        n = len(store)
    click.echo(f"Restored {n} items")
