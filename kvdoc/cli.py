"""
kvdoc command line: inspect and maintain a configured store.

Works on raw keys, so it needs no document kinds: documents and index
pointer records are both just keys here.

Usage:
    kvdoc init
    kvdoc get user-3kd9Xw2
    kvdoc keys --prefix "user#"
    kvdoc lookup user email joe@example.com
    kvdoc new-id user -n 3
"""

import json
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .backend import Session, open_session
from .config import get_default_store_path, load_or_create_config
from .errors import KvdocError, NotFoundError
from .id_generator import IdGenerator
from .index import IndexEngine, pointer_key_for
from .logging_config import configure_quiet_mode, enable_debug_mode

if os.environ.get("KVDOC_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


# Set by the --json global option, read by every command
_json_output = False


def _set_json(value: bool):
    global _json_output
    _json_output = value


def _want_json() -> bool:
    return _json_output


def _show_version(value: bool):
    if not value:
        return
    from importlib.metadata import version
    typer.echo(f"kvdoc {version('kvdoc')}")
    raise typer.Exit()


def _set_verbose(value: bool):
    if value:
        enable_debug_mode()


app = typer.Typer(
    name="kvdoc",
    help="Documents, indexes and unique ids on a compare-and-swap key-value store.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Log store round-trips and pointer changes to stderr",
        callback=_set_verbose,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Print machine-readable JSON",
        callback=_set_json,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Print the kvdoc version",
        callback=_show_version,
        is_eager=True,
    )] = None,
):
    """Documents, indexes and unique ids on a compare-and-swap key-value store."""


StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar="KVDOC_STORE_PATH",
        help="Store directory holding kvdoc.toml (default: ~/.kvdoc/)"
    )
]


def _open(store: Optional[Path]) -> Session:
    return open_session(store or get_default_store_path())


def _echo_record(key: str, value, cas: Optional[int] = None) -> None:
    if _want_json():
        typer.echo(json.dumps({"key": key, "cas": cas, "value": value}, ensure_ascii=False))
    elif isinstance(value, dict):
        typer.echo(f"{key}  cas={cas}")
        for name, item in value.items():
            typer.echo(f"  {name}: {json.dumps(item, ensure_ascii=False)}")
    else:
        typer.echo(f"{key} -> {value}")


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init(store: StoreOption = None):
    """Create the store directory and its config file if missing."""
    path = store or get_default_store_path()
    config = load_or_create_config(path)
    with open_session(config=config):
        pass
    if _want_json():
        typer.echo(json.dumps({"path": str(config.path), "backend": config.backend}))
    else:
        typer.echo(f"Store ready at {config.path} ({config.backend})")


@app.command("config")
def show_config(store: StoreOption = None):
    """Show the store configuration."""
    config = load_or_create_config(store or get_default_store_path())
    data = {
        "path": str(config.path),
        "config": str(config.config_path),
        "backend": config.backend,
        "database": str(config.database_path),
        "timeout": config.timeout,
        "retry_generated_id": config.retry_generated_id,
        "ops_log": config.ops_log,
    }
    if _want_json():
        typer.echo(json.dumps(data))
        return
    for name, value in data.items():
        typer.echo(f"{name}: {value}")


@app.command()
def get(
    key: Annotated[str, typer.Argument(help="Document id or pointer key")],
    store: StoreOption = None,
):
    """Show the stored value and CAS token for a key."""
    with _open(store) as session:
        record = session.store.get(key, quiet=True)
    if record is None:
        typer.echo(f"Not found: {key}", err=True)
        raise typer.Exit(1)
    _echo_record(record.key, record.value, record.cas)


@app.command()
def keys(
    prefix: Annotated[str, typer.Option(
        "--prefix", "-p",
        help="Only keys starting with this prefix (e.g. 'user-' or 'user#email|')"
    )] = "",
    store: StoreOption = None,
):
    """List stored keys, documents and pointer records alike."""
    with _open(store) as session:
        lister = getattr(session.store, "keys", None)
        if lister is None:
            typer.echo(f"Backend {session.config.backend!r} cannot list keys", err=True)
            raise typer.Exit(1)
        found = lister(prefix)
    if _want_json():
        typer.echo(json.dumps(found))
        return
    for key in found:
        typer.echo(key)


@app.command("rm")
def remove(
    key: Annotated[str, typer.Argument(help="Key to delete")],
    cas: Annotated[Optional[int], typer.Option(
        "--cas",
        help="Only delete if the stored CAS still matches"
    )] = None,
    store: StoreOption = None,
):
    """Delete one key. Index pointers of a removed document self-heal on lookup."""
    with _open(store) as session:
        try:
            session.store.delete(key, cas)
        except NotFoundError:
            typer.echo(f"Not found: {key}", err=True)
            raise typer.Exit(1)
    typer.echo(f"Deleted {key}")


@app.command("new-id")
def new_id(
    kind: Annotated[str, typer.Argument(help="Document kind used as the id prefix")],
    count: Annotated[int, typer.Option(
        "--count", "-n",
        help="How many ids to generate"
    )] = 1,
):
    """Generate document ids without touching the store."""
    generator = IdGenerator()
    ids = [generator.next(kind) for _ in range(max(count, 0))]
    if _want_json():
        typer.echo(json.dumps(ids))
        return
    for generated in ids:
        typer.echo(generated)


@app.command()
def lookup(
    kind: Annotated[str, typer.Argument(help="Document kind")],
    index: Annotated[str, typer.Argument(help="Index name")],
    values: Annotated[list[str], typer.Argument(help="Indexed values, in index order")],
    parse_json: Annotated[bool, typer.Option(
        "--json-values",
        help="Parse each value as JSON (numbers, null, true/false)"
    )] = False,
    store: StoreOption = None,
):
    """
    Resolve an index pointer to a document id.

    Values are used as given; apply the index's normalizer yourself.
    A pointer to a missing document is removed.

    \b
    Examples:
        kvdoc lookup user email joe@example.com
        kvdoc lookup membership user_id_group_id u-1 g-2
        kvdoc lookup item rank 3 --json-values
    """
    if parse_json:
        try:
            parsed = [json.loads(v) for v in values]
        except json.JSONDecodeError as e:
            typer.echo(f"Error: invalid JSON value: {e}", err=True)
            raise typer.Exit(1)
    else:
        parsed = list(values)

    try:
        key = pointer_key_for(kind, index, parsed)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    with _open(store) as session:
        doc_id = IndexEngine(session.store, timeout=session.config.timeout).resolve_key(key)

    if _want_json():
        typer.echo(json.dumps({"key": key, "id": doc_id}))
    elif doc_id is None:
        typer.echo(f"No document for {key}", err=True)
        raise typer.Exit(1)
    else:
        typer.echo(doc_id)


def main():
    """Console entry point: store errors become one line on stderr and exit 1."""
    try:
        app()
    except KeyboardInterrupt:
        raise SystemExit(130)
    except KvdocError as e:
        key = getattr(e, "key", None)
        typer.echo(f"Error: {e}" if key is None or key in str(e) else f"Error ({key}): {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        # Unexpected failures keep their traceback in the error log
        from .errors import log_exception
        log_path = log_exception(e, context="kvdoc CLI")
        typer.echo(f"Error: {e}\nDetails logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
