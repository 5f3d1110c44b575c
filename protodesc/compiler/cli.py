"""Command-line interface for inspecting schema files and descriptor pools."""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from protodesc.compiler import LexicalError, ProtoSyntaxError, parse, tokenize
from protodesc.compiler.render import render_message
from protodesc.descriptors import query
from protodesc.descriptors.pool import DescriptorPool

if TYPE_CHECKING:
    from protodesc.descriptors.types import Handle

console = Console()
err_console = Console(stderr=True)

proto_path_option = click.option(
    "--proto-path",
    "-I",
    "proto_path",
    multiple=True,
    envvar="PROTODESC_PATH",
    type=click.Path(file_okay=False),
    help="Directory to load schema files from; repeatable",
)


def _print_error(message: str) -> None:
    err_console.print(message, style="red", markup=False, highlight=False, soft_wrap=True)


def _load_pool(proto_path: tuple[str, ...]) -> DescriptorPool:
    if not proto_path:
        raise click.UsageError("At least one --proto-path directory is required")
    pool = DescriptorPool(proto_path, error_cb=_print_error)
    pool.finalize()
    return pool


def _read(input_file: str) -> str:
    with open(input_file, encoding="utf-8") as f:
        return f.read()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log pool build progress")
def cli(verbose: bool) -> None:
    """Protobuf schema descriptor tool."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@cli.command()
@click.option("--input", "-i", "input_file", required=True, help="Input schema file")
def tokens(input_file: str) -> None:
    """Print the token stream of a schema file."""
    try:
        toks = tokenize(_read(input_file), input_file)
    except LexicalError as exc:
        _print_error(str(exc))
        sys.exit(1)

    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    table.add_column("Pos", style="dim", justify="right")
    table.add_column("Kind", style="cyan")
    table.add_column("Value", style="white")
    for tok in toks:
        table.add_row(f"{tok.line}:{tok.column}", str(tok.kind), Text(tok.value))
    console.print(table)


@cli.command("parse")
@click.option("--input", "-i", "input_file", required=True, help="Input schema file")
@click.option("--json", "output_json", is_flag=True, help="Output the declaration tree as JSON")
def parse_cmd(input_file: str, output_json: bool) -> None:
    """Parse a schema file and print its declarations."""
    try:
        proto_file = parse(_read(input_file), input_file)
    except (LexicalError, ProtoSyntaxError) as exc:
        _print_error(str(exc))
        sys.exit(1)

    if output_json:
        click.echo(proto_file.to_json(indent=2))
        return

    console.print(f"[bold cyan]{proto_file.name}[/bold cyan] ({proto_file.syntax})")
    table = Table(show_header=False, box=None, padding=(0, 2, 0, 2))
    table.add_column("Label", style="dim")
    table.add_column("Value", style="white")
    table.add_row("Package", proto_file.package or "")
    table.add_row("Imports", ", ".join(imp.path for imp in proto_file.imports))
    table.add_row("Messages", ", ".join(m.name for m in proto_file.messages))
    table.add_row("Enums", ", ".join(e.name for e in proto_file.enums))
    table.add_row("Services", ", ".join(s.name for s in proto_file.services))
    console.print(table)


def _field_json(pool: DescriptorPool, field: Handle) -> dict:
    ftype = query.field_type(pool, field)
    data: dict = {
        "name": query.field_name(pool, field),
        "number": query.field_number(pool, field),
        "type": query.field_type_name(ftype),
        "label": str(pool.field(field).label),
        "packed": query.field_is_packed(pool, field),
    }
    target = query.field_message_type(pool, field)
    if target is not None:
        data["message_type"] = query.message_full_name(pool, target)
    enum = query.field_enum_type(pool, field)
    if enum is not None:
        data["enum_type"] = query.enum_full_name(pool, enum)
    return data


@cli.command()
@proto_path_option
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def messages(proto_path: tuple[str, ...], output_json: bool) -> None:
    """List every message in the pool, nested ones included."""
    pool = _load_pool(proto_path)

    if output_json:
        data = {}
        for handle in pool.messages():
            count = query.message_field_count(pool, handle)
            data[query.message_full_name(pool, handle)] = {
                "file": pool.message(handle).file,
                "fields": [
                    _field_json(pool, query.message_field(pool, handle, i)) for i in range(count)
                ],
            }
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    table.add_column("Message", style="white")
    table.add_column("Fields", style="yellow", justify="right")
    table.add_column("File", style="dim")
    for handle in pool.messages():
        table.add_row(
            query.message_full_name(pool, handle),
            str(query.message_field_count(pool, handle)),
            pool.message(handle).file,
        )
    console.print(table)


@cli.command()
@proto_path_option
@click.argument("name")
def show(proto_path: tuple[str, ...], name: str) -> None:
    """Print a message as schema text with resolved type names."""
    pool = _load_pool(proto_path)
    handle = pool.find_message_by_name(name)
    if handle is None:
        _print_error(f"Message '{name}' not found")
        sys.exit(1)

    click.echo(render_message(pool, handle), nl=False)


@cli.command()
@proto_path_option
@click.argument("name")
def method(proto_path: tuple[str, ...], name: str) -> None:
    """Print the input and output types of an RPC method."""
    pool = _load_pool(proto_path)
    handle = pool.find_method_by_name(name)
    if handle is None:
        _print_error(f"Method '{name}' not found")
        sys.exit(1)

    record = pool.method(handle)
    input_type = query.method_input_type(pool, handle)
    output_type = query.method_output_type(pool, handle)

    table = Table(show_header=False, box=None, padding=(0, 2, 0, 2))
    table.add_column("Label", style="dim")
    table.add_column("Value", style="white")
    table.add_row("Method", query.method_full_name(pool, handle))
    table.add_row(
        "Input",
        ("stream " if record.client_streaming else "")
        + (query.message_full_name(pool, input_type) if input_type else "(unresolved)"),
    )
    table.add_row(
        "Output",
        ("stream " if record.server_streaming else "")
        + (query.message_full_name(pool, output_type) if output_type else "(unresolved)"),
    )
    console.print(table)


@cli.command()
@proto_path_option
def check(proto_path: tuple[str, ...]) -> None:
    """Load and link every schema file; exit with 1 if anything was reported."""
    pool = _load_pool(proto_path)
    problems = len(pool.diagnostics)
    count = pool.for_each_message(lambda _handle: None)

    if problems:
        err_console.print(f"[bold red]{problems} problem(s) found[/bold red]")
        sys.exit(1)
    console.print(f"[green]OK[/green]: {count} messages")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
