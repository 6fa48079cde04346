"""Command line interface for ccIndex.

Operator front end that drives the index engine end to end: upload and
inspect torrent files, moderate entries and browse listings.
"""

from __future__ import annotations

import functools
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import click
from rich.console import Console
from rich.table import Table

from ccindex.config.config import ConfigManager
from ccindex.core.info_hash import from_hex, to_hex
from ccindex.models import (
    Config,
    EntrySummary,
    IndexEntry,
    ListingFilter,
    ListingSort,
    LogLevel,
    ModerationState,
    Page,
    Principal,
    SortField,
    SortOrder,
)
from ccindex.services.auth import RoleAuthContext
from ccindex.services.ingest import IngestService
from ccindex.services.listing import ListingEngine
from ccindex.services.moderation import ModerationStateMachine
from ccindex.services.taxonomy import StaticTaxonomy
from ccindex.storage.index_store import IndexStore
from ccindex.utils.exceptions import CCIndexError
from ccindex.utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


@dataclass
class IndexServices:
    """Services wired from one configuration."""

    config: Config
    taxonomy: StaticTaxonomy
    store: IndexStore
    ingest: IngestService
    listing: ListingEngine


def build_services(config: Config, database: str | None = None) -> IndexServices:
    """Wire the index engine from configuration."""
    taxonomy = StaticTaxonomy(config.taxonomy)
    store = IndexStore(
        database_path=database,
        config=config.storage,
        taxonomy=taxonomy,
        auth=RoleAuthContext(config.auth),
        state_machine=ModerationStateMachine(config.moderation),
    )
    return IndexServices(
        config=config,
        taxonomy=taxonomy,
        store=store,
        ingest=IngestService(store, config.limits, config.tracker),
        listing=ListingEngine(store, config.listing),
    )


def _get_services(ctx: click.Context) -> IndexServices:
    obj = ctx.ensure_object(dict)
    if "services" not in obj:
        manager = ConfigManager(obj.get("config"), configure_logging=False)
        cfg = manager.config
        if obj.get("verbosity", 0) >= 2:
            cfg.observability.log_level = LogLevel.DEBUG
        elif obj.get("verbosity", 0) == 1:
            cfg.observability.log_level = LogLevel.INFO
        setup_logging(cfg.observability)
        obj["services"] = build_services(cfg, obj.get("database"))
    return obj["services"]


def _get_principal(ctx: click.Context) -> Principal | None:
    obj = ctx.ensure_object(dict)
    if not obj.get("user"):
        return None
    return Principal(user_id=obj["user"], roles=frozenset(obj.get("roles", ())))


def _require_principal(ctx: click.Context) -> Principal:
    principal = _get_principal(ctx)
    if principal is None:
        msg = "This command requires --user"
        raise click.UsageError(msg)
    return principal


def _resolve_category(services: IndexServices, value: str) -> int:
    by_name = services.taxonomy.category_by_name(value)
    if by_name is not None:
        return by_name
    try:
        return int(value)
    except ValueError:
        msg = f"Unknown category: {value}"
        raise click.BadParameter(msg, param_hint="--category") from None


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report index errors as click errors instead of tracebacks."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CCIndexError as e:
            logger.debug("Command %s failed", func.__name__, exc_info=True)
            Console(stderr=True).print(f"[red]Error: {e.message}[/red]")
            raise click.ClickException(e.message) from e

    return wrapper


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if value < 1024 or unit == "TiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{size} B"  # pragma: no cover


def _format_time(timestamp: float) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(timestamp))


def _print_entry(console: Console, services: IndexServices, entry: IndexEntry) -> None:
    table = Table(title=f"Entry {entry.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    category = services.taxonomy.category_name(entry.category_id)
    table.add_row("Title", entry.title)
    table.add_row("Name", entry.name)
    table.add_row("Info Hash", entry.info_hash_hex)
    table.add_row("State", entry.moderation_state.value)
    table.add_row("Category", category or str(entry.category_id))
    table.add_row("Tags", ", ".join(sorted(entry.tags)) or "-")
    table.add_row("Size", _format_size(entry.total_length))
    table.add_row("Files", str(entry.file_count))
    table.add_row("Uploader", entry.uploader_id)
    if entry.supersedes_id is not None:
        table.add_row("Replaces", str(entry.supersedes_id))
    if entry.superseded:
        table.add_row("Superseded", "yes")
    table.add_row("Created", _format_time(entry.created_at))
    if entry.description:
        table.add_row("Description", entry.description)
    console.print(table)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--database",
    "-D",
    type=click.Path(),
    help="Index database path (overrides storage.database_path)",
)
@click.option("--user", "-u", envvar="CCINDEX_USER", help="Acting user id")
@click.option(
    "--role",
    "-r",
    "roles",
    multiple=True,
    help="Role of the acting user (repeatable)",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: info, -vv: debug)",
)
@click.pass_context
def cli(ctx, config, database, user, roles, verbose):
    """ccIndex - torrent metadata index."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["database"] = database
    ctx.obj["user"] = user
    ctx.obj["roles"] = roles
    ctx.obj["verbosity"] = verbose


@cli.command()
@click.pass_context
@handle_errors
def init(ctx):
    """Create the index database."""
    services = _get_services(ctx)
    services.store.initialize()
    Console().print(
        f"[green]Index ready at {services.store.database_path}[/green]"
    )


@cli.command()
@click.argument("torrent_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
@handle_errors
def inspect(ctx, torrent_file):
    """Validate a torrent file and show its metadata without storing it."""
    services = _get_services(ctx)
    descriptor, info_hash = services.ingest.inspect(Path(torrent_file).read_bytes())

    console = Console()
    table = Table(title="Torrent")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Name", descriptor.name)
    table.add_row("Info Hash", to_hex(info_hash))
    table.add_row("Size", _format_size(descriptor.total_length))
    table.add_row("Files", str(descriptor.file_count))
    table.add_row("Pieces", str(descriptor.num_pieces))
    table.add_row("Piece Length", _format_size(descriptor.piece_length))
    table.add_row("Private", "yes" if descriptor.is_private else "no")
    if descriptor.announce:
        table.add_row("Announce", descriptor.announce)
    if descriptor.comment:
        table.add_row("Comment", descriptor.comment)
    console.print(table)

    if descriptor.is_multi_file:
        files = Table(title="Files")
        files.add_column("Path", style="cyan")
        files.add_column("Size", justify="right")
        for f in descriptor.files:
            files.add_row(f.full_path, _format_size(f.length))
        console.print(files)


def _upload_options(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.option("--description", default="", help="Listing description")(func)
    func = click.option("--title", "-t", help="Listing title (defaults to the torrent name)")(func)
    func = click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")(func)
    return func


@cli.command()
@click.argument("torrent_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--category", "-C", required=True, help="Category name or id")
@_upload_options
@click.pass_context
@handle_errors
def submit(ctx, torrent_file, category, tags, title, description):
    """Upload a torrent file as a pending entry."""
    services = _get_services(ctx)
    principal = _require_principal(ctx)
    raw = Path(torrent_file).read_bytes()
    if not title:
        title = services.ingest.inspect(raw)[0].name
    entry = services.ingest.ingest(
        raw,
        principal,
        _resolve_category(services, category),
        tags=tags,
        title=title,
        description=description,
    )
    Console().print(
        f"[green]Stored entry {entry.id} ({entry.info_hash_hex}) "
        f"as {entry.moderation_state.value}[/green]"
    )


@cli.command()
@click.argument("torrent_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("previous_id", type=int)
@click.option("--category", "-C", help="Category name or id (defaults to the previous entry's)")
@_upload_options
@click.pass_context
@handle_errors
def resubmit(ctx, torrent_file, previous_id, category, tags, title, description):
    """Re-upload a rejected entry."""
    services = _get_services(ctx)
    principal = _require_principal(ctx)
    previous = services.ingest.get_visible(previous_id, principal)
    entry = services.ingest.ingest(
        Path(torrent_file).read_bytes(),
        principal,
        _resolve_category(services, category) if category else previous.category_id,
        tags=tags or previous.tags,
        title=title or previous.title,
        description=description or previous.description,
        resubmit_of=previous_id,
    )
    Console().print(
        f"[green]Stored entry {entry.id} replacing {previous_id} "
        f"as {entry.moderation_state.value}[/green]"
    )


@cli.command()
@click.argument("entry")
@click.pass_context
@handle_errors
def show(ctx, entry):
    """Show an entry by id or info hash."""
    services = _get_services(ctx)
    principal = _get_principal(ctx)
    if entry.isdigit():
        found = services.ingest.get_visible(int(entry), principal)
    else:
        found = services.store.get_by_hash(from_hex(entry))
        found = services.ingest.get_visible(found.id, principal)
    _print_entry(Console(), services, found)


def _summary_row(services: IndexServices, item: EntrySummary) -> list[str]:
    category = services.taxonomy.category_name(item.category_id)
    return [
        str(item.id),
        item.title,
        category or str(item.category_id),
        ", ".join(item.tags),
        _format_size(item.total_length),
        item.uploader_id,
        item.moderation_state.value,
        _format_time(item.created_at),
    ]


@cli.command("list")
@click.option("--category", "-C", "categories", multiple=True, help="Category name or id (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable, any matches)")
@click.option("--uploader", help="Uploader user id")
@click.option("--search", "-s", help="Text in title or description")
@click.option(
    "--sort",
    type=click.Choice([f.value for f in SortField]),
    default=SortField.CREATED_AT.value,
    show_default=True,
)
@click.option(
    "--order",
    type=click.Choice([o.value for o in SortOrder]),
    default=SortOrder.DESC.value,
    show_default=True,
)
@click.option("--offset", type=int, default=0, show_default=True)
@click.option("--limit", type=int, help="Page size")
@click.option(
    "--state",
    "states",
    multiple=True,
    type=click.Choice([s.value for s in ModerationState]),
    help="Moderation states to include (moderators only)",
)
@click.pass_context
@handle_errors
def list_entries(ctx, categories, tags, uploader, search, sort, order, offset, limit, states):
    """List catalog entries."""
    services = _get_services(ctx)
    result = services.listing.list(
        ListingFilter(
            category_ids=frozenset(_resolve_category(services, c) for c in categories),
            tags=frozenset(tags),
            uploader_id=uploader,
            text=search,
        ),
        ListingSort(key=SortField(sort), order=SortOrder(order)),
        Page(offset=offset, limit=limit),
        principal=_get_principal(ctx),
        include_states=[ModerationState(s) for s in states] or None,
    )

    table = Table(title=f"Entries ({result.total_count} total)")
    for column in ("ID", "Title", "Category", "Tags", "Size", "Uploader", "State", "Created"):
        table.add_column(column)
    for item in result.items:
        table.add_row(*_summary_row(services, item))
    console = Console()
    console.print(table)
    end = result.offset + len(result.items)
    console.print(f"Showing {result.offset + 1 if result.items else 0}-{end} of {result.total_count}")


@cli.command()
@click.argument("entry_id", type=int)
@click.pass_context
@handle_errors
def approve(ctx, entry_id):
    """Approve a pending entry."""
    services = _get_services(ctx)
    entry = services.store.transition_state(
        entry_id, ModerationState.APPROVED, _require_principal(ctx)
    )
    Console().print(f"[green]Entry {entry.id} approved[/green]")


@cli.command()
@click.argument("entry_id", type=int)
@click.option("--reason", help="Reason shown to the uploader")
@click.pass_context
@handle_errors
def reject(ctx, entry_id, reason):
    """Reject a pending entry."""
    services = _get_services(ctx)
    entry = services.store.transition_state(
        entry_id, ModerationState.REJECTED, _require_principal(ctx), reason=reason
    )
    Console().print(f"[yellow]Entry {entry.id} rejected[/yellow]")


@cli.command()
@click.argument("entry_id", type=int)
@click.option("--title", "-t", help="New title")
@click.option("--description", help="New description")
@click.option("--category", "-C", help="New category name or id")
@click.option("--tag", "tags", multiple=True, help="Replace tags (repeatable)")
@click.option("--clear-tags", is_flag=True, help="Remove all tags")
@click.pass_context
@handle_errors
def edit(ctx, entry_id, title, description, category, tags, clear_tags):
    """Edit an entry's title, description, category or tags."""
    services = _get_services(ctx)
    principal = _require_principal(ctx)
    if title is None and description is None and category is None and not tags and not clear_tags:
        msg = "Nothing to change"
        raise click.UsageError(msg)
    entry = None
    if title is not None or description is not None:
        entry = services.store.update_details(
            entry_id, principal, title=title, description=description
        )
    if category is not None or tags or clear_tags:
        entry = services.store.update_category_tags(
            entry_id,
            principal,
            category_id=_resolve_category(services, category) if category else None,
            tags=() if clear_tags else (tags or None),
        )
    _print_entry(Console(), services, entry)


@cli.command()
@click.argument("entry_id", type=int)
@click.pass_context
@handle_errors
def delete(ctx, entry_id):
    """Delete an entry."""
    services = _get_services(ctx)
    services.store.delete(entry_id, _require_principal(ctx))
    Console().print(f"[green]Entry {entry_id} deleted[/green]")


@cli.command()
@click.argument("entry_id", type=int)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Output file (default: stdout)")
@click.option("--announce", help="Announce URL to inject (defaults to tracker.announce_url)")
@click.pass_context
@handle_errors
def export(ctx, entry_id, output, announce):
    """Write an entry's torrent file."""
    services = _get_services(ctx)
    data = services.ingest.export_torrent(entry_id, _get_principal(ctx), announce)
    if output:
        Path(output).write_bytes(data)
        Console().print(f"[green]Wrote {len(data)} bytes to {output}[/green]")
    else:
        click.get_binary_stream("stdout").write(data)


@cli.command()
@click.argument("entry_id", type=int)
@click.pass_context
@handle_errors
def history(ctx, entry_id):
    """Show the moderation history of an entry."""
    services = _get_services(ctx)
    services.ingest.get_visible(entry_id, _get_principal(ctx))
    records = services.store.get_moderation_history(entry_id)
    console = Console()
    if not records:
        console.print(f"[yellow]No moderation history for entry {entry_id}[/yellow]")
        return
    table = Table(title=f"Moderation history of entry {entry_id}")
    for column in ("Time", "From", "To", "Moderator", "Reason"):
        table.add_column(column)
    for record in records:
        table.add_row(
            _format_time(record.created_at),
            record.from_state.value,
            record.to_state.value,
            record.actor_id,
            record.reason or "",
        )
    console.print(table)


@cli.command()
@click.argument("entry_id", type=int)
@click.pass_context
@handle_errors
def magnet(ctx, entry_id):
    """Print a magnet link for an entry."""
    services = _get_services(ctx)
    click.echo(services.ingest.magnet_link(entry_id, _get_principal(ctx)))


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
