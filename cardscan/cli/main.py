"""CLI entry point for the business card scanner.

Usage:
    cardscan serve --port 8000
    cardscan contacts add --name "Jane Doe" --company "Acme" --event <event-id>
    cardscan contacts list
    cardscan events add "Trade Show"
    cardscan export --format csv --event <event-id> --output cards.csv
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from cardscan.config import settings
from cardscan.models import ContactDraft, EventCreate
from cardscan.services.capture import ContactValidationError, new_contact_from_draft
from cardscan.services.container import Services, build_services
from cardscan.services.event_registry import SentinelEventError

console = Console()


def _setup_logging():
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _services(ctx: click.Context) -> Services:
    return ctx.obj["services"]


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Capture, enrich, organise and export business card contacts."""
    if verbose:
        settings.log_level = "DEBUG"
    _setup_logging()
    ctx.ensure_object(dict)
    if "services" not in ctx.obj:
        ctx.obj["services"] = build_services()


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("cardscan.api:app", host=host, port=port)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

@cli.group()
def contacts():
    """Manage stored contacts."""


@contacts.command("list")
@click.option("--event", "event_ids", multiple=True, help="Only contacts in these events")
@click.pass_context
def list_contacts(ctx: click.Context, event_ids: tuple[str, ...]):
    services = _services(ctx)

    async def _run():
        await services.events.load()
        items = await services.contacts.list()
        if event_ids:
            items = services.contacts.contacts_for_events(set(event_ids), services.events.resolve_event_id)
        return items

    items = asyncio.run(_run())
    table = Table(title=f"Contacts ({len(items)})")
    for column in ("ID", "Name", "Company", "Email", "Event", "LinkedIn"):
        table.add_column(column)
    for c in items:
        table.add_row(
            c.id,
            c.name or "",
            c.company or "",
            c.email or "",
            services.events.get_by_id(c.event_id).name,
            "yes" if c.linkedin_url else "",
        )
    console.print(table)


@contacts.command("add")
@click.option("--name", "-n", default=None)
@click.option("--title", "-t", default=None)
@click.option("--company", "-c", default=None)
@click.option("--email", "-e", default=None)
@click.option("--phone", default=None)
@click.option("--office-phone", default=None)
@click.option("--cell-phone", default=None)
@click.option("--fax-phone", default=None)
@click.option("--website", default=None)
@click.option("--address", default=None)
@click.option("--notes", default=None)
@click.option("--event", "event_id", default=None, help="Event id (default: Non-Categorized)")
@click.option("--category", "category_ids", multiple=True, help="Lead category id (repeatable)")
@click.pass_context
def add_contact(ctx: click.Context, event_id: str | None, category_ids: tuple[str, ...], **fields):
    """Add a contact; missing details are looked up before saving."""
    services = _services(ctx)
    draft = ContactDraft(category_ids=list(category_ids), **fields)
    try:
        contact = new_contact_from_draft(draft, event_id=event_id)
    except ContactValidationError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    with console.status("[bold green]Saving and enriching contact..."):
        stored = asyncio.run(services.contacts.add(contact))

    console.print(f"[bold green]Saved[/bold green] {stored.name or stored.company} ({stored.id})")
    for label, value in (
        ("LinkedIn", stored.linkedin_url),
        ("Photo", stored.profile_photo_url),
        ("Email", stored.email),
        ("Office", stored.office_phone),
        ("Cell", stored.cell_phone),
        ("Fax", stored.fax_phone),
    ):
        if value:
            console.print(f"  [bold]{label}:[/bold] {value}")


@contacts.command("delete")
@click.argument("contact_id")
@click.pass_context
def delete_contact(ctx: click.Context, contact_id: str):
    services = _services(ctx)
    if not asyncio.run(services.contacts.delete(contact_id)):
        console.print(f"[red]No contact with id {contact_id}[/red]")
        sys.exit(1)
    console.print(f"Deleted {contact_id}")


# ---------------------------------------------------------------------------
# Events / categories
# ---------------------------------------------------------------------------

@cli.group()
def events():
    """Manage events."""


@events.command("list")
@click.pass_context
def list_events(ctx: click.Context):
    services = _services(ctx)
    items = asyncio.run(services.events.list())
    table = Table(title="Events")
    for column in ("ID", "Name", "Color", "Created"):
        table.add_column(column)
    for e in items:
        table.add_row(e.id, e.name, e.color, e.created_at)
    console.print(table)


@events.command("add")
@click.argument("name")
@click.option("--description", "-d", default=None)
@click.option("--color", default=None, help="Hex colour (default: next palette colour)")
@click.pass_context
def add_event(ctx: click.Context, name: str, description: str | None, color: str | None):
    services = _services(ctx)
    try:
        fields = EventCreate(name=name, description=description, color=color)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    event = asyncio.run(services.events.add(fields))
    console.print(f"[bold green]Created event[/bold green] {event.name} ({event.id}, {event.color})")


@events.command("delete")
@click.argument("event_id")
@click.pass_context
def delete_event(ctx: click.Context, event_id: str):
    services = _services(ctx)
    try:
        deleted = asyncio.run(services.events.delete(event_id))
    except SentinelEventError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)
    if not deleted:
        console.print(f"[red]No event with id {event_id}[/red]")
        sys.exit(1)
    console.print(f"Deleted event {event_id}")


@cli.group()
def categories():
    """Manage lead categories."""


@categories.command("list")
@click.pass_context
def list_categories(ctx: click.Context):
    services = _services(ctx)
    items = asyncio.run(services.categories.list())
    table = Table(title="Lead categories")
    for column in ("ID", "Title", "Description", "Color"):
        table.add_column(column)
    for c in items:
        table.add_row(c.id, c.title, c.description, c.color)
    console.print(table)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

@cli.command("export")
@click.option("--format", "-f", "fmt", type=click.Choice(["csv", "json"]), default="csv", show_default=True)
@click.option("--event", "event_ids", multiple=True, help="Only contacts in these events")
@click.option("--output", "-o", type=click.Path(dir_okay=False, writable=True), default=None)
@click.pass_context
def export(ctx: click.Context, fmt: str, event_ids: tuple[str, ...], output: str | None):
    """Export contacts as CSV or JSON."""
    services = _services(ctx)

    async def _run() -> str:
        await services.events.load()
        items = await services.contacts.list()
        if fmt == "json":
            return services.exporter.to_json(items, event_ids)
        return services.exporter.to_csv(items, event_ids)

    content = asyncio.run(_run())
    if output:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(content)
        console.print(f"[bold green]{fmt.upper()}:[/bold green] {output}")
    else:
        click.echo(content)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
