"""
Main CLI application using Typer.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, NoReturn, Optional, Annotated

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.config_source import ConfigCalendarSource
from ..adapters.memory_store import InMemoryBookingStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import SchedulingError, SlotNoLongerAvailable
from ..domain.models import BookingStatus, format_minute, parse_clock_time, SlotSummary
from ..domain.timezone import TimezoneNormalizer
from ..services.scheduling import SchedulingService, parse_local_date

app = typer.Typer(
    name="bookingengine",
    help="Query bookable slots and calendar layouts for service businesses",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
DateOption = Annotated[
    Optional[str],
    typer.Option("--date", help="Local date (YYYY-MM-DD). Defaults to today."),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Print JSON instead of a table.")]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
):
    """
    Scheduling & availability engine.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def _load(config_file: Optional[Path]):
    """Load config, store and service for a command."""
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)
    data_path = config.get_data_file_path(config_path)
    normalizer = TimezoneNormalizer(config.timezone)
    store = InMemoryBookingStore.from_json_file(data_path, normalizer)
    service = SchedulingService(
        booking_store=store,
        config_source=ConfigCalendarSource(config),
        normalizer=normalizer,
        booking_horizon_days=config.booking_horizon_days,
    )
    return config, store, data_path, service


def _resolve_date(config: AppConfig, date_option: Optional[str]):
    if date_option:
        return parse_local_date(date_option)
    return pendulum.now(config.timezone).date()


def _fail(error: Exception) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


@app.command()
def slots(
    resource: Annotated[str, typer.Argument(help="Resource id or name")],
    config_file: ConfigOption = None,
    date: DateOption = None,
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Service duration in minutes")] = None,
    only_available: Annotated[bool, typer.Option("--available", help="Show bookable slots only.")] = False,
    as_json: JsonOption = False,
):
    """
    List the slots of a day with their availability.

    Examples:

        bookingengine slots ana --date 2024-11-25 --duration 45

        bookingengine slots ana --available --json
    """
    try:
        config, _, _, service = _load(config_file)
        resource_id = config.resolve_resource(resource)
        day = _resolve_date(config, date)
        verdicts = asyncio.run(service.get_available_slots(resource_id, day, duration))
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    shown = [v for v in verdicts if v.available] if only_available else verdicts

    if as_json:
        console.print_json(json.dumps([v.to_dict() for v in shown]))
        return

    if not verdicts:
        console.print(f"[yellow]⚠ No slots for {resource_id} on {day}.[/yellow]")
        return

    table = Table(title=f"Slots for {resource_id} on {day}", show_header=True, header_style="bold cyan")
    table.add_column("Time", style="bold")
    table.add_column("Until", style="dim")
    table.add_column("Status")

    for verdict in shown:
        state = "[green]available[/green]" if verdict.available else f"[red]{verdict.reason.value}[/red]"
        table.add_row(verdict.label, format_minute(verdict.window.end_minute), state)

    summary = SlotSummary.from_verdicts(verdicts)
    console.print()
    console.print(table)
    console.print(f"  {summary.available} available / {summary.unavailable} unavailable\n")


@app.command()
def layout(
    resources: Annotated[Optional[List[str]], typer.Argument(help="Resource ids or names. Defaults to all.")] = None,
    config_file: ConfigOption = None,
    date: DateOption = None,
    include_cancelled: Annotated[bool, typer.Option("--include-cancelled", help="Render cancelled bookings too.")] = False,
    as_json: JsonOption = False,
):
    """
    Show the column layout of a day's bookings.
    """
    try:
        config, _, _, service = _load(config_file)
        if resources:
            resource_ids = [config.resolve_resource(r) for r in resources]
        else:
            resource_ids = [r.id for r in config.resources]
        day = _resolve_date(config, date)
        assignments = asyncio.run(service.get_day_layout(resource_ids, day, include_cancelled))
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if as_json:
        console.print_json(json.dumps([a.to_dict() for a in assignments]))
        return

    if not assignments:
        console.print(f"[yellow]No bookings on {day}.[/yellow]")
        return

    table = Table(title=f"Layout on {day}", show_header=True, header_style="bold cyan")
    table.add_column("Booking", style="bold yellow")
    table.add_column("Column", justify="right")
    table.add_column("Columns", justify="right")
    table.add_column("Width", justify="right", style="dim")

    for assignment in assignments:
        table.add_row(
            assignment.booking_id,
            str(assignment.column_index),
            str(assignment.total_columns),
            f"{assignment.width_fraction():.0%}",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def book(
    resource: Annotated[str, typer.Argument(help="Resource id or name")],
    time: Annotated[str, typer.Option("--time", "-t", help="Local start time (HH:MM)")],
    duration: Annotated[int, typer.Option("--duration", "-d", help="Service duration in minutes")],
    config_file: ConfigOption = None,
    date: DateOption = None,
    confirm: Annotated[bool, typer.Option("--confirm", help="Create the booking as confirmed.")] = False,
):
    """
    Book a slot and save it to the data file.
    """
    try:
        config, store, data_path, service = _load(config_file)
        resource_id = config.resolve_resource(resource)
        day = _resolve_date(config, date)
        initial_status = BookingStatus.CONFIRMED if confirm else BookingStatus.PENDING
        booking = asyncio.run(
            service.book_slot(resource_id, day, parse_clock_time(time), duration, status=initial_status)
        )
        store.save_json_file(data_path)
    except SlotNoLongerAvailable as e:
        console.print(f"[bold red]Slot taken:[/bold red] {e}")
        console.print("Run [bold]slots[/bold] again and pick another time.")
        raise typer.Exit(1)
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"\n[green]✓ Booking {booking.id} created ({booking.status.value}).[/green]\n")


@app.command()
def status(
    booking_id: Annotated[str, typer.Argument(help="Booking id")],
    new_status: Annotated[BookingStatus, typer.Argument(help="Target status")],
    config_file: ConfigOption = None,
):
    """
    Move a booking to another status (confirm, complete, cancel, reinstate).
    """
    try:
        _, store, data_path, service = _load(config_file)
        booking = asyncio.run(service.change_status(booking_id, new_status))
        store.save_json_file(data_path)
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"\n[green]✓ Booking {booking.id} is now {booking.status.value}.[/green]\n")


@app.command()
def resources(config_file: ConfigOption = None):
    """
    List all configured resources and their opening hours.
    """
    try:
        config = AppConfig.load_from_yaml(config_file or get_default_config_path())
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    if not config.resources:
        console.print("[yellow]No resources defined in the config file.[/yellow]")
        return

    table = Table(title="Configured resources", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="bold yellow")
    table.add_column("Name")
    table.add_column("Hours", style="dim")

    for resource in config.resources:
        settings = resource.calendar or config.defaults
        table.add_row(resource.id, resource.display_name(), f"{settings.open_time} - {settings.close_time}")

    console.print()
    console.print(table)
    console.print()


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]bookingengine[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
