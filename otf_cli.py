import datetime
import logging
import shutil
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import click
import requests

from otf_booking.config import ConfigLoader
from otf_booking.models import Booking, Preferences, ScheduledClass
from otf_booking.preferences import PreferencesStore
from otf_booking.service import OTFBookingService, OTFError

IP_LOCATION_URL = "http://ip-api.com/json/"
BOOKINGS_WINDOW_DAYS = 60
STUDIO_COLORS = ["red", "green", "yellow", "blue", "magenta", "cyan", "white"]
SYSTEM_TIMEZONE = "System Local Timezone"
TIMEZONES = [
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "America/Anchorage",
    "Pacific/Honolulu",
    "America/Phoenix",
    "America/Detroit",
    "America/Indiana/Indianapolis",
    "America/Kentucky/Louisville",
    "America/Boise",
]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.option("--log-level", envvar="OTF_LOG_LEVEL", default="WARNING", show_default=True,
              type=click.Choice(LOG_LEVELS, case_sensitive=False))
@click.option("--preferences-path", envvar="OTF_PREFERENCES_PATH", type=click.Path(dir_okay=False),
              help="Preferences file (defaults to the per-user config directory).")
@click.pass_context
def cli(ctx: click.Context, log_level: str, preferences_path: Optional[str]):
    """A CLI client for the OrangeTheory Fitness API."""
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")
    ctx.obj = {"store": PreferencesStore(preferences_path)}


@cli.command()
@click.option("--studio-ids", default="", help="Comma-separated studio IDs (optional if preferred studios are configured).")
@click.pass_obj
def schedules(obj: dict, studio_ids: str):
    """Fetch studio schedules and book a class."""
    preferences = _load_preferences(obj["store"])
    ids = _resolve_studio_ids(studio_ids, preferences)
    zone = _zone(preferences)

    try:
        with _connect() as service:
            schedule = service.get_studios_schedules(ids)
            classes = [c for c in schedule.items if not c.canceled]
            if not classes:
                click.echo("No classes found for the selected studios.")
                return

            _print_classes(classes, zone)
            selected = _choose(classes, "Select a class to book")
            _print_class_details(selected, zone)

            if not click.confirm("Would you like to book this class?"):
                click.echo("Booking cancelled.")
                return

            waitlist = selected.is_full
            if waitlist and not click.confirm("This class is full. Would you like to join the waitlist?"):
                click.echo("Booking cancelled.")
                return

            service.book_class(selected.id, confirmed=False, waitlist=waitlist)
    except (OTFError, ValueError) as e:
        raise click.ClickException(f"Error fetching schedules or booking class: {e}") from e

    click.echo("Successfully added to waitlist!" if waitlist else "Successfully booked the class!")


@cli.group()
def bookings():
    """List and cancel your bookings."""


@bookings.command(name="list")
@click.pass_obj
def list_bookings(obj: dict):
    """List current and upcoming bookings, optionally cancelling one."""
    preferences = _load_preferences(obj["store"])
    zone = _zone(preferences)
    now = datetime.datetime.now(datetime.timezone.utc)
    starts_after = now.replace(hour=0, minute=0, second=0, microsecond=0)
    ends_before = now + datetime.timedelta(days=BOOKINGS_WINDOW_DAYS)

    try:
        with _connect() as service:
            found = service.get_bookings(starts_after, ends_before, include_canceled=True)
            if not found:
                click.echo("No bookings found.")
                return

            active = [b for b in found if not b.canceled]
            if not active:
                click.echo("No active bookings found.")
                return

            click.echo("  0. Just view bookings (no action)")
            for index, booking in enumerate(active, start=1):
                starts_at = _booking_start(booking)
                click.echo(f"{index:>3}. {_format_day(starts_at, zone)} - {booking.booked_class.name} "
                           f"at {booking.booked_class.studio.name} - {_format_time(starts_at, zone)}")

            choice = click.prompt("Select a booking to cancel (or 0 to just view)",
                                  type=click.IntRange(0, len(active)))
            if choice == 0:
                _print_bookings(found, zone)
                return

            selected = active[choice - 1]
            _print_booking_details(selected, zone)
            if not click.confirm("Are you sure you want to cancel this booking?"):
                click.echo("Cancellation aborted.")
                return

            service.cancel_booking(selected.id)
    except (OTFError, ValueError) as e:
        raise click.ClickException(f"Error managing bookings: {e}") from e

    click.echo(f"Successfully canceled booking for {selected.booked_class.name} at {selected.booked_class.studio.name}")


@bookings.command(name="cancel")
@click.argument("booking_id")
def cancel_booking(booking_id: str):
    """Cancel a booking by ID. Use 'bookings list' to see your booking IDs."""
    if not click.confirm(f"Are you sure you want to cancel booking {booking_id}?"):
        click.echo("Cancellation aborted.")
        return

    try:
        with _connect() as service:
            service.cancel_booking(booking_id)
    except (OTFError, ValueError) as e:
        raise click.ClickException(f"Error canceling booking: {e}") from e

    click.echo(f"Successfully canceled booking {booking_id}")


@cli.command()
def filters():
    """Show the class-type filters offered by the API."""
    try:
        with _connect() as service:
            result = service.get_class_type_filter()
    except (OTFError, ValueError) as e:
        raise click.ClickException(f"Error fetching class filters: {e}") from e

    if not result.items:
        click.echo("No class filters available.")
        return

    for item in result.items:
        click.echo(click.style(item.display_name or item.name, fg="cyan"))
        for value in item.values:
            click.echo(f"   {value.display_name or value.value} ({value.value})")


@cli.group()
def configure():
    """Configure preferred studios and timezone."""


@configure.command(name="studios")
@click.option("--latitude", type=float, help="Search latitude. Detected from your IP when omitted.")
@click.option("--longitude", type=float, help="Search longitude. Detected from your IP when omitted.")
@click.option("--distance", type=float, help="Search radius in miles.")
@click.pass_obj
def configure_studios(obj: dict, latitude: Optional[float], longitude: Optional[float], distance: Optional[float]):
    """Search studios near you and save your preferred ones."""
    store = obj["store"]

    if latitude is not None and longitude is not None:
        source = "provided"
    else:
        located = _locate_by_ip()
        if located:
            latitude, longitude, source = located
        else:
            latitude = click.prompt("Enter your latitude (e.g., 40.7128)", type=float)
            longitude = click.prompt("Enter your longitude (e.g., -74.0060)", type=float)
            source = "manually entered"

    if distance is None:
        distance = click.prompt("Enter search distance in miles (e.g., 10)", type=float)

    logging.info(f"Using location {source}: {latitude:.6f}, {longitude:.6f}")
    try:
        with _connect() as service:
            result = service.list_studios(latitude, longitude, distance)
    except (OTFError, ValueError) as e:
        raise click.ClickException(f"Error fetching studios: {e}") from e

    studios = result.data.studios
    if not studios:
        click.echo("No studios found for the given location and distance. Try increasing the distance.")
        return

    for index, studio in enumerate(studios, start=1):
        click.echo(f"{index:>3}. {studio.studio_name} (ID: {studio.studio_uuid}, {studio.distance:.2f} miles)")

    indices = click.prompt(
        "Select your preferred studios (comma-separated numbers, blank for none)",
        default="",
        show_default=False,
        value_proc=lambda text: _parse_selection(text, len(studios)),
    )
    selected_ids = [studios[i - 1].studio_uuid for i in indices]
    if not selected_ids:
        click.echo("No studios selected. Preferred studios configuration remains unchanged.")
        return

    preferences = _load_preferences(store)
    preferences.preferred_studio_ids = selected_ids
    store.save(preferences)
    click.echo(f"Preferred studios saved: {', '.join(selected_ids)}")


@configure.command(name="timezone")
@click.pass_obj
def configure_timezone(obj: dict):
    """Set the timezone used to display class times."""
    store = obj["store"]
    preferences = _load_preferences(store)

    options = list(TIMEZONES)
    if preferences.timezone and preferences.timezone not in options:
        options.append(preferences.timezone)
    options.append(SYSTEM_TIMEZONE)

    current = preferences.timezone or SYSTEM_TIMEZONE
    for index, name in enumerate(options, start=1):
        click.echo(f"{index:>3}. {name}")

    choice = click.prompt("Select your preferred timezone", type=click.IntRange(1, len(options)),
                          default=options.index(current) + 1)
    selected = options[choice - 1]
    preferences.timezone = "" if selected == SYSTEM_TIMEZONE else selected
    store.save(preferences)

    if preferences.timezone:
        click.echo(f"Timezone set to: {preferences.timezone}")
    else:
        click.echo("Timezone set to use system local timezone.")


def _connect() -> OTFBookingService:
    config = ConfigLoader().load()
    service = OTFBookingService(config)
    try:
        service.authenticate(config.username, config.password)
    except OTFError:
        service.close()
        raise
    return service


def _load_preferences(store: PreferencesStore) -> Preferences:
    try:
        return store.load()
    except ValueError as e:
        logging.warning(f"Could not load preferences, using defaults: {e}")
        return Preferences()


def _resolve_studio_ids(studio_ids: str, preferences: Preferences) -> List[str]:
    if studio_ids:
        return [s.strip() for s in studio_ids.split(",") if s.strip()]
    if preferences.preferred_studio_ids:
        logging.info(f"Using preferred studio IDs from configuration: {', '.join(preferences.preferred_studio_ids)}")
        return preferences.preferred_studio_ids
    raise click.UsageError(
        "No studio IDs provided via --studio-ids and no preferred studios configured. "
        "Run 'otf-cli configure studios' or provide --studio-ids."
    )


def _locate_by_ip() -> Optional[Tuple[float, float, str]]:
    try:
        response = requests.get(IP_LOCATION_URL, timeout=5)
        response.raise_for_status()
        data = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        logging.warning(f"Could not detect location from IP: {e}")
        return None

    if data.get("lat") is None or data.get("lon") is None:
        logging.warning(f"IP location response missing coordinates: {data}")
        return None
    source = f"detected from your IP in {data.get('city')}, {data.get('regionName')}, {data.get('country')}"
    return float(data["lat"]), float(data["lon"]), source


def _parse_selection(text: str, count: int) -> List[int]:
    indices = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit() or not 1 <= int(part) <= count:
            raise click.BadParameter(f"{part!r} is not a number between 1 and {count}")
        if int(part) not in indices:
            indices.append(int(part))
    return indices


def _choose(items: list, message: str):
    choice = click.prompt(message, type=click.IntRange(1, len(items)))
    return items[choice - 1]


def _zone(preferences: Preferences) -> Optional[ZoneInfo]:
    if not preferences.timezone:
        return None
    try:
        return ZoneInfo(preferences.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logging.warning(f"Invalid timezone {preferences.timezone}, using local timezone")
        return None


def _format_time(value: datetime.datetime, zone: Optional[ZoneInfo]) -> str:
    local = value.astimezone(zone)
    return f"{local.hour % 12 or 12}:{local:%M %p} {local.tzname()}"


def _format_day(value: datetime.datetime, zone: Optional[ZoneInfo]) -> str:
    local = value.astimezone(zone)
    return f"{local:%a %b} {local.day}"


def _booking_start(booking: Booking) -> datetime.datetime:
    return booking.booked_class.starts_at or datetime.datetime.now(datetime.timezone.utc)


def _pad(text: str, width: int) -> str:
    return text[:width].ljust(width)


def _print_classes(classes: List[ScheduledClass], zone: Optional[ZoneInfo]) -> None:
    colors: Dict[str, str] = {}
    name_width = max(len(c.name) for c in classes)
    start_width = max(len(_format_time(c.starts_at, zone)) for c in classes)
    end_width = max(len(_format_time(c.ends_at, zone)) for c in classes)
    studio_width = max(10, shutil.get_terminal_size((80, 24)).columns - name_width - start_width - end_width - 12)

    last_day = ""
    for index, scheduled in enumerate(classes, start=1):
        day = _format_day(scheduled.starts_at, zone)
        if day != last_day:
            click.echo(f"=== {day} ===")
            last_day = day

        color = colors.setdefault(scheduled.studio.id, STUDIO_COLORS[len(colors) % len(STUDIO_COLORS)])
        studio = click.style(_pad(scheduled.studio.name, studio_width).rstrip(), fg=color)
        click.echo(
            f"{index:>3}. {_pad(scheduled.name, name_width)}  "
            f"{_pad(_format_time(scheduled.starts_at, zone), start_width)}  "
            f"{_pad(_format_time(scheduled.ends_at, zone), end_width)}  {studio}"
        )


def _print_class_details(scheduled: ScheduledClass, zone: Optional[ZoneInfo]) -> None:
    click.echo("\nSelected Class Details:")
    click.echo(f"Class: {scheduled.name}")
    click.echo(f"Studio: {scheduled.studio.name}")
    click.echo(f"Time: {_format_time(scheduled.starts_at, zone)} to {_format_time(scheduled.ends_at, zone)}")
    click.echo(f"Availability: {scheduled.booking_capacity}/{scheduled.max_capacity} spots")
    click.echo(f"Class ID: {scheduled.id}")


def _print_booking_details(booking: Booking, zone: Optional[ZoneInfo]) -> None:
    click.echo("\nSelected Booking:")
    click.echo(f"Class: {booking.booked_class.name}")
    click.echo(f"Studio: {booking.booked_class.studio.name}")
    click.echo(f"Time: {_format_time(_booking_start(booking), zone)}")
    click.echo(f"Booking ID: {booking.id}")


def _print_bookings(found: List[Booking], zone: Optional[ZoneInfo]) -> None:
    status_colors = {"Canceled": "red", "Late Canceled": "yellow", "Booked": "green"}
    click.echo(f"\nYour Bookings ({len(found)} total):\n")

    last_day = ""
    for booking in found:
        starts_at = _booking_start(booking)
        day = _format_day(starts_at, zone)
        if day != last_day:
            if last_day:
                click.echo()
            click.echo(f"=== {day} ===")
            last_day = day

        click.echo(click.style(booking.booked_class.name, fg="cyan"))
        click.echo(f"   Studio: {booking.booked_class.studio.name}")
        click.echo(f"   Time: {_format_time(starts_at, zone)}")
        click.echo(f"   Status: {click.style(booking.status, fg=status_colors[booking.status])}")
        click.echo(f"   Booking ID: {booking.id}")
        click.echo()


if __name__ == "__main__":
    cli()
