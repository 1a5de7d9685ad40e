"""Call schedule parsing: menu choices, clock times and their resolution."""

import re
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

IMMEDIATE = "now"

CLOCK_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})\s?(am|pm)?$", re.IGNORECASE)

# Menu choice -> minutes from now (None means immediately).
RELATIVE_CHOICES: dict[str, int | None] = {
    "1": None,
    "now": None,
    "2": 30,
    "30": 30,
    "3": 60,
    "60": 60,
}
CUSTOM_CHOICES = frozenset({"4", "custom"})


def zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def parse_clock_time(text: str) -> tuple[int, int] | None:
    """Parse "3:30pm", "3:30 PM" or "15:30" into (hour, minute) on a 24h clock."""
    match = CLOCK_TIME_RE.match(text.strip())
    if not match:
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    meridiem = (match.group(3) or "").lower()
    if minute > 59:
        return None

    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    elif hour > 23:
        return None

    return hour, minute


def next_occurrence(hour: int, minute: int, now: datetime, tz: tzinfo) -> datetime:
    """The next time the local clock shows hour:minute, in UTC."""
    local_now = now.astimezone(tz)
    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return candidate.astimezone(timezone.utc)


def is_schedule_choice(text: str) -> bool:
    choice = text.strip().lower()
    return (
        choice in RELATIVE_CHOICES
        or choice in CUSTOM_CHOICES
        or parse_clock_time(choice) is not None
    )


def is_custom_choice(text: str) -> bool:
    return text.strip().lower() in CUSTOM_CHOICES


def resolve_schedule(text: str, now: datetime, tz: tzinfo) -> str | None:
    """Turn a schedule reply into "now" or an absolute ISO-8601 UTC timestamp.

    The custom-time menu entry resolves to None: the time arrives in the
    next reply.
    """
    choice = text.strip().lower()

    if choice in RELATIVE_CHOICES:
        minutes = RELATIVE_CHOICES[choice]
        if minutes is None:
            return IMMEDIATE
        return (now + timedelta(minutes=minutes)).astimezone(timezone.utc).isoformat()

    if choice in CUSTOM_CHOICES:
        return None

    clock = parse_clock_time(choice)
    if clock is None:
        raise ValueError(f"Not a schedule choice: {text!r}")
    return next_occurrence(*clock, now, tz).isoformat()


def scheduled_for(value: str | None, now: datetime) -> datetime:
    """Absolute call time for a resolved schedule value."""
    if value is None:
        raise ValueError("Schedule was never resolved")
    if value == IMMEDIATE:
        return now
    when = datetime.fromisoformat(value)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when


def describe_schedule(value: str | None, tz: tzinfo) -> str:
    """Human-readable schedule for confirmation messages."""
    if value is None or value == IMMEDIATE:
        return "immediately"
    local = scheduled_for(value, datetime.now(timezone.utc)).astimezone(tz)
    clock = local.strftime("%I:%M %p").lstrip("0")
    return f"at {clock} {local.tzname()}"
