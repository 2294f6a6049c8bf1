"""Convert respawn offsets to absolute times and back into remaining-time text."""
import re
from datetime import datetime, timedelta
from typing import Optional, Tuple
import pytz

try:
    from .errors import ParseError
    from .logger import get_logger
except ImportError:
    from errors import ParseError
    from logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEZONE = 'Asia/Taipei'

# "H" or "H.MM" - the part after the dot is literal minutes, not a decimal fraction
DURATION_PATTERN = re.compile(r"^(\d+)(?:\.(\d{1,2}))?$")
CLOCK_PATTERN = re.compile(r"^(\d{1,2}):?(\d{2})$")


def get_timezone(name: Optional[str] = None):
    """
    Resolve an IANA timezone name.

    Args:
        name: Timezone name (e.g. 'Asia/Taipei'); empty uses DEFAULT_TIMEZONE

    Returns:
        pytz timezone

    Raises:
        ParseError: if the zone is unknown
    """
    zone_name = (name or '').strip() or DEFAULT_TIMEZONE
    try:
        return pytz.timezone(zone_name)
    except pytz.exceptions.UnknownTimeZoneError as e:
        raise ParseError(f"unknown timezone '{zone_name}'") from e


def parse_duration_spec(spec: str) -> Tuple[int, int]:
    """
    Parse an "H" or "H.MM" offset.

    The fractional part counts minutes and is left-padded to two digits, so
    "1.5" is 1 hour 5 minutes and "1.30" is 1 hour 30 minutes.

    Args:
        spec: User-supplied text

    Returns:
        (hours, minutes)

    Raises:
        ParseError: non-numeric input, more than two minute digits, or minutes >= 60
    """
    if spec is None:
        raise ParseError("empty duration")
    text = str(spec).strip()
    match = DURATION_PATTERN.match(text)
    if not match:
        raise ParseError(f"invalid duration '{spec}' (expected H or H.MM)")

    hours = int(match.group(1))
    minutes = int(match.group(2).zfill(2)) if match.group(2) else 0
    if minutes >= 60:
        raise ParseError(f"invalid duration '{spec}': minutes must be below 60")

    logger.debug(f"Parsed duration '{text}' -> {hours}h {minutes}m")
    return hours, minutes


def format_duration_spec(hours: int, minutes: int) -> str:
    """Render (hours, minutes) back into the "H.MM" shorthand."""
    return f"{hours}.{minutes:02d}"


def duration_to_minutes(hours: int, minutes: int) -> int:
    return hours * 60 + minutes


def now_in(zone) -> datetime:
    """Current time in the given pytz zone."""
    return datetime.now(pytz.utc).astimezone(zone)


def shift(dt: datetime, minutes: float, zone=None) -> datetime:
    """
    Move an aware datetime by a number of minutes.

    The result is normalized to the zone so DST offsets stay correct.
    """
    moved = dt + timedelta(minutes=minutes)
    tz = zone or dt.tzinfo
    if hasattr(tz, 'normalize'):
        return tz.normalize(moved.astimezone(tz))
    return moved.astimezone(tz)


def add_to_now(hours: int, minutes: int, zone, now: Optional[datetime] = None) -> datetime:
    """
    Current time in the given zone advanced by the offset.

    Args:
        hours: Offset hours
        minutes: Offset minutes
        zone: pytz timezone
        now: Override for the current time (aware datetime)
    """
    base = now.astimezone(zone) if now is not None else now_in(zone)
    return shift(base, duration_to_minutes(hours, minutes), zone)


def parse_clock(text: str) -> Tuple[int, int]:
    """
    Parse a wall-clock time "HH:MM" (also "H:MM" or "HHMM").

    Raises:
        ParseError: not a valid 24-hour time
    """
    raw = (text or '').strip().replace('：', ':')
    match = CLOCK_PATTERN.match(raw)
    if not match:
        raise ParseError(f"invalid time '{text}' (expected HH:MM)")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ParseError(f"invalid time '{text}'")
    return hour, minute


def last_occurrence(hour: int, minute: int, zone, now: Optional[datetime] = None) -> datetime:
    """
    Most recent hour:minute at or before now, in the zone.

    A clock time later than now today refers to yesterday.
    """
    base = now.astimezone(zone) if now is not None else now_in(zone)
    naive = base.replace(tzinfo=None, hour=hour, minute=minute, second=0, microsecond=0)
    if naive > base.replace(tzinfo=None):
        naive -= timedelta(days=1)
    return zone.normalize(zone.localize(naive))


def minutes_until(target: datetime, now: datetime) -> float:
    """Signed minutes from now to target (negative when target is past)."""
    return (target - now).total_seconds() / 60


def format_remaining(target: datetime, now: datetime) -> Tuple[int, int]:
    """
    Floor-divided (hours, minutes) left until target.

    Returns (0, 0) when target <= now.
    """
    total_seconds = (target - now).total_seconds()
    if total_seconds <= 0:
        return 0, 0
    total_minutes = int(total_seconds // 60)
    return total_minutes // 60, total_minutes % 60


def format_remaining_text(target: datetime, now: datetime) -> str:
    hours, minutes = format_remaining(target, now)
    return f"{hours}小時{minutes}分"


def format_clock(dt: datetime, zone=None) -> str:
    """HH:MM in the given zone."""
    if zone is not None:
        dt = dt.astimezone(zone)
    return dt.strftime('%H:%M')


def to_iso(dt: Optional[datetime]) -> str:
    """ISO-8601 text for persistence; empty string for None."""
    if dt is None:
        return ''
    return dt.isoformat()


def from_iso(text: Optional[str], zone=None) -> Optional[datetime]:
    """
    Parse persisted ISO-8601 text.

    Naive values are taken as being in the given zone (UTC when no zone).

    Raises:
        ParseError: if the text is not ISO-8601
    """
    if text is None or not str(text).strip():
        return None
    raw = str(text).strip()
    # Older writers used a trailing Z
    if raw.endswith('Z'):
        raw = raw[:-1] + '+00:00'
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError as e:
        raise ParseError(f"invalid timestamp '{text}'") from e

    tz = zone or pytz.utc
    if dt.tzinfo is None:
        return tz.localize(dt)
    return dt.astimezone(tz)
