import datetime
import re

from story_archiver.core.exceptions import ParseError, ParseIntError

FRACTION_REGEX = re.compile(r"\.(\d+)")


def _normalize_fraction(match) -> str:
    # fromisoformat wants microseconds; some sites send 7 digits
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_rfc3339(value: str) -> datetime.datetime:
    """Parses an RFC3339 / ISO 8601 timestamp with an offset (``Z`` or ``+hh:mm``)."""
    text = (value or "").strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = FRACTION_REGEX.sub(_normalize_fraction, text, count=1)
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError as e:
        raise ParseError(f"Date ({value}) did not conform to rfc3339: {e}")
    if parsed.tzinfo is None:
        raise ParseError(f"Date ({value}) has no UTC offset")
    return parsed


def parse_offset_timestamp(value: str, fmt: str = "%Y-%m-%dT%H:%M:%S%z") -> datetime.datetime:
    """Parses timestamps like ``2021-03-04T05:06:07+0000`` used by forum software."""
    try:
        return datetime.datetime.strptime((value or "").strip(), fmt)
    except ValueError as e:
        raise ParseError(f"Date ({value}) did not match {fmt}: {e}")


def parse_epoch_seconds(value: str) -> datetime.datetime:
    text = (value or "").strip()
    try:
        seconds = int(text)
    except ValueError:
        raise ParseIntError(f"Timestamp ({value}) is not a whole number of seconds")
    return datetime.datetime.fromtimestamp(seconds, tz=datetime.timezone.utc)


def parse_local_date(value: str, fmt: str = "%Y-%m-%d", hour: int = 3) -> datetime.datetime:
    """
    Parses a bare date such as ``(2020-01-31)`` and pins it to `hour` o'clock
    in the machine's local UTC offset.
    """
    text = (value or "").replace("(", "").replace(")", "").strip()
    try:
        day = datetime.datetime.strptime(text, fmt)
    except ValueError as e:
        raise ParseError(f"Could not convert date string {value} to a date: {e}")
    return day.replace(hour=hour).astimezone()


def epoch() -> datetime.datetime:
    """Placeholder timestamp for chapters whose real date is only known after hydration."""
    return datetime.datetime.fromtimestamp(0, tz=datetime.timezone.utc)
