"""Field normalizers shared by every parser: timestamps, durations, numbers."""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, TypeVar

T = TypeVar("T")

# A numeric duration above one day's worth of minutes cannot be minutes,
# so it is read as milliseconds.
MINUTES_PER_DAY = 24 * 60
MS_PER_MINUTE = 60_000

_MONTHS = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_INTEGER_RE = re.compile(r"^[-+]?\d+$")
_NUMERIC_RE = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)$")
_FLOAT_PREFIX_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_INT_PREFIX_RE = re.compile(r"^\s*([-+]?\d+)")


def _to_utc_iso(dt: datetime) -> str:
    """Format an aware datetime like JavaScript's toISOString()."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{dt.microsecond // 1000:03d}Z"


def _from_epoch_ms(ms: float) -> str | None:
    try:
        return _to_utc_iso(datetime.fromtimestamp(ms / 1000, tz=timezone.utc))
    except (OverflowError, OSError, ValueError):
        return None


def _from_iso(text: str) -> str | None:
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return _to_utc_iso(dt)


def normalize_timestamp(value: Any) -> str | None:
    """Normalize a raw timestamp to a UTC ISO-8601 string.

    Accepted shapes:
    - "2023-01-15 10:30:00" (space separated)
    - "2023-01-15T10:30:00Z" / with offset / with fraction
    - "1673778600000" or 1673778600000 (epoch milliseconds)
    - "2023-01-15" (midnight UTC)

    Naive timestamps are read as UTC. Returns None for anything that does
    not parse to a valid instant; never raises.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return _from_epoch_ms(value)

    text = str(value).strip()
    if not text:
        return None
    if " " in text:
        return _from_iso(text.replace(" ", "T", 1))
    if "T" in text:
        return _from_iso(text)
    if _INTEGER_RE.match(text):
        return _from_epoch_ms(int(text))
    if _ISO_DATE_RE.match(text):
        return _from_iso(text)
    return None


def normalize_date(value: Any) -> str | None:
    """Return the YYYY-MM-DD portion of a parseable timestamp, else None."""
    if isinstance(value, str):
        m = _ISO_DATE_RE.match(value.strip())
        if m:
            try:
                return date(int(m.group(1)), int(m.group(2)), int(m.group(3))).isoformat()
            except ValueError:
                return None
    timestamp = normalize_timestamp(value)
    if timestamp is None:
        return None
    return timestamp.split("T")[0]


def normalize_duration(value: Any) -> int | float:
    """Normalize a duration to minutes.

    - numbers and purely numeric strings above MINUTES_PER_DAY are
      milliseconds and are floor-divided to minutes; smaller values are
      already minutes and are returned unchanged. Values from 1441 to
      59999 therefore read as sub-minute milliseconds and become 0
    - "H:M:S" and "M:S" strings are converted to minutes, floored
    - anything else is 0
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        number = value
    else:
        text = str(value).strip()
        if not text:
            return 0
        if _NUMERIC_RE.match(text):
            number = float(text) if "." in text else int(text)
        elif ":" in text:
            return _colon_duration_minutes(text)
        else:
            return 0

    if isinstance(number, float):
        if not math.isfinite(number):
            return 0
        if number.is_integer():
            number = int(number)
    if abs(number) > MINUTES_PER_DAY:
        return int(number // MS_PER_MINUTE)
    return number


def _colon_duration_minutes(text: str) -> int:
    parts = text.split(":")
    try:
        numbers = [float(p) for p in parts]
    except ValueError:
        return 0
    if len(numbers) == 3:
        minutes = numbers[0] * 60 + numbers[1] + numbers[2] / 60
    elif len(numbers) == 2:
        minutes = numbers[0] + numbers[1] / 60
    else:
        return 0
    return math.floor(minutes)


def parse_number(value: Any) -> float | None:
    """Parse a float from a raw field. Empty, missing or NaN -> None (not 0).

    Like a lenient float parse, a leading number is accepted even when
    followed by text ("72 bpm" -> 72.0).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    m = _FLOAT_PREFIX_RE.match(str(value))
    if not m:
        return None
    number = float(m.group(1))
    return number if math.isfinite(number) else None


def parse_int(value: Any) -> int | None:
    """Parse an int from a raw field, truncating any fraction."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    m = _INT_PREFIX_RE.match(str(value))
    return int(m.group(1)) if m else None


def first_present(row: dict[str, Any], *keys: str) -> Any:
    """Return the first non-empty value among ``keys`` in ``row``."""
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return None


def month_number(name: str) -> int | None:
    """Map a full or abbreviated English month name to 1-12."""
    key = name.strip().lower().rstrip(".")
    if key in _MONTHS:
        return _MONTHS[key]
    if len(key) >= 3:
        for full, number in _MONTHS.items():
            if full.startswith(key):
                return number
    return None


def parse_narrative_date(text: str) -> str:
    """Parse dates like 'November 23rd, 2021' or 'Jan 5 2024' -> ISO date.

    Returns empty string when the text is not a valid calendar date.
    """
    m = re.match(
        r"([A-Za-z]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s*(\d{4})",
        text.strip(),
    )
    if not m:
        return ""
    month = month_number(m.group(1))
    if month is None:
        return ""
    try:
        return date(int(m.group(3)), month, int(m.group(2))).isoformat()
    except ValueError:
        return ""


def safe_date(year: int | str, month: int | str, day: int | str) -> str:
    """Build an ISO date, or return '' if the parts are not a real date."""
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return ""


def extract_human_name(names: Any) -> str:
    """Render a FHIR HumanName list as "Given Given Family".

    Prefers the entry with use == "official", otherwise the first one.
    """
    if not names or not isinstance(names, list):
        return ""
    name = next((n for n in names if n.get("use") == "official"), names[0])
    parts = list(name.get("given") or [])
    if name.get("family"):
        parts.append(name["family"])
    return " ".join(parts)


def today_iso() -> str:
    """Today's calendar date (UTC) as YYYY-MM-DD."""
    return datetime.now(timezone.utc).date().isoformat()


def utc_now_iso() -> str:
    return _to_utc_iso(datetime.now(timezone.utc))


def deduplicate_by_key(
    items: list[T],
    key_func: Callable[[T], tuple[Any, ...]],
    sort_key: Callable[[T], Any] | None = None,
    reverse: bool = False,
) -> list[T]:
    """Deduplicate a list using a key function; the first occurrence wins.

    Args:
        items: Items to deduplicate, in discovery order.
        key_func: Function that returns a hashable key for each item.
        sort_key: Optional sort key for the result. The sort is stable and
            runs after deduplication, so it never changes which item survived.
        reverse: Sort in reverse order.
    """
    seen = set()
    result = []
    for item in items:
        k = key_func(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    if sort_key:
        result.sort(key=sort_key, reverse=reverse)
    return result
