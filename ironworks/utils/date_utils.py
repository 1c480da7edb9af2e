import re
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime

_ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_LEADING_INT = re.compile(r'^\s*([-+]?\d+)')

TRUTHY_VALUES = ('1', 'true', 'yes', 'active')


def normalize_id(value):
    """
    Coerce an id from a request body or URL to an int.
    Returns None for anything that does not start with an integer.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def normalize_ids(values):
    """Normalise a list of ids, dropping unparseable entries and duplicates (first occurrence wins)."""
    if not isinstance(values, (list, tuple)):
        return []
    seen = []
    for value in values:
        parsed = normalize_id(value)
        if parsed is not None and parsed not in seen:
            seen.append(parsed)
    return seen


def parse_bool(value):
    """
    Single truthiness rule for flags stored or sent in mixed shapes.
    1, "1", True, "true", "yes" and "active" are true; everything else
    (0, "0", False, "false", "no", "inactive", None) is false.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    return str(value).strip().lower() in TRUTHY_VALUES


def _as_utc_date(value):
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


def _parse_date_string(text):
    text = text.strip()
    if not text:
        return None

    if _ISO_DATE.match(text):
        try:
            return datetime.strptime(text, '%Y-%m-%d').date()
        except ValueError:
            return None

    iso_text = text[:-1] + '+00:00' if text.endswith(('Z', 'z')) else text
    try:
        return _as_utc_date(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    # RFC 2822, e.g. "Sun, 01 Jun 2025 00:00:00 GMT"
    try:
        return _as_utc_date(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        return None


def to_date(value):
    """Return a datetime.date for any supported date-like input, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc_date(value)
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        # epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return _parse_date_string(value)
    return None


def format_date_for_sql(value):
    """
    Canonical YYYY-MM-DD string for a date-like value, or None if it cannot be parsed.
    Calendar fields are always taken in UTC so a midnight-UTC timestamp never shifts a day.
    """
    parsed = to_date(value)
    return parsed.strftime('%Y-%m-%d') if parsed else None


def format_date_for_response(value):
    if value is None:
        return None
    if isinstance(value, str) and _ISO_DATE.match(value):
        return value
    return format_date_for_sql(value)


def format_timestamp(value):
    if not value:
        return None
    return value.strftime('%Y-%m-%d %H:%M:%S')
