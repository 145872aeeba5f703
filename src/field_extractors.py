import numbers
import re
from datetime import date, datetime, timezone

import pandas as pd
from dateutil.parser import parse as dateparse

TRUTHY_VALUES = ("true", "1", "1.0", "t", "yes", "y")

# --partial dates kept at the precision they were given in
YEAR_ONLY = re.compile(r"^\d{4}$")
YEAR_MONTH = re.compile(r"^\d{4}-\d{2}$")
FULL_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

NUMERIC_TEXT = re.compile(r"^\d+(\.\d+)?$")
COMPACT_DATE = re.compile(r"^(\d{4}|\d{8})$")

# --epoch magnitude thresholds
MILLIS_THRESHOLD = 10**12
SECONDS_THRESHOLD = 10**9

# --two different defaults reveal which date parts the text really carried
PROBE_DEFAULT_A = datetime(2000, 1, 1)
PROBE_DEFAULT_B = datetime(2004, 2, 2)
EPOCH_DEFAULT = datetime(1970, 1, 1)


# ----------------------------------------
def is_empty(value):
    """True for None, NaN/NaT, blank or "nan" strings and zero-length containers.

    0, False and "0" are values, not absence.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in ("", "nan")
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    if isinstance(value, bool):
        return False
    if pd.api.types.is_scalar(value):
        try:
            return bool(pd.isna(value))
        except (TypeError, ValueError):
            return False
    return False


# ----------------------------------------
def cell_to_text(value):
    """Render a raw cell as trimmed text ("" when empty)."""
    if is_empty(value):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        if (value.hour, value.minute, value.second, value.microsecond) == (0, 0, 0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ", ".join(x for x in (cell_to_text(x) for x in value) if x)
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        value = float(value)
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value).strip()


# ----------------------------------------
def to_identifier_string(value):
    """Identifiers from numeric columns lose the float artefact: 123.0 -> "123"."""
    return cell_to_text(value)


# ----------------------------------------
def to_string_list(value, separators=",;"):
    if is_empty(value):
        return []

    if isinstance(value, (list, tuple)):
        items = [cell_to_text(x) for x in value]
        return [x for x in items if not is_empty(x)]

    if isinstance(value, str):
        pattern = "[" + re.escape(separators) + "]"
        pieces = [x.strip() for x in re.split(pattern, value)]
        return [x for x in pieces if not is_empty(x)]

    return [cell_to_text(value)]


# ----------------------------------------
def to_partial_date(value):
    """Normalize a date cell without inventing precision.

    "2020", "2020-05" and "2020-05-17" come back unchanged, date cells and
    parseable free text become YYYY-MM-DD (or YYYY-MM / YYYY when the text
    had no day / month). Text that does not parse is returned trimmed.
    """
    if is_empty(value):
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = cell_to_text(value)
    if YEAR_ONLY.match(text) or YEAR_MONTH.match(text) or FULL_DATE.match(text):
        return text

    try:
        probe_a = dateparse(text, default=PROBE_DEFAULT_A)
        probe_b = dateparse(text, default=PROBE_DEFAULT_B)
    except (ValueError, OverflowError, TypeError):
        return text

    # --no year in the text: any canonical form would be made up
    if probe_a.year != probe_b.year:
        return text
    if probe_a.month != probe_b.month:
        return f"{probe_a.year:04d}"
    if probe_a.day != probe_b.day:
        return f"{probe_a.year:04d}-{probe_a.month:02d}"
    return probe_a.date().isoformat()


# ----------------------------------------
def _datetime_to_millis(value):
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


# ----------------------------------------
def to_epoch_millis(value):
    """Milliseconds since the epoch, or None when the cell is not a date.

    Numbers above 10^12 are already milliseconds, numbers above 10^9 are
    seconds, smaller numbers must read as YYYY or YYYYMMDD. Naive
    date-times are taken as UTC.
    """
    if is_empty(value) or isinstance(value, bool):
        return None

    try:
        if isinstance(value, datetime):
            return _datetime_to_millis(value)
        if isinstance(value, date):
            return _datetime_to_millis(datetime(value.year, value.month, value.day))

        text = cell_to_text(value)
        number = None
        if isinstance(value, numbers.Real):
            number = float(value)
        elif NUMERIC_TEXT.match(text):
            number = float(text)

        if number is not None:
            if abs(number) >= MILLIS_THRESHOLD:
                return int(number)
            if abs(number) >= SECONDS_THRESHOLD:
                return int(round(number * 1000))
            # --smaller numbers only count as YYYY or YYYYMMDD
            if not COMPACT_DATE.match(text):
                return None

        return _datetime_to_millis(dateparse(text, default=EPOCH_DEFAULT))
    except (ValueError, OverflowError, TypeError):
        return None


# ----------------------------------------
def to_boolean(value):
    if is_empty(value):
        return False
    return str(value).strip().lower() in TRUTHY_VALUES
