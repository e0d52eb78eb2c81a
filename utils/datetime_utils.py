from datetime import date, datetime
from dateutil import parser as dtparser
from typing import Optional
import pandas as pd
import pytz

# two parses with different fill-in defaults disagree when the text lacks a year, month or day
_DEFAULT_A = datetime(2000, 1, 1)
_DEFAULT_B = datetime(2001, 2, 2)

def _parse_complete_date(text_: str) -> Optional[datetime]:
    try:
        a = dtparser.parse(text_, default=_DEFAULT_A)
        b = dtparser.parse(text_, default=_DEFAULT_B)
    except (ValueError, OverflowError):
        return None
    if a.date() != b.date():
        return None
    return a

def _coerce_datetime(x_: object) -> Optional[datetime]:
    if x_ is None or (not isinstance(x_, str) and pd.isna(x_)):
        return None
    if isinstance(x_, datetime):
        ts = x_
    elif isinstance(x_, date):
        return datetime(x_.year, x_.month, x_.day)
    else:
        text = str(x_).strip()
        if not text:
            return None
        ts = _parse_complete_date(text)
        if ts is None:
            return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(pytz.UTC)
    return ts

def normalize_date_string(x_: object) -> Optional[str]:
    """Canonical YYYY-MM-DD form of `x_`, or None when it cannot be parsed.

    Timezone-aware values are converted to UTC before the calendar date is taken.
    Fragments without a year, month and day (e.g. "Jan", "12") are rejected.
    """
    ts = _coerce_datetime(x_)
    if ts is None:
        return None
    return ts.date().isoformat()
