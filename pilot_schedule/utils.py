import re
from datetime import datetime
from typing import Optional, Dict, Any, Iterable

SHIFT_LETTERS = ["A", "B", "C", "D", "E", "F", "G", "H", "I", "J"]

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_COMPACT_TIME_RE = re.compile(r"^\d{4}$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

BOOL_FIELDS = {
    "is_published", "is_active",
    "enabled", "email_enabled", "inapp_enabled", "sms_enabled",
    "hours_24", "hours_2", "minutes_30",
}

def strip_or_none(x: Optional[str]):
    if x is None:
        return None
    s = str(x).strip().replace("\t", "")
    return s if s else None

def to_int_or_none(x):
    """Parse a whole number; fractions, bools and other text give None."""
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, int):
        return x
    if isinstance(x, float):
        return int(x) if x.is_integer() else None
    s = str(x).strip()
    return int(s) if _INT_RE.match(s) else None

def to_bool(x, default: bool = False) -> bool:
    if x is None:
        return default
    if isinstance(x, bool):
        return x
    if isinstance(x, (int, float)):
        return x != 0
    return str(x).strip().lower() in ("1", "true", "yes", "on")

def to_date_iso(x: Optional[str]):
    """Return ``x`` as ``YYYY-MM-DD`` or None when it is not a calendar date."""
    if x is None or str(x).strip() == "":
        return None
    s = str(x).strip()
    if not _DATE_RE.match(s):
        return None
    try:
        return datetime.strptime(s, "%Y-%m-%d").date().isoformat()
    except ValueError:
        return None

def normalize_start_time(x: Optional[str]):
    """Accept ``HH:MM`` or ``HHMM``; return ``HH:MM`` or None when malformed."""
    s = strip_or_none(x)
    if s is None:
        return None
    if _COMPACT_TIME_RE.match(s):
        s = f"{s[:2]}:{s[2:]}"
    return s if _TIME_RE.match(s) else None

def slot_role(assignment_order: int) -> str:
    # slot 0 flies as pilot in command, every other slot as second in command
    return "PIC" if assignment_order == 0 else "SIC"

def row_to_dict(row) -> Dict[str, Any]:
    out = dict(row)
    for k in BOOL_FIELDS.intersection(out.keys()):
        if out[k] is not None:
            out[k] = bool(out[k])
    return out

def rows_to_dicts(rows: Iterable) -> list:
    return [row_to_dict(r) for r in rows]
