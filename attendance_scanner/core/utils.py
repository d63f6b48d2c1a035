import re
from datetime import date, datetime
from typing import Tuple

_WHITESPACE = re.compile(r'\s+')


def normalize_identifier(identifier: str) -> str:
    """
    Normalizes a student identifier for deduplication.
    'vtu 1023' -> 'VTU1023'
    """
    if not identifier:
        return ""
    return _WHITESPACE.sub('', identifier).upper()


def safe_slot_name(slot_name: str) -> str:
    """Replaces whitespace runs with underscores for use in file names."""
    return _WHITESPACE.sub('_', slot_name.strip())


def capture_stamp(now: datetime) -> Tuple[str, str]:
    """Returns (date, time) strings as shown in the attendance list and export."""
    return now.strftime('%Y-%m-%d'), now.strftime('%I:%M %p')


def iso_date(value: date) -> str:
    return value.strftime('%Y-%m-%d')
