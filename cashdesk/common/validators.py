"""
Validadores compartidos
"""
import enum
import re
from typing import Optional, Tuple

_TIME_OF_DAY = re.compile(r'^\s*(\d{1,2}):(\d{2})\s*$')


def enum_value(v):
    """Unwrap ORM enum members so API schemas can validate them by value"""
    if isinstance(v, enum.Enum):
        return v.value
    return v


def split_time_of_day(value) -> Optional[Tuple[int, int]]:
    """
    Split an "HH:MM" string into integers without range checks.

    Returns None when the string is not shaped H:MM / HH:MM.
    """
    if not isinstance(value, str):
        return None
    match = _TIME_OF_DAY.match(value)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def validate_time_of_day(value: str) -> bool:
    """
    Valida una hora del día en formato HH:MM (24h).
    - 00:00 a 23:59
    """
    parts = split_time_of_day(value)
    if parts is None:
        return False
    hour, minute = parts
    return 0 <= hour <= 23 and 0 <= minute <= 59
