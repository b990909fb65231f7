"""
Field-level parsers for NMEA sentences.

All parsers map an empty field to None. Malformed non-empty fields raise
ValueError (the decoder turns that into a ParseError for the one line).
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional
import math

from .sentences import FAAMode, FixQuality

KNOTS_TO_KMH = 1.852

FAA_MODES = {
    'A': FAAMode.AUTONOMOUS,
    'D': FAAMode.DIFFERENTIAL,
    'E': FAAMode.ESTIMATED,
    'M': FAAMode.MANUAL_INPUT,
    'S': FAAMode.SIMULATED,
    'N': FAAMode.NOT_VALID,
    'P': FAAMode.PRECISE,
    'R': FAAMode.RTK,
    'F': FAAMode.RTK_FLOAT,
}

# NMEA 4.10 GNSS system IDs
SYSTEM_IDS = {
    0: 'QZSS',
    1: 'GPS',
    2: 'GLONASS',
    3: 'Galileo',
    4: 'BeiDou',
}

TALKER_SYSTEMS = {
    'GP': 'GPS',
    'GQ': 'QZSS',
    'GL': 'GLONASS',
    'GA': 'Galileo',
    'GB': 'BeiDou',
}


def field_at(fields: List[str], index: int) -> str:
    """Field at index, or '' when the sentence is shorter."""
    return fields[index] if index < len(fields) else ''


def _finite(value: str) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Non-finite number: {value!r}")
    return number


def parse_number(value: str) -> Optional[float]:
    return None if value == '' else _finite(value)


def parse_int(value: str) -> Optional[int]:
    return None if value == '' else int(value)


def parse_fix_quality(value: str) -> Optional[FixQuality]:
    """
    GGA fix quality indicator.

    Values outside the standard 0-8 range (e.g. 9 for WAAS on some
    receivers) map to None so the rest of the fix is kept.
    """
    quality = parse_int(value)
    if quality is None:
        return None
    try:
        return FixQuality(quality)
    except ValueError:
        return None


def parse_knots(value: str) -> Optional[float]:
    """Speed in knots converted to km/h."""
    return None if value == '' else _finite(value) * KNOTS_TO_KMH


def parse_coordinate(value: str, hemisphere: str) -> Optional[float]:
    """
    Convert ddmm.mmmm / dddmm.mmmm to signed decimal degrees.

    Args:
        value: Coordinate field
        hemisphere: N/S/E/W (S and W are negative)
    """
    if value == '':
        return None

    raw = _finite(value)
    if raw < 0:
        raise ValueError(f"Coordinate field cannot be negative: {value!r}")
    degrees = int(raw // 100)
    minutes = raw - degrees * 100
    result = degrees + minutes / 60.0

    if hemisphere in ('S', 'W'):
        result = -result

    return result


def parse_distance(value: str, unit: str) -> Optional[float]:
    """Distance in meters; only the 'M' unit (or none) is accepted."""
    if value == '':
        return None
    if unit in ('M', ''):
        return _finite(value)
    raise ValueError(f"Unknown distance unit: {unit}")


def expand_year(two_digit_year: int) -> int:
    """Two-digit NMEA years below 73 are 20xx, the rest 19xx."""
    return 2000 + two_digit_year if two_digit_year < 73 else 1900 + two_digit_year


def parse_date(value: str) -> Optional[date]:
    """ddmmyy → date."""
    if value == '':
        return None
    if len(value) != 6:
        raise ValueError(f"Malformed date field: {value}")
    return date(expand_year(int(value[4:6])), int(value[2:4]), int(value[0:2]))


def parse_time(value: str, on_date: Optional[date] = None,
               default_date: Optional[date] = None) -> Optional[datetime]:
    """
    hhmmss[.sss] combined with a date into a UTC datetime.

    Args:
        value: Time field
        on_date: Date from the sentence, if it carries one
        default_date: Date to use when the sentence has none (today UTC)
    """
    if value == '':
        return None
    if len(value) < 6:
        raise ValueError(f"Malformed time field: {value}")

    hours = int(value[0:2])
    minutes = int(value[2:4])
    seconds = float(value[4:])

    day = on_date or default_date or datetime.now(timezone.utc).date()
    midnight = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return midnight + timedelta(hours=hours, minutes=minutes, seconds=seconds)


def parse_status(value: str) -> Optional[str]:
    return {'A': 'active', 'V': 'void'}.get(value)


def parse_gsa_mode(value: str) -> Optional[str]:
    return {'M': 'manual', 'A': 'automatic'}.get(value)


def parse_gsa_fix(value: str) -> Optional[str]:
    return {'2': '2D', '3': '3D'}.get(value)


def parse_faa(value: str) -> Optional[FAAMode]:
    return FAA_MODES.get(value)


def parse_variation(value: str, direction: str) -> Optional[float]:
    """Magnetic variation, negative when west."""
    if value == '' or direction == '':
        return None
    variation = float(value)
    return -variation if direction == 'W' else variation


def system_from_id(system_id: Optional[int]) -> str:
    return SYSTEM_IDS.get(system_id, 'unknown')


def system_from_talker(talker: str) -> str:
    return TALKER_SYSTEMS.get(talker, talker)


def compute_checksum(body: str) -> int:
    """XOR of every character between '$' and '*'."""
    checksum = 0
    for char in body:
        checksum ^= ord(char)
    return checksum
