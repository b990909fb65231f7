"""
Field validators shared by the message schemas.

Payloads arrive as JSON from other processes; these helpers coerce numeric
fields to float/int and reject anything the estimator cannot consume.
Python's json module accepts NaN and Infinity literals, so finiteness is
checked here rather than trusted.
"""

from numbers import Integral, Real
from typing import Optional
import math


def finite_float(name: str, value) -> float:
    """
    Coerce a required numeric field to a finite float.

    Raises:
        TypeError: If value is not a real number (bool and str included)
        ValueError: If value is NaN or infinite
    """
    if isinstance(value, bool) or not isinstance(value, Real):
        raise TypeError(f"{name} must be a number, got {type(value).__name__}")
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite: {value}")
    return value


def optional_finite_float(name: str, value) -> Optional[float]:
    """finite_float() that passes None through."""
    return None if value is None else finite_float(name, value)


def integer(name: str, value) -> int:
    """Coerce a required integer field, rejecting bool and non-integral values."""
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{name} must be an integer, got {type(value).__name__}")
    return int(value)


def optional_integer(name: str, value) -> Optional[int]:
    return None if value is None else integer(name, value)
