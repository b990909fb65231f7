"""
GPS Fix Message Schema.

Aggregated GPS fix published by the GPS node on the GPS topic and consumed
by the position estimator. Built from GGA/RMC/GSA/VTG sentences.
"""

from dataclasses import dataclass
from typing import Optional
from enum import Enum, IntEnum

from .validation import optional_finite_float, optional_integer


class FixType(IntEnum):
    """Type of position fix reported by GSA."""

    NO_FIX = 0          # No valid solution
    FIX_2D = 1          # 2D position (lat, lon)
    FIX_3D = 2          # 3D position (lat, lon, alt)


class LinkQuality(str, Enum):
    """Categorical summary of GPS fix quality."""

    EXCELLENT = "excellent"
    GOOD = "good"
    MODERATE = "moderate"
    POOR = "poor"
    UNKNOWN = "unknown"


@dataclass
class GPSData:
    """
    Aggregated GPS fix.

    Attributes:
        timestamp: UTC time of fix (ms since epoch)
        latitude: Latitude in decimal degrees, positive north
        longitude: Longitude in decimal degrees, positive east
        altitude: Altitude above MSL in meters
        speed: Ground speed in km/h
        course: Track over ground in degrees true
        satellites: Satellites used in the fix
        hdop: Horizontal dilution of precision
        fix: Fix type from GSA (None until a GSA arrives)
        link_quality: Quality classification from GGA fix quality

    Notes:
        - Every field except link_quality may be absent (None)
        - fix and link_quality accept their string names
          (e.g. "FIX_3D", "excellent")
    """

    timestamp: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    speed: Optional[float] = None
    course: Optional[float] = None
    satellites: Optional[int] = None
    hdop: Optional[float] = None
    fix: Optional[FixType] = None
    link_quality: LinkQuality = LinkQuality.UNKNOWN

    def __post_init__(self):
        """Normalize enum fields, coerce numbers and validate ranges."""
        for name in ('timestamp', 'latitude', 'longitude', 'altitude',
                     'speed', 'course', 'hdop'):
            setattr(self, name, optional_finite_float(name, getattr(self, name)))
        self.satellites = optional_integer('satellites', self.satellites)

        if isinstance(self.fix, str):
            self.fix = FixType[self.fix]
        elif self.fix is not None:
            self.fix = FixType(self.fix)

        if self.link_quality is None:
            self.link_quality = LinkQuality.UNKNOWN
        else:
            self.link_quality = LinkQuality(self.link_quality)

        if self.latitude is not None and not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")

        if self.longitude is not None and not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")

        if self.satellites is not None and self.satellites < 0:
            raise ValueError(f"Satellite count cannot be negative: {self.satellites}")

        if self.hdop is not None and self.hdop < 0:
            raise ValueError(f"HDOP cannot be negative: {self.hdop}")

    @property
    def has_position(self) -> bool:
        """Check if latitude and longitude are both present."""
        return self.latitude is not None and self.longitude is not None

    @property
    def is_3d_fix(self) -> bool:
        """Check if this is a 3D fix."""
        return self.fix == FixType.FIX_3D

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'timestamp': self.timestamp,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'altitude': self.altitude,
            'speed': self.speed,
            'course': self.course,
            'satellites': self.satellites,
            'hdop': self.hdop,
            'fix': self.fix.name if self.fix is not None else None,
            'link_quality': self.link_quality.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GPSData':
        """Build from a dictionary produced by to_dict()."""
        return cls(
            timestamp=data.get('timestamp'),
            latitude=data.get('latitude'),
            longitude=data.get('longitude'),
            altitude=data.get('altitude'),
            speed=data.get('speed'),
            course=data.get('course'),
            satellites=data.get('satellites'),
            hdop=data.get('hdop'),
            fix=data.get('fix'),
            link_quality=data.get('link_quality', LinkQuality.UNKNOWN.value),
        )
