"""
Coordinate conversion between geodetic (lat/lon) and the local frame.

Spherical-earth great-circle projection around a fixed reference point:
a geodetic point maps to (x, y) = (d * sin(bearing), d * cos(bearing)),
where d is the haversine distance from the reference and bearing the
initial bearing measured clockwise from north. x points east, y north.
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Mean earth radius (spherical model, not WGS84)
EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True)
class GeodeticReference:
    """Fixed origin of the local frame."""

    latitude: float     # degrees
    longitude: float    # degrees
    altitude: float     # meters above MSL (negative = below)


def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float,
                         radius: float = EARTH_RADIUS_M) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return radius * c


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial bearing from point 1 to point 2.

    Returns:
        Bearing in degrees, clockwise from north, in (-180, 180]
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lon2 - lon1)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = (math.cos(phi1) * math.sin(phi2)
         - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda))
    return math.degrees(math.atan2(y, x))


def destination_point(lat: float, lon: float, distance_m: float, bearing_deg: float,
                      radius: float = EARTH_RADIUS_M) -> Tuple[float, float]:
    """Point reached by travelling distance_m along bearing_deg from (lat, lon)."""
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)
    theta = math.radians(bearing_deg)
    delta = distance_m / radius

    phi2 = math.asin(
        math.sin(phi1) * math.cos(delta)
        + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    return math.degrees(phi2), math.degrees(lambda2)


class CoordinateConverter:
    """
    Converts between geodetic coordinates and the local frame.

    Usage:
        converter = CoordinateConverter()
        converter.set_origin(GeodeticReference(37.0, -122.0, 10.0))
        x, y = converter.geodetic_to_local(37.001, -122.0)
        lat, lon = converter.local_to_geodetic(x, y)

    The reference is set once; setting it again replaces it.
    """

    def __init__(self, origin: Optional[GeodeticReference] = None,
                 radius: float = EARTH_RADIUS_M):
        self.origin = origin
        self.radius = radius

    def set_origin(self, origin: GeodeticReference):
        """
        Set the reference point of the local frame.

        Args:
            origin: Geodetic reference (typically the first accepted GPS fix)
        """
        self.origin = origin
        logger.info(
            f"Local frame origin set: lat={origin.latitude:.6f}, "
            f"lon={origin.longitude:.6f}, alt={origin.altitude:.2f}"
        )

    def _require_origin(self) -> GeodeticReference:
        if self.origin is None:
            raise ValueError("Local frame origin not set")
        return self.origin

    def geodetic_to_local(self, latitude: float, longitude: float) -> Tuple[float, float]:
        """
        Project a geodetic point into the local frame.

        Returns:
            (x, y) in meters, x east and y north of the origin
        """
        origin = self._require_origin()

        distance = haversine_distance_m(
            origin.latitude, origin.longitude, latitude, longitude, self.radius
        )
        bearing = math.radians(initial_bearing_deg(
            origin.latitude, origin.longitude, latitude, longitude
        ))
        return distance * math.sin(bearing), distance * math.cos(bearing)

    def local_to_geodetic(self, x: float, y: float) -> Tuple[float, float]:
        """
        Convert a local position back to latitude/longitude.

        Returns:
            (latitude, longitude) in degrees
        """
        origin = self._require_origin()

        distance = math.hypot(x, y)
        bearing = math.degrees(math.atan2(x, y))
        return destination_point(
            origin.latitude, origin.longitude, distance, bearing, self.radius
        )
