"""
GNSS quality assessment and measurement noise selection.

Converts the GGA fix-quality indicator into a link-quality category and the
link-quality category into GPS measurement noise for EKF updates.
"""

from typing import Dict, Optional, Union
import numpy as np

from nav_core.nmea.sentences import FixQuality
from nav_core.proto.gps_data import GPSData, LinkQuality

# Link qualities trusted for initialization and GPS updates
ACCEPTED_LINK_QUALITIES = frozenset({LinkQuality.EXCELLENT, LinkQuality.GOOD})

DEFAULT_GPS_NOISE = {
    LinkQuality.EXCELLENT: 5.0,
    LinkQuality.GOOD: 10.0,
}
DEFAULT_GPS_NOISE_FALLBACK = 20.0


def link_quality_from_fix_quality(quality: Optional[Union[FixQuality, int]]) -> LinkQuality:
    """
    Classify a GGA fix-quality indicator.

    Args:
        quality: GGA quality field (None when empty)

    Returns:
        LinkQuality category

    Mapping:
        None -> unknown
        >= 4 (RTK fix/float, estimated, manual, simulation) -> excellent
        3 (PPS) -> good
        2 (DGPS) -> moderate
        0, 1 -> poor
    """
    if quality is None:
        return LinkQuality.UNKNOWN

    quality = int(quality)
    if quality >= FixQuality.RTK_FIX:
        return LinkQuality.EXCELLENT
    if quality == FixQuality.PPS_FIX:
        return LinkQuality.GOOD
    if quality == FixQuality.DGPS_FIX:
        return LinkQuality.MODERATE
    return LinkQuality.POOR


def is_link_quality_accepted(link_quality: LinkQuality) -> bool:
    """True if fixes of this quality may initialize or update the filter."""
    return link_quality in ACCEPTED_LINK_QUALITIES


def is_fix_sufficient(fix: GPSData) -> bool:
    """
    Check whether a GPS fix may initialize the estimator.

    Requires:
    - link quality excellent or good
    - 3D fix
    - altitude, latitude and longitude present
    """
    return (
        is_link_quality_accepted(fix.link_quality)
        and fix.is_3d_fix
        and fix.altitude is not None
        and fix.has_position
    )


def gps_noise_variance(
    link_quality: LinkQuality,
    noise_by_quality: Optional[Dict[LinkQuality, float]] = None,
    fallback: float = DEFAULT_GPS_NOISE_FALLBACK,
) -> float:
    """
    GPS measurement noise for one axis.

    Tighter for excellent/good links, looser otherwise.
    """
    table = DEFAULT_GPS_NOISE if noise_by_quality is None else noise_by_quality
    return table.get(link_quality, fallback)


def gps_measurement_covariance(
    link_quality: LinkQuality,
    noise_by_quality: Optional[Dict[LinkQuality, float]] = None,
    fallback: float = DEFAULT_GPS_NOISE_FALLBACK,
) -> np.ndarray:
    """
    3x3 measurement covariance R for a GPS (x, y, z) update.

    Returns:
        Diagonal matrix (independent errors per axis)
    """
    noise = gps_noise_variance(link_quality, noise_by_quality, fallback)
    return np.diag([noise, noise, noise])
