"""
Localization Module: GNSS quality, coordinate transforms, EKF estimation.

Key classes:
- CoordinateConverter: Geodetic <-> local frame (spherical earth)
- EKFPositionEstimator: IMU/GPS/depth/speed fusion
- EKFConfig: Filter tuning
"""

from .coordinate_converter import (
    CoordinateConverter,
    GeodeticReference,
    EARTH_RADIUS_M,
    haversine_distance_m,
    initial_bearing_deg,
    destination_point,
)
from .gnss_quality import (
    link_quality_from_fix_quality,
    is_link_quality_accepted,
    is_fix_sufficient,
    gps_noise_variance,
    gps_measurement_covariance,
)
from .ekf import (
    EKFConfig,
    EKFPositionEstimator,
)

__all__ = [
    'CoordinateConverter',
    'GeodeticReference',
    'EARTH_RADIUS_M',
    'haversine_distance_m',
    'initial_bearing_deg',
    'destination_point',
    'link_quality_from_fix_quality',
    'is_link_quality_accepted',
    'is_fix_sufficient',
    'gps_noise_variance',
    'gps_measurement_covariance',
    'EKFConfig',
    'EKFPositionEstimator',
]
