"""
Protocol Module: Topic message schemas, codecs and topic names.

- Dataclass schemas with to_dict()/from_dict()
- JSON codecs with DecodeError on malformed payloads
- Defensive validation in __post_init__
"""

from .gps_data import (
    GPSData,
    FixType,
    LinkQuality,
)
from .imu_data import (
    IMUData,
    Vector3,
    Quaternion,
    CalibrationStatus,
)
from .scalars import (
    DepthReading,
    SpeedEstimate,
)
from .position_estimate import (
    LocalState,
    GlobalPosition,
    PositionEstimate,
    STATE_SIZE,
)
from .codec import (
    MessageCodec,
    GPS_DATA_CODEC,
    IMU_DATA_CODEC,
    DEPTH_CODEC,
    SPEED_ESTIMATE_CODEC,
    POSITION_ESTIMATE_CODEC,
)
from . import topics

__all__ = [
    # Schemas
    'GPSData',
    'FixType',
    'LinkQuality',
    'IMUData',
    'Vector3',
    'Quaternion',
    'CalibrationStatus',
    'DepthReading',
    'SpeedEstimate',
    'LocalState',
    'GlobalPosition',
    'PositionEstimate',
    'STATE_SIZE',
    # Codecs
    'MessageCodec',
    'GPS_DATA_CODEC',
    'IMU_DATA_CODEC',
    'DEPTH_CODEC',
    'SPEED_ESTIMATE_CODEC',
    'POSITION_ESTIMATE_CODEC',
    'topics',
]
