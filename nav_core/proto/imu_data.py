"""
IMU Sample Message Schema.

One sample from the 9-DOF IMU with onboard fusion: raw vectors, fused
orientation quaternion, gravity-free linear acceleration and the
per-subsystem calibration levels (0 = uncalibrated, 3 = fully calibrated).
"""

from dataclasses import dataclass
from typing import Optional
import math

from .validation import finite_float, integer


@dataclass
class Vector3:
    """3-axis vector in the sensor frame."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __post_init__(self):
        for name in ('x', 'y', 'z'):
            setattr(self, name, finite_float(name, getattr(self, name)))

    def to_dict(self) -> dict:
        return {'x': self.x, 'y': self.y, 'z': self.z}

    @classmethod
    def from_dict(cls, data: dict) -> 'Vector3':
        return cls(x=data['x'], y=data['y'], z=data['z'])


@dataclass
class Quaternion:
    """Orientation quaternion (w scalar part)."""

    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __post_init__(self):
        for name in ('w', 'x', 'y', 'z'):
            setattr(self, name, finite_float(name, getattr(self, name)))

    @property
    def norm(self) -> float:
        return math.sqrt(self.w ** 2 + self.x ** 2 + self.y ** 2 + self.z ** 2)

    def to_dict(self) -> dict:
        return {'w': self.w, 'x': self.x, 'y': self.y, 'z': self.z}

    @classmethod
    def from_dict(cls, data: dict) -> 'Quaternion':
        return cls(w=data['w'], x=data['x'], y=data['y'], z=data['z'])


@dataclass
class CalibrationStatus:
    """
    Calibration levels reported by the IMU.

    Attributes:
        sys: Overall system calibration (0-3)
        gyro: Gyroscope calibration (0-3)
        accel: Accelerometer calibration (0-3)
        mag: Magnetometer calibration (0-3)
    """

    sys: int = 0
    gyro: int = 0
    accel: int = 0
    mag: int = 0

    def __post_init__(self):
        """Validate calibration levels."""
        for name in ('sys', 'gyro', 'accel', 'mag'):
            level = integer(name, getattr(self, name))
            setattr(self, name, level)
            if not 0 <= level <= 3:
                raise ValueError(f"Calibration level {name} must be in [0,3]: {level}")

    @property
    def is_fully_calibrated(self) -> bool:
        """True once the system calibration level reaches 3."""
        return self.sys == 3

    def to_dict(self) -> dict:
        return {'sys': self.sys, 'gyro': self.gyro, 'accel': self.accel, 'mag': self.mag}

    @classmethod
    def from_dict(cls, data: dict) -> 'CalibrationStatus':
        return cls(sys=data['sys'], gyro=data['gyro'], accel=data['accel'], mag=data['mag'])


def _optional(factory, value):
    return factory(value) if value is not None else None


@dataclass
class IMUData:
    """
    IMU sample.

    Attributes:
        acceleration: Total acceleration (m/s^2)
        magnetometer: Magnetic field (uT)
        gyroscope: Angular rate (deg/s)
        orientation: Fused orientation quaternion
        linear_acceleration: Acceleration with gravity removed (m/s^2)
        gravity: Gravity vector (m/s^2)
        temperature: Chip temperature (C)
        calibration_status: Calibration levels

    Notes:
        - Any vector may be absent; the estimator only predicts when both
          orientation and linear_acceleration are present
    """

    acceleration: Optional[Vector3] = None
    magnetometer: Optional[Vector3] = None
    gyroscope: Optional[Vector3] = None
    orientation: Optional[Quaternion] = None
    linear_acceleration: Optional[Vector3] = None
    gravity: Optional[Vector3] = None
    temperature: float = 0.0
    calibration_status: Optional[CalibrationStatus] = None

    def __post_init__(self):
        """Validate nested field types and temperature."""
        for name, expected in (('acceleration', Vector3), ('magnetometer', Vector3),
                               ('gyroscope', Vector3), ('orientation', Quaternion),
                               ('linear_acceleration', Vector3), ('gravity', Vector3),
                               ('calibration_status', CalibrationStatus)):
            value = getattr(self, name)
            if value is not None and not isinstance(value, expected):
                raise TypeError(f"{name} must be {expected.__name__}, got {type(value).__name__}")
        self.temperature = finite_float('temperature', self.temperature)

    @property
    def is_calibrated(self) -> bool:
        """True if the IMU reports full system calibration."""
        return self.calibration_status is not None and self.calibration_status.is_fully_calibrated

    @property
    def has_motion_data(self) -> bool:
        """True if the fields used by prediction are present."""
        return self.orientation is not None and self.linear_acceleration is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'acceleration': self.acceleration.to_dict() if self.acceleration else None,
            'magnetometer': self.magnetometer.to_dict() if self.magnetometer else None,
            'gyroscope': self.gyroscope.to_dict() if self.gyroscope else None,
            'orientation': self.orientation.to_dict() if self.orientation else None,
            'linear_acceleration': (
                self.linear_acceleration.to_dict() if self.linear_acceleration else None
            ),
            'gravity': self.gravity.to_dict() if self.gravity else None,
            'temperature': self.temperature,
            'calibration_status': (
                self.calibration_status.to_dict() if self.calibration_status else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'IMUData':
        """Build from a dictionary produced by to_dict()."""
        return cls(
            acceleration=_optional(Vector3.from_dict, data.get('acceleration')),
            magnetometer=_optional(Vector3.from_dict, data.get('magnetometer')),
            gyroscope=_optional(Vector3.from_dict, data.get('gyroscope')),
            orientation=_optional(Quaternion.from_dict, data.get('orientation')),
            linear_acceleration=_optional(Vector3.from_dict, data.get('linear_acceleration')),
            gravity=_optional(Vector3.from_dict, data.get('gravity')),
            temperature=data.get('temperature', 0.0),
            calibration_status=_optional(
                CalibrationStatus.from_dict, data.get('calibration_status')
            ),
        )
