"""
Position Estimate Output Schema.

Defines the fused vehicle state produced by the EKF and the message the
position node publishes after every prediction.

State layout (8 elements):
    [x, y, z, v, qw, qx, qy, qz]
    x, y: local Cartesian position (m, y north / x east of the reference)
    z: depth (m, positive downward)
    v: forward velocity (m/s)
    qw..qz: orientation quaternion
"""

from dataclasses import dataclass
from typing import Optional
import math
import numpy as np

from .validation import finite_float

STATE_SIZE = 8


@dataclass
class LocalState:
    """
    Vehicle state in the local frame.

    Attributes:
        x: Local position east of reference (m)
        y: Local position north of reference (m)
        z: Depth (m, positive downward)
        v: Forward velocity (m/s)
        qw, qx, qy, qz: Orientation quaternion
    """

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    v: float = 0.0
    qw: float = 1.0
    qx: float = 0.0
    qy: float = 0.0
    qz: float = 0.0

    def __post_init__(self):
        for name in ('x', 'y', 'z', 'v', 'qw', 'qx', 'qy', 'qz'):
            setattr(self, name, finite_float(name, getattr(self, name)))

    @property
    def quaternion_norm(self) -> float:
        """Euclidean norm of the orientation quaternion."""
        return math.sqrt(self.qw ** 2 + self.qx ** 2 + self.qy ** 2 + self.qz ** 2)

    def to_vector(self) -> np.ndarray:
        """State as an 8-element vector in filter order."""
        return np.array([
            self.x, self.y, self.z, self.v,
            self.qw, self.qx, self.qy, self.qz,
        ], dtype=float)

    @classmethod
    def from_vector(cls, vec: np.ndarray) -> 'LocalState':
        """Build from an 8-element vector in filter order."""
        if len(vec) != STATE_SIZE:
            raise ValueError(f"State vector must have {STATE_SIZE} elements: {len(vec)}")
        return cls(*(float(v) for v in vec))

    def to_dict(self) -> dict:
        return {
            'x': self.x, 'y': self.y, 'z': self.z, 'v': self.v,
            'qw': self.qw, 'qx': self.qx, 'qy': self.qy, 'qz': self.qz,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'LocalState':
        return cls(
            x=data['x'], y=data['y'], z=data['z'], v=data['v'],
            qw=data['qw'], qx=data['qx'], qy=data['qy'], qz=data['qz'],
        )


@dataclass
class GlobalPosition:
    """Geodetic position (degrees, meters above MSL)."""

    latitude: float
    longitude: float
    altitude: float

    def __post_init__(self):
        for name in ('latitude', 'longitude', 'altitude'):
            setattr(self, name, finite_float(name, getattr(self, name)))

    def to_dict(self) -> dict:
        return {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'altitude': self.altitude,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GlobalPosition':
        return cls(
            latitude=data['latitude'],
            longitude=data['longitude'],
            altitude=data['altitude'],
        )


@dataclass
class PositionEstimate:
    """
    Fused position estimate published after each prediction.

    Attributes:
        local: Full filter state in the local frame
        global_position: Local position converted back to lat/lon/alt
        timestamp: Publication time (ms since epoch)
    """

    local: LocalState
    global_position: Optional[GlobalPosition]
    timestamp: float

    def __post_init__(self):
        if not isinstance(self.local, LocalState):
            raise TypeError(f"local must be LocalState, got {type(self.local).__name__}")
        self.timestamp = finite_float('timestamp', self.timestamp)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'local': self.local.to_dict(),
            'global': self.global_position.to_dict() if self.global_position else None,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PositionEstimate':
        """Build from a dictionary produced by to_dict()."""
        global_data = data.get('global')
        return cls(
            local=LocalState.from_dict(data['local']),
            global_position=GlobalPosition.from_dict(global_data) if global_data else None,
            timestamp=data['timestamp'],
        )
