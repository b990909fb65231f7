"""
Scalar measurement message schemas: depth and forward speed.
"""

from dataclasses import dataclass

from .validation import finite_float


@dataclass
class DepthReading:
    """Depth below the surface in meters (positive downward)."""

    depth: float

    def __post_init__(self):
        self.depth = finite_float('depth', self.depth)

    def to_dict(self) -> dict:
        return {'depth': self.depth}

    @classmethod
    def from_dict(cls, data: dict) -> 'DepthReading':
        return cls(depth=data['depth'])


@dataclass
class SpeedEstimate:
    """Forward speed through water in m/s."""

    speed: float

    def __post_init__(self):
        self.speed = finite_float('speed', self.speed)

    def to_dict(self) -> dict:
        return {'speed': self.speed}

    @classmethod
    def from_dict(cls, data: dict) -> 'SpeedEstimate':
        return cls(speed=data['speed'])
